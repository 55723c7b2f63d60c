"""
Setup script for Run Coach
Run: pip install -e .[test]
"""

from setuptools import setup

setup(
    name='run-coach',
    version='1.0.0',
    description='TCX run parser with splits, best efforts and coaching exports',
    python_requires='>=3.9',
    py_modules=['cli', 'constants', 'db', 'hr_zones', 'models', 'tcx_parser'],
    packages=['core'],
    install_requires=[
        'numpy',
        'pandas',
        'pyperclip',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': ['run-coach=cli:main'],
    },
)
