import contextlib
import io
import tempfile
import unittest
from pathlib import Path

from cli import main
from db import DatabaseManager
from tcx_factory import steady_run


class CliTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    def _run(self, argv):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def test_usage_without_files(self):
        code, output = self._run([])
        self.assertEqual(code, 1)
        self.assertIn("Usage:", output)

    def test_parses_and_saves_once(self):
        tcx = self.root / "run.tcx"
        tcx.write_text(steady_run(2000), encoding="utf-8")
        db_path = str(self.root / "history.db")

        code, output = self._run([str(tcx), "--save", "--db", db_path])
        self.assertEqual(code, 0)
        self.assertIn("Distance:  2.00 km", output)
        self.assertIn("💾 Saved as", output)

        code, output = self._run([str(tcx), "--save", "--db", db_path])
        self.assertIn("Already in history", output)
        self.assertEqual(DatabaseManager(db_path).get_count(), 1)

    def test_reports_files_without_trackpoints(self):
        empty = self.root / "empty.tcx"
        empty.write_text("<TrainingCenterDatabase/>", encoding="utf-8")
        code, output = self._run([str(empty)])
        self.assertEqual(code, 1)
        self.assertIn("No trackable samples found in empty.tcx", output)


if __name__ == "__main__":
    unittest.main()
