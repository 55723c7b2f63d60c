"""History, analytics and export services built on the TCX parser."""
