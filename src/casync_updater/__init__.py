"""casync-updater: keep a deployment directory in sync with a casync source."""

__version__ = "1.0.0"
