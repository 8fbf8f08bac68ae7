"""SpeedGuard: background speed monitoring with local alerts."""

__version__ = "0.1.0"
