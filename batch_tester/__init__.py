"""HTTP API batch test engine."""

__version__ = "1.0.0"
