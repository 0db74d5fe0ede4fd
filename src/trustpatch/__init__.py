"""Build a trust bundle from the OS trust store and point tool configs at it."""

__version__ = "0.1.0"
