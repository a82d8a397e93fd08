"""pulsebridge: medical device plugins, normalization and sync."""

__version__ = "0.1.0"
