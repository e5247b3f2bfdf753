"""Room-based real-time chat relay."""

__version__ = "0.1.0"
