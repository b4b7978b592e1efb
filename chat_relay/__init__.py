"""Real-time chat message relay."""

__version__ = "1.0.0"
