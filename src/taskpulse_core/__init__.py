"""TaskPulse Core - project tracking backend."""

__version__ = "1.0.0"
