"""Room-scoped, ephemeral real-time message relay."""

__version__ = "0.1.0"
