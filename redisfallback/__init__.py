"""Redis cache wrapper with in-memory and on-disk JSON fallback storage."""

__version__ = "0.1.0"

__all__ = ["client", "config", "logger", "notify", "writer"]