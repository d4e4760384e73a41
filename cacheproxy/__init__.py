"""Threaded HTTP forward proxy with an in-memory LRU response cache."""

__version__ = "0.1.0"
__all__ = ["cache", "parsing", "server"]