"""perceive: local-first semantic search engine."""

__version__ = "0.1.0"
