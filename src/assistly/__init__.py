"""Assistly knowledge assistant: retrieval and context assembly for support answers."""

__version__ = "1.0.0"
