"""Live collaborators for lob_core: websocket stream, REST snapshot, runner."""

from .feed import BookFeed, main

__all__ = ["BookFeed", "main"]
