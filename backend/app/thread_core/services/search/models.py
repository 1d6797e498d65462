"""Errors raised inside the search collaborators."""

from __future__ import annotations


class SearchEngineError(RuntimeError):
    """Raised when an engine cannot complete the search."""

    def __init__(self, engine: str, message: str) -> None:
        super().__init__(message)
        self.engine = engine
        self.message = message
