"""Exceptions raised by the thread core."""

from __future__ import annotations


class ThreadCoreError(RuntimeError):
    """Base class for every error surfaced by the thread core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(ThreadCoreError):
    """A conversation, message or block does not exist."""


class InvalidRole(ThreadCoreError):
    """The operation is restricted to messages of another role."""


class BlockNotFound(ThreadCoreError):
    """No pending permission block matches the resolution request."""


class AlreadyResolved(BlockNotFound):
    """The permission block has already been granted or denied."""


class GenerationInProgress(ThreadCoreError):
    """A generation is already attached to the message id."""


class UpstreamStreamFailure(ThreadCoreError):
    """The agent event stream terminated abnormally."""


class PersistenceFailure(ThreadCoreError):
    """A write to the message store failed."""
