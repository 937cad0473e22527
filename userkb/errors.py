"""Exception types shared across the knowledge service."""

from __future__ import annotations


class UserKBError(Exception):
    """Base class for recoverable service errors."""


class ProviderUnavailable(UserKBError):
    """An embedding or completion provider call failed."""


class MalformedStructuredOutput(UserKBError):
    """The stage-2 analyzer returned output that is not a usable tool decision."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ToolExecutionError(UserKBError):
    """A tool rejected its parameters or failed while running."""


class TurnTimeout(UserKBError):
    """The chat turn ran past its deadline."""
