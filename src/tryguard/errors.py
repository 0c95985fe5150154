"""Exceptions raised by tryguard.

Absence is never an error: it only diverts control flow. These classes cover
misuse of the directives, detected either when a function is expanded or, for
code the expander never saw, on first call.
"""

from __future__ import annotations

from typing import Optional


class GuardError(Exception):
    """Base class for every tryguard exception."""


class GuardDefinitionError(GuardError):
    """A directive or label is used where it cannot be expanded."""

    def __init__(
        self,
        message: str,
        *,
        filename: Optional[str] = None,
        lineno: Optional[int] = None,
    ) -> None:
        self.message = message
        self.filename = filename
        self.lineno = lineno
        super().__init__(self._format())

    def _format(self) -> str:
        if self.filename is None:
            return self.message
        if self.lineno is None:
            return f"{self.filename}: {self.message}"
        return f"{self.filename}:{self.lineno}: {self.message}"


class GuardUsageError(GuardError, RuntimeError):
    """A directive placeholder was called outside a ``@guarded`` function."""
