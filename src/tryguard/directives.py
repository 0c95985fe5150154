"""
Call-site directives.

``try_return``, ``try_continue`` and ``try_break`` only mean something inside a
function decorated with ``@guarded``: the decorator rewrites each call into an
inline ``return`` / ``continue`` / ``break`` on absence, so the diversion acts
on the caller's own function and loops. The functions below are what a call
reaches when that rewrite never happened, and they fail fast.

``labeled`` names a loop for the ``label`` argument::

    for row in labeled("rows", table):
        for cell in row:
            value = try_continue(parse(cell), "rows")
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NoReturn, TypeVar

from .errors import GuardUsageError

T = TypeVar("T")

DIRECTIVE_ATTR = "__tryguard_directive__"


class Directive(str, Enum):
    """Kinds of call the expander recognises."""

    RETURN = "try_return"
    CONTINUE = "try_continue"
    BREAK = "try_break"
    LABELED = "labeled"
    GUARDED = "guarded"

    @property
    def diverts(self) -> bool:
        return self in (Directive.RETURN, Directive.CONTINUE, Directive.BREAK)


def _unexpanded(directive: Directive) -> NoReturn:
    raise GuardUsageError(
        f"{directive.value}() can only divert control flow inside a @guarded function"
    )


def try_return(value: Any, fallback: Any = None) -> Any:
    """Yield the payload of ``value``, or return ``fallback`` from the enclosing function."""
    _unexpanded(Directive.RETURN)


def try_continue(value: Any, label: str | None = None) -> Any:
    """Yield the payload of ``value``, or continue the innermost (or ``label``) loop."""
    _unexpanded(Directive.CONTINUE)


def try_break(value: Any, label: str | None = None) -> Any:
    """Yield the payload of ``value``, or break the innermost (or ``label``) loop."""
    _unexpanded(Directive.BREAK)


def labeled(label: str, loop_header: T) -> T:
    """Name a loop. Wraps a ``for`` iterable or a ``while`` condition."""
    return loop_header


for _func, _kind in (
    (try_return, Directive.RETURN),
    (try_continue, Directive.CONTINUE),
    (try_break, Directive.BREAK),
    (labeled, Directive.LABELED),
):
    setattr(_func, DIRECTIVE_ATTR, _kind)
del _func, _kind
