"""
Canonical presence/absence values and the normalization capability.

Every value a directive receives is first reduced to one of two cases:

- ``Present(value)``: a payload is available and is handed to the caller.
- ``Absent``: nothing is available; the directive diverts control flow.

Participating shapes
--------------------

- ``Present`` / ``Absent`` map through unchanged.
- ``None`` is absence, so any ``Optional[T]`` participates as is.
- ``Ok(value)`` is presence; ``Err(error)`` is absence and the error is
  dropped without being inspected.
- Any type defining ``try_as_option()`` (the ``TryAsOption`` protocol).
- Any type registered with ``normalize.register``.

Everything else is a present payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Generic, Protocol, TypeVar, Union, runtime_checkable

T = TypeVar("T")
E = TypeVar("E")
T_co = TypeVar("T_co", covariant=True)


@dataclass(frozen=True, slots=True)
class Present(Generic[T]):
    """A payload that is available."""

    value: T

    def try_as_option(self) -> Present[T]:
        return self


class AbsentType:
    """Type of the ``Absent`` singleton. Compare with ``is``."""

    __slots__ = ()
    _instance: AbsentType | None = None

    def __new__(cls) -> AbsentType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Absent"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "Absent"

    def try_as_option(self) -> AbsentType:
        return self


Absent = AbsentType()

Option = Union[Present[T], AbsentType]


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Success payload of a ``Result``."""

    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def try_as_option(self) -> Present[T]:
        return Present(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failure detail of a ``Result``."""

    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def try_as_option(self) -> AbsentType:
        # The failure detail never reaches the directive layer.
        return Absent


Result = Union[Ok[T], Err[E]]


@runtime_checkable
class TryAsOption(Protocol[T_co]):
    """Anything that can state "I am either Present(T) or Absent"."""

    def try_as_option(self) -> Union[Present[T_co], AbsentType]: ...


@singledispatch
def normalize(value: Any) -> Option[Any]:
    """Reduce ``value`` to ``Present(payload)`` or ``Absent``.

    Register converters for types you cannot edit with
    ``normalize.register(SomeType)``.
    """
    if value is None:
        return Absent
    hook = getattr(type(value), "try_as_option", None)
    if hook is not None:
        return hook(value)
    return Present(value)


@normalize.register
def _normalize_present(value: Present) -> Option[Any]:
    return value


@normalize.register
def _normalize_absent(value: AbsentType) -> Option[Any]:
    return value
