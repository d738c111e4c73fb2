"""Ordered lookup chains (cache → authoritative store → default).

Each tier is an async callable returning either a value or :data:`TRY_NEXT`.
Tiers own their error handling: a tier that can fail transiently catches
its own exception, logs it and returns :data:`TRY_NEXT`; a tier whose
failure should propagate simply raises.
"""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class _TryNext:
    _instance: _TryNext | None = None

    def __new__(cls) -> _TryNext:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TRY_NEXT"


TRY_NEXT = _TryNext()

_NO_DEFAULT = object()


async def first_available(
    tiers: list[Callable[[], Awaitable[T | _TryNext]]],
    default: T = _NO_DEFAULT,  # type: ignore[assignment]
) -> T:
    """Return the first tier's answer that is not :data:`TRY_NEXT`.

    Falls back to *default* when every tier passes; without a default an
    exhausted chain raises :class:`LookupError`.
    """
    for tier in tiers:
        value = await tier()
        if value is not TRY_NEXT:
            return value  # type: ignore[return-value]
    if default is _NO_DEFAULT:
        raise LookupError("No tier produced a value")
    return default
