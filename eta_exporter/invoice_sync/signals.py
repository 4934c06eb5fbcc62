"""Ordered signal evaluation.

Each signal is a small pure function over its inputs that either produces a
value or ``None``. ``first_signal`` walks them in precedence order and keeps
the first acceptable value; a signal that raises is treated as a miss.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Signal(Generic[T]):
    name: str
    extract: Callable[..., Optional[T]]
    weak: bool = False


@dataclass(frozen=True)
class SignalHit(Generic[T]):
    name: str
    value: T
    weak: bool = False


def _is_present(value: Any) -> bool:
    return value is not None


def positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def first_signal(
    signals: Iterable[Signal[T]],
    *args: Any,
    accept: Callable[[Any], bool] = _is_present,
    **kwargs: Any,
) -> Optional[SignalHit[T]]:
    for signal in signals:
        try:
            value = signal.extract(*args, **kwargs)
        except Exception:
            continue
        if accept(value):
            return SignalHit(name=signal.name, value=value, weak=signal.weak)
    return None
