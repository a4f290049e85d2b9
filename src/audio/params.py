"""Observable parameter cells shared by processors, tracks, and the engine.

A :class:`Parameter` stores a normalized value and notifies listeners
synchronously whenever an assignment changes it.  Specialisations only
differ in how they normalize input: out-of-range values are coerced,
never rejected, so UI gestures can write freely.
"""
from __future__ import annotations

from typing import Callable, Generic, List, Protocol, Tuple, TypeVar, Union

T = TypeVar("T")

Listener = Callable[[T], None]
Disposer = Callable[[], None]
Range = Tuple[float, float]


class RandomSource(Protocol):
    """Anything exposing ``random()`` in ``[0, 1)`` (numpy generators, :mod:`random`)."""

    def random(self) -> float:
        ...


class Parameter(Generic[T]):
    """Named, observable value cell."""

    def __init__(self, initial: T, *, name: str = "") -> None:
        self.name = name
        self._listeners: List[Listener[T]] = []
        self._value: T = self.normalize(initial)

    def normalize(self, value: T) -> T:
        return value

    @property
    def value(self) -> T:
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        normalized = self.normalize(value)
        if normalized == self._value:
            return
        self._value = normalized
        for listener in list(self._listeners):
            listener(normalized)

    def on_change(self, listener: Listener[T], *, immediate: bool = False) -> Disposer:
        """Register *listener* and return a callable that removes it.

        With ``immediate=True`` the listener also receives the current value
        right away, which is how owners push initial values into backend nodes.
        """

        self._listeners.append(listener)
        if immediate:
            listener(self._value)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}({self.name or '?'}={self._value!r})"


class UnitParam(Parameter[float]):
    """Float clamped to ``[0, 1]`` (volumes, gains)."""

    def normalize(self, value: float) -> float:
        return min(max(float(value), 0.0), 1.0)


class PolarParam(Parameter[float]):
    """Float clamped to ``[-1, 1]`` (pan positions)."""

    def normalize(self, value: float) -> float:
        return min(max(float(value), -1.0), 1.0)


class PositiveParam(Parameter[float]):
    """Float floored at zero."""

    def normalize(self, value: float) -> float:
        return max(float(value), 0.0)


class RangeParam(Parameter[Range]):
    """Ordered ``(low, high)`` pair; a single number widens to ``(v, v)``."""

    def normalize(self, value: Union[Range, float]) -> Range:  # type: ignore[override]
        if isinstance(value, (int, float)):
            return (float(value), float(value))
        first, second = (float(item) for item in value)
        return (min(first, second), max(first, second))


class WaitParam(RangeParam):
    """Range of non-negative seconds, used for fade-in and start delays."""

    def normalize(self, value: Union[Range, float]) -> Range:  # type: ignore[override]
        low, high = super().normalize(value)
        return (max(low, 0.0), max(high, 0.0))


class StringParam(Parameter[str]):
    def normalize(self, value: str) -> str:
        return str(value)


class BoolParam(Parameter[bool]):
    def normalize(self, value: bool) -> bool:
        return bool(value)


def sample_range(bounds: Range, rng: RandomSource) -> float:
    """Draw uniformly from ``[low, high)``; a degenerate range returns ``low`` exactly."""

    low, high = bounds
    if low == high:
        return low
    return low + rng.random() * (high - low)


__all__ = [
    "BoolParam",
    "Disposer",
    "Listener",
    "Parameter",
    "PolarParam",
    "PositiveParam",
    "RandomSource",
    "Range",
    "RangeParam",
    "StringParam",
    "UnitParam",
    "WaitParam",
    "sample_range",
]
