"""Processor capability shared by effects and sources."""
from __future__ import annotations

from enum import Enum
import itertools
from typing import Mapping, Optional, Protocol

from .backend import AudioNodeHandle
from .params import Parameter

_processor_ids = itertools.count()


def next_processor_id(kind: str) -> str:
    """Return a process-unique identifier such as ``Gain-3``."""

    return f"{kind}-{next(_processor_ids)}"


class PlayState(str, Enum):
    """Transport state shared by sources and the engine."""

    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class Processor(Protocol):
    """Node in a track's signal path with one parameter set.

    Effects are in-place (``input is output``); sources have no input and
    report ``None``.
    """

    id: str

    @property
    def params(self) -> Mapping[str, Parameter]:
        ...

    @property
    def input(self) -> Optional[AudioNodeHandle]:
        ...

    @property
    def output(self) -> AudioNodeHandle:
        ...

    def connect(self, target: AudioNodeHandle) -> None:
        ...

    def disconnect(self) -> None:
        """Detach the output; safe on an already-disconnected processor."""

    def destroy(self) -> None:
        """Disconnect and release the processor; it is unusable afterwards."""


__all__ = ["PlayState", "Processor", "next_processor_id"]
