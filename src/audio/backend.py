"""Capability interface for the realtime audio primitives the mixer drives.

The orchestration layer never renders samples itself.  It creates nodes,
wires them together, and schedules automation against the backend's
monotonic clock.  Any implementation honouring these protocols can host
the mixer; :mod:`audio.simulated` ships an in-process one.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np


@dataclass
class SampleBuffer:
    """Decoded audio held as ``(frames, channels)`` float32 samples."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim == 2 else 1

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)


class AutomatableParam(Protocol):
    """A node parameter that supports timeline automation."""

    value: float

    def set_value_at_time(self, value: float, time: float) -> None:
        ...

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None:
        ...

    def cancel_scheduled_values(self, time: float) -> None:
        ...


class AudioNodeHandle(Protocol):
    """Minimal connect/disconnect contract shared by every backend node."""

    def connect(
        self, target: "AudioNodeHandle", output: int = 0, input: int = 0
    ) -> "AudioNodeHandle":
        ...

    def disconnect(self) -> None:
        """Drop every outgoing connection; calling it twice is harmless."""


class GainNodeHandle(AudioNodeHandle, Protocol):
    gain: AutomatableParam


class PannerNodeHandle(AudioNodeHandle, Protocol):
    pan: AutomatableParam


class BufferSourceNodeHandle(AudioNodeHandle, Protocol):
    buffer: Optional[SampleBuffer]
    loop: bool
    loop_start: float

    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        ...

    def stop(self) -> None:
        """Halt playback; stopping an already-stopped node is a no-op."""


class AnalyserNodeHandle(AudioNodeHandle, Protocol):
    fft_size: int
    smoothing: float

    def get_float_time_domain_data(self) -> np.ndarray:
        ...


class AudioBackend(Protocol):
    """Factory and clock for realtime audio nodes."""

    @property
    def current_time(self) -> float:
        ...

    @property
    def destination(self) -> AudioNodeHandle:
        ...

    def create_gain(self) -> GainNodeHandle:
        ...

    def create_panner(self) -> PannerNodeHandle:
        ...

    def create_buffer_source(self) -> BufferSourceNodeHandle:
        ...

    def create_analyser(self) -> AnalyserNodeHandle:
        ...

    def create_channel_splitter(self, channels: int) -> AudioNodeHandle:
        ...

    def create_channel_merger(self, channels: int) -> AudioNodeHandle:
        ...

    async def decode_asset(self, data: bytes) -> SampleBuffer:
        ...

    async def resume(self) -> None:
        ...

    async def suspend(self) -> None:
        ...


__all__ = [
    "AnalyserNodeHandle",
    "AudioBackend",
    "AudioNodeHandle",
    "AutomatableParam",
    "BufferSourceNodeHandle",
    "GainNodeHandle",
    "PannerNodeHandle",
    "SampleBuffer",
]
