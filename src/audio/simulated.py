"""In-process audio backend with a manually advanced clock.

:class:`SimulatedAudioBackend` implements :class:`audio.backend.AudioBackend`
without touching audio hardware.  Nodes record their connections, params
record automation events, and buffer sources record when they were
started or stopped.  Tests and headless hosts drive time explicitly via
:meth:`SimulatedAudioBackend.advance`.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
import wave

import numpy as np

from .backend import SampleBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeConnection:
    """Directed edge between two simulated nodes."""

    source: "SimulatedNode"
    target: "SimulatedNode"
    output: int = 0
    input: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "source": self.source.label,
            "target": self.target.label,
            "output": self.output,
            "input": self.input,
        }


@dataclass(frozen=True)
class AutomationRecord:
    """Single automation instruction captured by :class:`SimulatedParam`."""

    kind: str  # "set" or "ramp"
    value: float
    time: float


class SimulatedParam:
    """Automatable parameter that evaluates its timeline on demand."""

    def __init__(self, backend: "SimulatedAudioBackend", default: float) -> None:
        self._backend = backend
        self._default = float(default)
        self._events: List[AutomationRecord] = []

    @property
    def events(self) -> List[AutomationRecord]:
        return list(self._events)

    @property
    def value(self) -> float:
        return self.value_at(self._backend.current_time)

    @value.setter
    def value(self, value: float) -> None:
        self.set_value_at_time(value, self._backend.current_time)

    def _insert(self, record: AutomationRecord) -> None:
        index = len(self._events)
        while index > 0 and self._events[index - 1].time > record.time:
            index -= 1
        self._events.insert(index, record)

    def set_value_at_time(self, value: float, time: float) -> None:
        self._insert(AutomationRecord("set", float(value), float(time)))

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> None:
        self._insert(AutomationRecord("ramp", float(value), float(time)))

    def cancel_scheduled_values(self, time: float) -> None:
        self._events = [event for event in self._events if event.time < time]

    def value_at(self, time: float) -> float:
        """Return the automated value at *time* (linear ramps interpolated)."""

        current = self._default
        previous_time = 0.0
        for event in self._events:
            if event.kind == "ramp" and time < event.time:
                if time <= previous_time or event.time <= previous_time:
                    return current
                fraction = (time - previous_time) / (event.time - previous_time)
                return current + (event.value - current) * fraction
            if event.time > time:
                break
            current = event.value
            previous_time = event.time
        return current


class SimulatedNode:
    """Base node recording outgoing connections."""

    kind = "node"

    def __init__(self, backend: "SimulatedAudioBackend", label: str) -> None:
        self._backend = backend
        self.label = label
        self._connections: List[NodeConnection] = []

    def connect(self, target: "SimulatedNode", output: int = 0, input: int = 0) -> "SimulatedNode":
        connection = NodeConnection(self, target, output, input)
        if connection not in self._connections:
            self._connections.append(connection)
        return target

    def disconnect(self) -> None:
        self._connections.clear()

    def connections(self) -> List[NodeConnection]:
        return list(self._connections)

    @property
    def targets(self) -> List["SimulatedNode"]:
        return [connection.target for connection in self._connections]

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<{type(self).__name__} {self.label}>"


class SimulatedGainNode(SimulatedNode):
    kind = "gain"

    def __init__(self, backend: "SimulatedAudioBackend", label: str) -> None:
        super().__init__(backend, label)
        self.gain = SimulatedParam(backend, 1.0)


class SimulatedPannerNode(SimulatedNode):
    kind = "panner"

    def __init__(self, backend: "SimulatedAudioBackend", label: str) -> None:
        super().__init__(backend, label)
        self.pan = SimulatedParam(backend, 0.0)


class SimulatedBufferSourceNode(SimulatedNode):
    """One-shot buffer player: may be started once, stopped any number of times."""

    kind = "buffer-source"

    def __init__(self, backend: "SimulatedAudioBackend", label: str) -> None:
        super().__init__(backend, label)
        self.buffer: Optional[SampleBuffer] = None
        self.loop = False
        self.loop_start = 0.0
        self.started_at: Optional[float] = None
        self.start_offset = 0.0
        self.stopped_at: Optional[float] = None

    @property
    def started(self) -> bool:
        return self.started_at is not None

    @property
    def stopped(self) -> bool:
        return self.stopped_at is not None

    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        if self.started:
            raise RuntimeError(f"Buffer source {self.label} was already started")
        self.started_at = float(when)
        self.start_offset = float(offset)

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped_at = self._backend.current_time


class SimulatedAnalyserNode(SimulatedNode):
    """Serves the most recently fed block as time-domain data."""

    kind = "analyser"

    def __init__(self, backend: "SimulatedAudioBackend", label: str) -> None:
        super().__init__(backend, label)
        self.fft_size = 2048
        self.smoothing = 0.8
        self._data = np.zeros(0, dtype=np.float32)

    def feed(self, samples: np.ndarray) -> None:
        self._data = np.asarray(samples, dtype=np.float32).reshape(-1)

    def get_float_time_domain_data(self) -> np.ndarray:
        window = np.zeros(self.fft_size, dtype=np.float32)
        data = self._data[-self.fft_size :]
        if data.size:
            window[: data.size] = data
        return window


class SimulatedChannelNode(SimulatedNode):
    """Channel splitter or merger; only the routing is modelled."""

    def __init__(self, backend: "SimulatedAudioBackend", label: str, kind: str, channels: int) -> None:
        super().__init__(backend, label)
        self.kind = kind
        self.channels = int(channels)


class SimulatedAudioBackend:
    """Headless :class:`audio.backend.AudioBackend` implementation."""

    def __init__(self, *, sample_rate: int = 48_000, start_suspended: bool = False) -> None:
        self.sample_rate = int(sample_rate)
        self._time = 0.0
        self._state = "suspended" if start_suspended else "running"
        self._nodes: List[SimulatedNode] = []
        self._counter = 0
        self.resume_calls = 0
        self.suspend_calls = 0
        self._destination = SimulatedNode(self, "destination")
        self._destination.kind = "destination"

    # ------------------------------------------------------------------
    # Clock and context state
    # ------------------------------------------------------------------
    @property
    def current_time(self) -> float:
        return self._time

    @property
    def state(self) -> str:
        return self._state

    def advance(self, seconds: float) -> float:
        """Move the clock forward while running; a suspended clock stays frozen."""

        if seconds < 0:
            raise ValueError("Cannot move the audio clock backwards")
        if self._state == "running":
            self._time += float(seconds)
        return self._time

    async def resume(self) -> None:
        self.resume_calls += 1
        self._state = "running"

    async def suspend(self) -> None:
        self.suspend_calls += 1
        self._state = "suspended"

    # ------------------------------------------------------------------
    # Node factories
    # ------------------------------------------------------------------
    @property
    def destination(self) -> SimulatedNode:
        return self._destination

    def _label(self, kind: str) -> str:
        self._counter += 1
        return f"{kind}-{self._counter}"

    def _register(self, node: SimulatedNode) -> SimulatedNode:
        self._nodes.append(node)
        return node

    def create_gain(self) -> SimulatedGainNode:
        return self._register(SimulatedGainNode(self, self._label("gain")))  # type: ignore[return-value]

    def create_panner(self) -> SimulatedPannerNode:
        return self._register(SimulatedPannerNode(self, self._label("panner")))  # type: ignore[return-value]

    def create_buffer_source(self) -> SimulatedBufferSourceNode:
        return self._register(  # type: ignore[return-value]
            SimulatedBufferSourceNode(self, self._label("buffer-source"))
        )

    def create_analyser(self) -> SimulatedAnalyserNode:
        return self._register(SimulatedAnalyserNode(self, self._label("analyser")))  # type: ignore[return-value]

    def create_channel_splitter(self, channels: int) -> SimulatedChannelNode:
        return self._register(  # type: ignore[return-value]
            SimulatedChannelNode(self, self._label("splitter"), "splitter", channels)
        )

    def create_channel_merger(self, channels: int) -> SimulatedChannelNode:
        return self._register(  # type: ignore[return-value]
            SimulatedChannelNode(self, self._label("merger"), "merger", channels)
        )

    def buffer_sources(self) -> List[SimulatedBufferSourceNode]:
        return [node for node in self._nodes if isinstance(node, SimulatedBufferSourceNode)]

    def connections(self) -> List[NodeConnection]:
        """Return every live connection across all created nodes."""

        edges: List[NodeConnection] = []
        for node in self._nodes:
            edges.extend(node.connections())
        return edges

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------
    async def decode_asset(self, data: bytes) -> SampleBuffer:
        samples, sample_rate = decode_wav(data)
        logger.debug("Decoded %d frames at %d Hz", samples.shape[0], sample_rate)
        return SampleBuffer(samples=samples, sample_rate=sample_rate)


_PCM_DTYPES = {1: np.uint8, 2: np.int16, 4: np.int32}


def decode_wav(data: bytes) -> Tuple[np.ndarray, int]:
    """Decode PCM WAV bytes into ``(frames, channels)`` float32 samples."""

    try:
        with wave.open(io.BytesIO(data), "rb") as reader:
            channels = reader.getnchannels()
            width = reader.getsampwidth()
            sample_rate = reader.getframerate()
            raw = reader.readframes(reader.getnframes())
    except (wave.Error, EOFError) as exc:
        raise ValueError(f"Unreadable WAV data: {exc}") from exc

    dtype = _PCM_DTYPES.get(width)
    if dtype is None:
        raise ValueError(f"Unsupported WAV sample width: {width * 8} bits")
    pcm = np.frombuffer(raw, dtype=dtype).astype(np.float32)
    if width == 1:
        pcm = (pcm - 128.0) / 128.0
    else:
        pcm /= float(2 ** (8 * width - 1))
    return pcm.reshape(-1, channels), sample_rate


__all__ = [
    "AutomationRecord",
    "NodeConnection",
    "SimulatedAnalyserNode",
    "SimulatedAudioBackend",
    "SimulatedBufferSourceNode",
    "SimulatedChannelNode",
    "SimulatedGainNode",
    "SimulatedNode",
    "SimulatedPannerNode",
    "SimulatedParam",
    "decode_wav",
]
