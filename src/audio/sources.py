"""Signal sources and the asset fetching they depend on.

A source owns a small gain stage (its output) that doubles as the fade-in
envelope.  Each ``play`` creates a fresh one-shot buffer player feeding
that stage, so at most one live playback instance exists at a time.
"""
from __future__ import annotations

import asyncio
from enum import Enum
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Type

import numpy as np

from domain.models import LoopSourceDocument

from .backend import AudioBackend, AudioNodeHandle, BufferSourceNodeHandle, SampleBuffer
from .params import (
    BoolParam,
    Parameter,
    PositiveParam,
    RandomSource,
    WaitParam,
    sample_range,
)
from .processor import PlayState, next_processor_id

logger = logging.getLogger(__name__)


class AssetLoadError(RuntimeError):
    """Raised when a sample cannot be fetched or decoded."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Could not load {url!r}: {reason}")
        self.url = url


class AssetFetcher(Protocol):
    async def fetch(self, url: str) -> bytes:
        """Return the raw bytes stored under *url*."""


class FileAssetFetcher:
    """Resolve sample URLs against a local asset directory."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)

    def resolve(self, url: str) -> Path:
        return self.base_path / url.lstrip("/")

    async def fetch(self, url: str) -> bytes:
        return await asyncio.to_thread(self.resolve(url).read_bytes)


class SourceKind(str, Enum):
    """Tag written to the ``type`` field of persisted sources."""

    LOOP = "loop"


class LoopSampleSource:
    """Looping sample player with a randomized-or-fixed fade-in."""

    kind = SourceKind.LOOP

    def __init__(
        self,
        backend: AudioBackend,
        fetcher: AssetFetcher,
        *,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.id = next_processor_id(type(self).__name__)
        self._backend = backend
        self._fetcher = fetcher
        self._rng: RandomSource = rng if rng is not None else np.random.default_rng()
        self._output = backend.create_gain()
        self._node: Optional[BufferSourceNodeHandle] = None
        self._buffer: Optional[SampleBuffer] = None
        self._url: Optional[str] = None
        self._start_time = 0.0
        self._start_offset = 0.0
        self._pause_offset = 0.0
        self._destroyed = False
        self.last_fade = 0.0

        self.fade_in = WaitParam((0.0, 0.0), name="fadeIn")
        self.loop_start = PositiveParam(0.0, name="loopStart")
        self.is_loaded = BoolParam(False, name="isLoaded")
        self.is_playing = BoolParam(False, name="isPlaying")
        self.play_state: Parameter[PlayState] = Parameter(PlayState.STOPPED, name="playState")
        self._params: Dict[str, Parameter] = {
            "fadeIn": self.fade_in,
            "loopStart": self.loop_start,
        }

    # ------------------------------------------------------------------
    # Processor surface
    # ------------------------------------------------------------------
    @property
    def type(self) -> str:
        return self.kind.value

    @property
    def params(self) -> Mapping[str, Parameter]:
        return self._params

    @property
    def input(self) -> None:
        return None

    @property
    def output(self) -> AudioNodeHandle:
        return self._output

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def buffer(self) -> Optional[SampleBuffer]:
        return self._buffer

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def connect(self, target: AudioNodeHandle) -> None:
        self._output.connect(target)
        logger.debug("Connected %s", self.id)

    def disconnect(self) -> None:
        self._output.disconnect()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load(self, url: str) -> None:
        """Fetch and decode *url*.

        Failures surface as :class:`AssetLoadError`.  A load that completes
        after :meth:`destroy` is discarded without touching the backend.
        """

        if self._destroyed:
            logger.debug("Ignoring load of %s on destroyed source %s", url, self.id)
            return
        try:
            data = await self._fetcher.fetch(url)
            if self._destroyed:
                logger.debug("Discarding fetched %s for destroyed source %s", url, self.id)
                return
            buffer = await self._backend.decode_asset(data)
        except AssetLoadError:
            raise
        except Exception as exc:
            raise AssetLoadError(url, str(exc)) from exc
        if self._destroyed:
            logger.debug("Discarding decoded %s for destroyed source %s", url, self.id)
            return
        self._buffer = buffer
        self._url = url
        self.is_loaded.value = True
        logger.debug("Loaded %s for source %s (%.2fs)", url, self.id, buffer.duration)

    # ------------------------------------------------------------------
    # Playback lifecycle
    # ------------------------------------------------------------------
    @property
    def elapsed_time(self) -> float:
        """Position inside the buffer in seconds, wrapped across loop cycles."""

        state = self.play_state.value
        if state is PlayState.STOPPED:
            return 0.0
        if state is PlayState.PAUSED:
            return self._pause_offset
        position = self._start_offset + max(self._backend.current_time - self._start_time, 0.0)
        return self._wrap(position)

    def _wrap(self, position: float) -> float:
        if self._buffer is None:
            return position
        duration = self._buffer.duration
        if duration <= 0.0 or position < duration:
            return position
        loop_start = min(self.loop_start.value, duration)
        span = duration - loop_start
        if span <= 0.0:
            return position % duration
        return loop_start + (position - loop_start) % span

    def play(self, start_time: float = 0.0, offset: float = 0.0, skip_fade: bool = False) -> None:
        if self._buffer is None:
            logger.debug("Source %s has no buffer; play ignored", self.id)
            return
        self._halt_node()

        node = self._backend.create_buffer_source()
        node.buffer = self._buffer
        node.loop = True
        node.loop_start = self.loop_start.value
        node.connect(self._output)

        now = self._backend.current_time
        fade = 0.0 if skip_fade else sample_range(self.fade_in.value, self._rng)
        envelope = self._output.gain
        envelope.cancel_scheduled_values(now)
        if fade > 0.0:
            ramp_start = max(start_time, now)
            envelope.set_value_at_time(0.0, now)
            envelope.set_value_at_time(0.0, ramp_start)
            envelope.linear_ramp_to_value_at_time(1.0, ramp_start + fade)
        else:
            envelope.set_value_at_time(1.0, now)
        node.start(start_time, offset)

        self._node = node
        self._start_time = float(start_time)
        self._start_offset = float(offset)
        self.last_fade = fade
        self._set_state(PlayState.PLAYING)
        logger.debug(
            "Playing %s at %.3f from offset %.3f (fade %.3fs)", self.id, start_time, offset, fade
        )

    def pause(self) -> None:
        if self.play_state.value is not PlayState.PLAYING:
            return
        offset = self.elapsed_time
        self._halt_node()
        self._pause_offset = offset
        self._set_state(PlayState.PAUSED)
        logger.debug("Paused %s at offset %.3f", self.id, offset)

    def resume(self, start_time: Optional[float] = None) -> None:
        state = self.play_state.value
        if state is PlayState.PLAYING:
            return
        when = self._backend.current_time if start_time is None else start_time
        if state is PlayState.STOPPED:
            # never paused: start fresh with the usual fade-in
            self.play(when)
            return
        self.play(when, self._pause_offset, skip_fade=True)

    def stop(self) -> None:
        self._halt_node()
        self._start_time = 0.0
        self._start_offset = 0.0
        self._pause_offset = 0.0
        self._set_state(PlayState.STOPPED)

    def destroy(self) -> None:
        self.stop()
        self.disconnect()
        self._buffer = None
        self._destroyed = True
        self.is_loaded.value = False
        for parameter in (*self._params.values(), self.is_loaded, self.is_playing, self.play_state):
            parameter.clear_listeners()
        logger.debug("Destroyed %s", self.id)

    def _halt_node(self) -> None:
        if self._node is None:
            return
        self._node.stop()
        self._node.disconnect()
        self._node = None

    def _set_state(self, state: PlayState) -> None:
        self.play_state.value = state
        self.is_playing.value = state is PlayState.PLAYING

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_document(self) -> Optional[LoopSourceDocument]:
        """Return the persisted form, or ``None`` until an asset has loaded."""

        if self._url is None:
            return None
        return LoopSourceDocument(
            url=self._url,
            loop_start=self.loop_start.value,
            fade_in=self.fade_in.value,
        )

    def apply_document(self, document: LoopSourceDocument) -> None:
        self.loop_start.value = document.loop_start
        self.fade_in.value = document.fade_in


SOURCE_KINDS: Dict[SourceKind, Type[LoopSampleSource]] = {
    SourceKind.LOOP: LoopSampleSource,
}


async def source_from_document(
    backend: AudioBackend,
    fetcher: AssetFetcher,
    document: LoopSourceDocument,
    *,
    rng: Optional[RandomSource] = None,
) -> LoopSampleSource:
    """Build a source for *document*, apply its parameters, and await the asset load."""

    source_type = SOURCE_KINDS[SourceKind(document.type)]
    source = source_type(backend, fetcher, rng=rng)
    source.apply_document(document)
    try:
        await source.load(document.url)
    except AssetLoadError:
        source.destroy()
        raise
    return source


__all__ = [
    "AssetFetcher",
    "AssetLoadError",
    "FileAssetFetcher",
    "LoopSampleSource",
    "SOURCE_KINDS",
    "SourceKind",
    "source_from_document",
]
