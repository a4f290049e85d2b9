"""Mixing channel: one source, an ordered effect chain, volume, pan, and metering.

The signal path is always

    source -> fx[0] -> ... -> fx[n-1] -> gain -> pan -> output -> analysis tap

and is rebuilt from scratch whenever the source or the effect list changes.
Volume and pan edits never rebuild; they write straight into the fixed
gain and panner stages.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

import numpy as np

from domain.models import TrackDocument

from .backend import AudioBackend, AudioNodeHandle
from .effects import Gain, Panner
from .metrics import DEFAULT_FLOOR_DB, peak_dbfs, rms_dbfs
from .params import (
    BoolParam,
    Parameter,
    PolarParam,
    RandomSource,
    StringParam,
    UnitParam,
    WaitParam,
    sample_range,
)
from .processor import Processor
from .sources import AssetFetcher, AssetLoadError, LoopSampleSource, source_from_document

logger = logging.getLogger(__name__)


class StereoAnalysisTap:
    """Splits the track output into left/right analysers for external meters.

    The merged signal continues from :attr:`combined` into the master bus,
    so the tap sits in-line rather than on a side branch.
    """

    def __init__(self, backend: AudioBackend) -> None:
        self.input = backend.create_gain()
        self.left = backend.create_analyser()
        self.right = backend.create_analyser()
        self.combined = backend.create_analyser()
        self._splitter = backend.create_channel_splitter(2)
        self._merger = backend.create_channel_merger(2)

        self.input.connect(self._splitter)
        self._splitter.connect(self.left, 0, 0)
        self._splitter.connect(self.right, 1, 0)
        self.left.connect(self._merger, 0, 0)
        self.right.connect(self._merger, 0, 1)
        self._merger.connect(self.combined)

    def connect(self, target: AudioNodeHandle) -> None:
        self.combined.connect(target)

    def disconnect(self) -> None:
        self.combined.disconnect()

    def _frames(self) -> np.ndarray:
        return np.stack(
            [self.left.get_float_time_domain_data(), self.right.get_float_time_domain_data()],
            axis=1,
        )

    def levels(self, floor_db: float = DEFAULT_FLOOR_DB) -> Tuple[float, float]:
        """Return the current ``(left, right)`` peak levels in dBFS."""

        left, right = peak_dbfs(self._frames(), floor_db=floor_db)
        return float(left), float(right)

    def rms_levels(self, floor_db: float = DEFAULT_FLOOR_DB) -> Tuple[float, float]:
        left, right = rms_dbfs(self._frames(), floor_db=floor_db)
        return float(left), float(right)

    def destroy(self) -> None:
        for node in (self.input, self._splitter, self.left, self.right, self._merger, self.combined):
            node.disconnect()


class Track:
    """Mixing channel owned by an :class:`audio.engine.AudioEngine`."""

    def __init__(
        self,
        backend: AudioBackend,
        track_id: str,
        name: Optional[str] = None,
        *,
        fetcher: Optional[AssetFetcher] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.id = track_id
        self._backend = backend
        self._fetcher = fetcher
        self._rng: RandomSource = rng if rng is not None else np.random.default_rng()
        self._fx: List[Processor] = []
        self._destroyed = False
        self._pending_load: Optional["asyncio.Task[bool]"] = None

        self.tap = StereoAnalysisTap(backend)
        self._gain = Gain(backend)
        self._pan = Panner(backend)

        self.name = StringParam(name if name is not None else f"Track {track_id}", name="name")
        self.volume = UnitParam(1.0, name="volume")
        self.pan = PolarParam(0.0, name="pan")
        self.initial_delay = WaitParam((0.0, 0.0), name="initialDelay")
        self.is_playing = BoolParam(False, name="isPlaying")
        self.source_param: Parameter[Optional[LoopSampleSource]] = Parameter(None, name="source")

        self.volume.on_change(self._apply_volume, immediate=True)
        self.pan.on_change(self._apply_pan, immediate=True)

    def _apply_volume(self, value: float) -> None:
        self._gain.gain.value = value

    def _apply_pan(self, value: float) -> None:
        self._pan.pan.value = value

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------
    @property
    def output(self) -> AudioNodeHandle:
        return self.tap.input

    @property
    def gain_stage(self) -> Gain:
        return self._gain

    @property
    def pan_stage(self) -> Panner:
        return self._pan

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def source(self) -> Optional[LoopSampleSource]:
        return self.source_param.value

    @source.setter
    def source(self, source: Optional[LoopSampleSource]) -> None:
        if self._destroyed:
            logger.debug("Track %s is destroyed; dropping source assignment", self.id)
            if source is not None:
                source.destroy()
            return
        previous = self.source_param.value
        if previous is not None and previous is not source:
            previous.destroy()
            self.is_playing.value = False
        self.source_param.value = source
        self.rebuild_chain()

    @property
    def fx(self) -> Tuple[Processor, ...]:
        return tuple(self._fx)

    def get_fx(self, fx_id: str) -> Optional[Processor]:
        return next((fx for fx in self._fx if fx.id == fx_id), None)

    def add_fx(self, processor: Processor) -> None:
        """Append *processor* to the end of the effect chain."""

        if self.get_fx(processor.id) is not None:
            raise ValueError(f"Effect {processor.id!r} already on track {self.id!r}")
        self._fx.append(processor)
        self.rebuild_chain()

    def remove_fx(self, fx_id: str) -> Optional[Processor]:
        """Detach the effect with *fx_id* and hand it back; unknown ids are ignored."""

        processor = self.get_fx(fx_id)
        if processor is None:
            return None
        processor.disconnect()
        self._fx.remove(processor)
        self.rebuild_chain()
        return processor

    def move_fx(self, from_index: int, to_index: int) -> None:
        """Reorder the effect chain, clamping the destination index."""

        if from_index < 0 or from_index >= len(self._fx):
            raise IndexError("Effect move source index out of range")
        to_index = max(0, min(int(to_index), len(self._fx) - 1))
        processor = self._fx.pop(from_index)
        self._fx.insert(to_index, processor)
        self.rebuild_chain()

    def _disconnect_chain(self) -> None:
        source = self.source_param.value
        if source is not None:
            source.disconnect()
        for processor in self._fx:
            processor.disconnect()
        self._gain.disconnect()
        self._pan.disconnect()

    def rebuild_chain(self) -> None:
        """Tear down and rewire the whole signal path for the current membership."""

        self._disconnect_chain()
        source = self.source_param.value
        if source is None:
            logger.debug("Track %s has no source; chain left idle", self.id)
            return

        last = source.output
        for processor in self._fx:
            last.connect(processor.input)
            last = processor.output
        last.connect(self._gain.input)
        self._gain.connect(self._pan.input)
        self._pan.connect(self.output)
        logger.debug("Rebuilt chain for track %s with %d effect(s)", self.id, len(self._fx))

    def connect(self, target: AudioNodeHandle) -> None:
        self.tap.connect(target)

    def disconnect(self) -> None:
        self._disconnect_chain()
        self.tap.disconnect()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    @property
    def pending_load(self) -> Optional["asyncio.Task[bool]"]:
        return self._pending_load

    def set_loop_sample(self, url: str) -> "asyncio.Task[bool]":
        """Replace the source with a loop of *url* and start loading it.

        Must be called from a running event loop.  The returned task
        resolves to ``True`` once the sample is playable; failures are
        logged and resolve to ``False``.
        """

        if self._fetcher is None:
            raise RuntimeError(f"Track {self.id!r} has no asset fetcher")
        source = LoopSampleSource(self._backend, self._fetcher, rng=self._rng)
        self.source = source
        self._pending_load = asyncio.get_running_loop().create_task(
            self._load_source(source, url)
        )
        return self._pending_load

    async def _load_source(self, source: LoopSampleSource, url: str) -> bool:
        try:
            await source.load(url)
        except AssetLoadError:
            logger.exception("Error loading loop sample for track %s", self.name.value)
            return False
        if self._destroyed or source is not self.source_param.value:
            logger.debug("Track %s moved on before %s finished loading", self.id, url)
            return False
        return source.is_loaded.value

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def play(self, start_time: float) -> None:
        """Start the source at *start_time* plus this track's initial delay."""

        source = self.source_param.value
        if source is None:
            return
        delay = sample_range(self.initial_delay.value, self._rng)
        source.play(start_time + delay)
        self.is_playing.value = True

    def pause(self) -> None:
        source = self.source_param.value
        if source is None:
            return
        source.pause()
        self.is_playing.value = False

    def resume(self, start_time: Optional[float] = None) -> None:
        source = self.source_param.value
        if source is None:
            return
        source.resume(start_time)
        self.is_playing.value = True

    def stop(self) -> None:
        source = self.source_param.value
        if source is None:
            return
        source.stop()
        self.is_playing.value = False

    def destroy(self) -> None:
        if self._destroyed:
            return
        self.disconnect()
        source = self.source_param.value
        if source is not None:
            source.destroy()
        for processor in self._fx:
            processor.destroy()
        self._fx.clear()
        self._gain.destroy()
        self._pan.destroy()
        self.tap.destroy()
        self._destroyed = True
        self.source_param.value = None
        self.is_playing.value = False
        for parameter in (
            self.name,
            self.volume,
            self.pan,
            self.initial_delay,
            self.is_playing,
            self.source_param,
        ):
            parameter.clear_listeners()
        logger.debug("Destroyed track %s", self.id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_document(self) -> TrackDocument:
        source = self.source_param.value
        return TrackDocument(
            id=self.id,
            name=self.name.value,
            volume=self.volume.value,
            pan=self.pan.value,
            initial_delay=self.initial_delay.value,
            source=source.to_document() if source is not None else None,
        )

    @classmethod
    async def from_document(
        cls,
        backend: AudioBackend,
        document: TrackDocument,
        *,
        fetcher: Optional[AssetFetcher] = None,
        rng: Optional[RandomSource] = None,
    ) -> "Track":
        """Rebuild a track, awaiting its source's asset before returning.

        A source that fails to load is logged and dropped, leaving a silent
        track rather than failing the whole restore.
        """

        track = cls(backend, document.id, document.name, fetcher=fetcher, rng=rng)
        track.volume.value = document.volume
        track.pan.value = document.pan
        track.initial_delay.value = document.initial_delay
        if document.source is None:
            return track
        if fetcher is None:
            raise ValueError(f"Track {document.id!r} has a source but no asset fetcher was given")
        try:
            source = await source_from_document(backend, fetcher, document.source, rng=track._rng)
        except AssetLoadError:
            logger.exception("Error restoring source for track %s", document.name)
            return track
        track.source = source
        return track


__all__ = ["StereoAnalysisTap", "Track"]
