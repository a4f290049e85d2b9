"""Transport and master bus for an ambient loop session.

One :class:`AudioEngine` exists per session.  It owns the tracks, routes
them into the master pan/gain stages, runs the stopped/playing/paused
state machine against the backend clock, and converts the whole session
to and from :class:`domain.models.SessionDocument`.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Mapping, Optional, Tuple, Union

import numpy as np

from domain.models import SCHEMA_VERSION, SessionDocument
from domain.persistence import SessionSerializer

from .backend import AudioBackend
from .params import Parameter, PolarParam, RandomSource, UnitParam
from .processor import PlayState
from .sources import AssetFetcher
from .track import Track

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Session-wide settings."""

    default_sample_url: str = "/audio/samples/lovebird-chirp.wav"
    track_id_prefix: str = "track-"
    schema_version: int = SCHEMA_VERSION
    seed: Optional[int] = None


class AudioEngine:
    """Owns the track collection, master bus, and global play state."""

    def __init__(
        self,
        backend: AudioBackend,
        fetcher: AssetFetcher,
        *,
        config: Optional[EngineConfig] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.backend = backend
        self._fetcher = fetcher
        self._rng: RandomSource = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.master_pan = backend.create_panner()
        self.master_gain = backend.create_gain()
        self.master_pan.connect(self.master_gain)
        self.master_gain.connect(backend.destination)

        self.volume = UnitParam(1.0, name="volume")
        self.pan = PolarParam(0.0, name="pan")
        self.state: Parameter[PlayState] = Parameter(PlayState.STOPPED, name="state")
        self.tracks: Parameter[Tuple[Track, ...]] = Parameter((), name="tracks")

        self.volume.on_change(
            lambda value: self.master_gain.gain.set_value_at_time(value, backend.current_time),
            immediate=True,
        )
        self.pan.on_change(
            lambda value: self.master_pan.pan.set_value_at_time(value, backend.current_time),
            immediate=True,
        )

        self._next_track_index = 0
        self._start_time = 0.0
        self._paused_elapsed = 0.0
        self._transport_epoch = 0
        self._restore_generation = 0
        self._restart_pending = False
        self._transport_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------
    @property
    def start_time(self) -> float:
        return self._start_time

    @property
    def elapsed_time(self) -> float:
        """Seconds of playback in the current session; frozen while paused."""

        state = self.state.value
        if state is PlayState.STOPPED:
            return 0.0
        if state is PlayState.PAUSED:
            return self._paused_elapsed
        return self.backend.current_time - self._start_time

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def play(self) -> None:
        self._restart_pending = False
        async with self._transport_lock:
            if self.state.value is not PlayState.STOPPED:
                return
            epoch = self._transport_epoch
            await self.backend.resume()
            if epoch != self._transport_epoch:
                logger.debug("Play superseded by stop while resuming backend")
                return
            now = self.backend.current_time
            self._start_time = now
            for track in self.tracks.value:
                track.play(now)
            self.state.value = PlayState.PLAYING
            logger.debug("Engine playing from %.3f with %d track(s)", now, len(self.tracks.value))

    async def pause(self) -> None:
        async with self._transport_lock:
            if self.state.value is not PlayState.PLAYING:
                return
            epoch = self._transport_epoch
            await self.backend.suspend()
            if epoch != self._transport_epoch:
                return
            self._paused_elapsed = self.backend.current_time - self._start_time
            for track in self.tracks.value:
                track.pause()
            self.state.value = PlayState.PAUSED
            logger.debug("Engine paused at %.3fs elapsed", self._paused_elapsed)

    async def resume(self) -> None:
        async with self._transport_lock:
            if self.state.value is not PlayState.PAUSED:
                return
            epoch = self._transport_epoch
            await self.backend.resume()
            if epoch != self._transport_epoch:
                return
            now = self.backend.current_time
            self._start_time = now - self._paused_elapsed
            for track in self.tracks.value:
                track.resume(now)
            self.state.value = PlayState.PLAYING
            logger.debug("Engine resumed at %.3f", now)

    def stop(self) -> None:
        """Stop every track; legal from any state."""

        for track in self.tracks.value:
            track.stop()
        self._start_time = 0.0
        self._paused_elapsed = 0.0
        self._transport_epoch += 1
        self._restart_pending = False
        self.state.value = PlayState.STOPPED
        logger.debug("Engine stopped")

    async def toggle_state(self) -> None:
        state = self.state.value
        if state is PlayState.STOPPED:
            await self.play()
        elif state is PlayState.PLAYING:
            await self.pause()
        else:
            await self.resume()

    # ------------------------------------------------------------------
    # Tracks
    # ------------------------------------------------------------------
    def get_track(self, track_id: str) -> Optional[Track]:
        return next((track for track in self.tracks.value if track.id == track_id), None)

    def _allocate_track_id(self) -> str:
        while True:
            candidate = f"{self.config.track_id_prefix}{self._next_track_index}"
            self._next_track_index += 1
            if self.get_track(candidate) is None:
                return candidate

    def add_track(self, track: Track) -> Track:
        """Route *track* into the master bus and append it to the collection."""

        if self.get_track(track.id) is not None:
            raise ValueError(f"Track {track.id!r} already registered")
        track.connect(self.master_pan)
        self.tracks.value = (*self.tracks.value, track)
        return track

    def create_track(self, track_id: Optional[str] = None) -> Track:
        """Create a track loaded with the default loop sample.

        Must be called from a running event loop; the sample loads in the
        background via :attr:`Track.pending_load`.
        """

        if track_id is None:
            track_id = self._allocate_track_id()
        elif self.get_track(track_id) is not None:
            raise ValueError(f"Track {track_id!r} already registered")
        track = Track(self.backend, track_id, fetcher=self._fetcher, rng=self._rng)
        track.set_loop_sample(self.config.default_sample_url)
        logger.debug("Created track %s", track_id)
        return self.add_track(track)

    def remove_track(self, track_id: str) -> None:
        track = self.get_track(track_id)
        if track is None:
            return
        track.destroy()
        self.tracks.value = tuple(item for item in self.tracks.value if item is not track)
        logger.debug("Removed track %s", track_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_document(self) -> SessionDocument:
        return SessionDocument(
            version=self.config.schema_version,
            volume=self.volume.value,
            pan=self.pan.value,
            tracks=[track.to_document() for track in self.tracks.value],
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready snapshot of the session."""

        return SessionSerializer.to_dict(self.to_document())

    async def load(self, data: Union[SessionDocument, Mapping[str, Any]]) -> None:
        """Replace the session with *data*.

        Tracks are restored in order, each awaiting its sample before it is
        attached.  If the engine was playing, the restored session starts
        playing from the current clock once every track is attached.
        """

        document = data if isinstance(data, SessionDocument) else SessionSerializer.from_dict(data)
        # a load superseding another restore inherits its pending restart
        restart = self._restart_pending or self.state.value is PlayState.PLAYING

        self.stop()
        self._restart_pending = restart
        for track in self.tracks.value:
            track.destroy()
        self.tracks.value = ()
        self._restore_generation += 1
        generation = self._restore_generation

        self.volume.value = document.volume
        self.pan.value = document.pan

        for track_document in document.tracks:
            track = await Track.from_document(
                self.backend, track_document, fetcher=self._fetcher, rng=self._rng
            )
            if generation != self._restore_generation:
                logger.info("Restore of %d track(s) superseded by a newer load", len(document.tracks))
                track.destroy()
                return
            self.add_track(track)
            if self.state.value is PlayState.PLAYING:
                track.play(self.backend.current_time)
        logger.info("Restored session with %d track(s)", len(self.tracks.value))

        if self._restart_pending and self.state.value is PlayState.STOPPED:
            await self.play()

    @classmethod
    async def from_dict(
        cls,
        backend: AudioBackend,
        fetcher: AssetFetcher,
        data: Union[SessionDocument, Mapping[str, Any]],
        *,
        config: Optional[EngineConfig] = None,
        rng: Optional[RandomSource] = None,
    ) -> "AudioEngine":
        engine = cls(backend, fetcher, config=config, rng=rng)
        await engine.load(data)
        return engine

    def destroy(self) -> None:
        self.stop()
        for track in self.tracks.value:
            track.destroy()
        self.tracks.value = ()
        self.master_pan.disconnect()
        self.master_gain.disconnect()
        for parameter in (self.volume, self.pan, self.state, self.tracks):
            parameter.clear_listeners()


__all__ = ["AudioEngine", "EngineConfig"]
