"""Pydantic models describing persisted mixer sessions.

The JSON layout is camelCase (``loopStart``, ``fadeIn``, ``initialDelay``)
so documents written by earlier front-ends load unchanged.  Models only
check structure; numeric ranges are normalized by the runtime parameters
when a document is applied to an engine.
"""
from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

SCHEMA_VERSION = 1

RangeValue = Tuple[float, float]


def _widen_range(value: object) -> object:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (value, value)
    return value


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoopSourceDocument(_Document):
    """Persisted looping sample source."""

    type: Literal["loop"] = "loop"
    url: str
    loop_start: float = Field(0.0, alias="loopStart", description="Loop point in seconds")
    fade_in: RangeValue = Field(
        (0.0, 0.0), alias="fadeIn", description="Fade-in duration bounds in seconds"
    )

    @field_validator("fade_in", mode="before")
    @classmethod
    def widen_fade_in(cls, value: object) -> object:
        return _widen_range(value)


# New source kinds join this alias as a discriminated union on ``type``.
SourceDocument = LoopSourceDocument


class TrackDocument(_Document):
    """Persisted mixing channel."""

    id: str
    name: str
    volume: float = 1.0
    pan: float = 0.0
    initial_delay: RangeValue = Field(
        (0.0, 0.0), alias="initialDelay", description="Start delay bounds in seconds"
    )
    source: Optional[SourceDocument] = None

    @field_validator("initial_delay", mode="before")
    @classmethod
    def widen_initial_delay(cls, value: object) -> object:
        return _widen_range(value)


class SessionDocument(_Document):
    """Whole-engine snapshot: master levels plus tracks in display order."""

    version: int = Field(SCHEMA_VERSION, ge=1)
    volume: float = Field(1.0, validation_alias=AliasChoices("volume", "masterVolume"))
    pan: float = Field(0.0, validation_alias=AliasChoices("pan", "masterPan"))
    tracks: List[TrackDocument] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_session(self) -> "SessionDocument":
        if self.version > SCHEMA_VERSION:
            raise ValueError(
                f"Session version {self.version} is newer than supported version {SCHEMA_VERSION}"
            )
        seen: set[str] = set()
        for track in self.tracks:
            if track.id in seen:
                raise ValueError(f"Duplicate track id {track.id!r}")
            seen.add(track.id)
        return self

    def track(self, track_id: str) -> Optional[TrackDocument]:
        return next((track for track in self.tracks if track.id == track_id), None)


__all__ = [
    "LoopSourceDocument",
    "RangeValue",
    "SCHEMA_VERSION",
    "SessionDocument",
    "SourceDocument",
    "TrackDocument",
]
