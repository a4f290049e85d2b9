"""Domain package exposing session documents and persistence helpers."""
from .models import (
    SCHEMA_VERSION,
    LoopSourceDocument,
    SessionDocument,
    SourceDocument,
    TrackDocument,
)
from .persistence import SessionFileAdapter, SessionSerializer

__all__ = [
    "SCHEMA_VERSION",
    "LoopSourceDocument",
    "SessionDocument",
    "SourceDocument",
    "TrackDocument",
    "SessionFileAdapter",
    "SessionSerializer",
]
