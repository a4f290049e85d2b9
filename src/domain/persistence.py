"""JSON storage for mixer sessions."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping

from .models import SessionDocument


class SessionSerializer:
    """Moves sessions between :class:`SessionDocument` and plain JSON data."""

    @staticmethod
    def to_dict(document: SessionDocument) -> Dict[str, Any]:
        """camelCase keys; tracks without a source carry no ``source`` key."""

        return document.model_dump(mode="json", by_alias=True, exclude_none=True)

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> SessionDocument:
        return SessionDocument.model_validate(dict(payload))

    @staticmethod
    def dumps(document: SessionDocument) -> str:
        return json.dumps(SessionSerializer.to_dict(document), indent=2)


class SessionFileAdapter:
    """Saves and reopens sessions as ``.json`` files inside one directory."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)

    def save(self, document: SessionDocument, filename: str) -> Path:
        destination = self.base_path / filename
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(SessionSerializer.dumps(document), encoding="utf-8")
        return destination

    def load(self, filename: str) -> SessionDocument:
        """Read *filename*; malformed sessions raise ``ValidationError``."""

        payload = json.loads((self.base_path / filename).read_text(encoding="utf-8"))
        return SessionSerializer.from_dict(payload)


__all__ = ["SessionFileAdapter", "SessionSerializer"]
