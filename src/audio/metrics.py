"""Level helpers for the per-track analysis tap."""
from __future__ import annotations

import numpy as np

DEFAULT_FLOOR_DB = -60.0


def _as_frames(buffer: np.ndarray) -> np.ndarray:
    buffer = np.asarray(buffer, dtype=np.float32)
    if buffer.ndim == 1:
        buffer = buffer[:, None]
    return buffer


def rms_per_channel(buffer: np.ndarray) -> np.ndarray:
    """Return root-mean-square level for each channel of a ``-1..1`` buffer."""

    buffer = _as_frames(buffer)
    if buffer.size == 0:
        return np.zeros(buffer.shape[1], dtype=np.float32)
    return np.sqrt(np.mean(np.square(buffer), axis=0), dtype=np.float32)


def rms_dbfs(buffer: np.ndarray, *, floor_db: float = DEFAULT_FLOOR_DB) -> np.ndarray:
    """Channel RMS in dBFS, never below *floor_db*."""

    rms = rms_per_channel(buffer)
    with np.errstate(divide="ignore"):
        db = 20.0 * np.log10(np.maximum(rms, 1e-8))
    return np.maximum(db, floor_db).astype(np.float32)


def peak_dbfs(buffer: np.ndarray, *, floor_db: float = DEFAULT_FLOOR_DB) -> np.ndarray:
    """Channel peak magnitude in dBFS, never below *floor_db*.

    Silence reads as the floor, which is what meters draw as "off".
    """

    buffer = _as_frames(buffer)
    if buffer.size == 0:
        return np.full(buffer.shape[1], floor_db, dtype=np.float32)
    peak = np.max(np.abs(buffer), axis=0)
    db = 20.0 * np.log10(np.maximum(peak, 1e-8))
    return np.maximum(db, floor_db).astype(np.float32)


__all__ = ["DEFAULT_FLOOR_DB", "peak_dbfs", "rms_dbfs", "rms_per_channel"]
