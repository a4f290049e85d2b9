import asyncio
import io
import sys
from pathlib import Path
from typing import Dict, List
import wave

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from audio.simulated import SimulatedAudioBackend  # noqa: E402

DEFAULT_SAMPLE = "/audio/samples/lovebird-chirp.wav"
RAIN_SAMPLE = "/audio/samples/rain.wav"


def make_wav(seconds: float = 2.0, *, sample_rate: int = 8_000, channels: int = 2) -> bytes:
    """Encode a quiet 16-bit sine as WAV bytes."""

    frames = int(round(seconds * sample_rate))
    t = np.arange(frames, dtype=np.float32) / sample_rate
    tone = 0.25 * np.sin(2.0 * np.pi * 220.0 * t)
    pcm = np.repeat(tone[:, None], channels, axis=1)
    data = (pcm * 32767).astype("<i2").tobytes()
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as writer:
        writer.setnchannels(channels)
        writer.setsampwidth(2)
        writer.setframerate(sample_rate)
        writer.writeframes(data)
    return buffer.getvalue()


class MemoryFetcher:
    """Asset fetcher serving bytes from a dict, optionally held behind a gate."""

    def __init__(self, assets: Dict[str, bytes]) -> None:
        self.assets = dict(assets)
        self.requests: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}

    def hold(self, url: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[url] = gate
        return gate

    async def fetch(self, url: str) -> bytes:
        self.requests.append(url)
        gate = self.gates.get(url)
        if gate is not None:
            await gate.wait()
        try:
            return self.assets[url]
        except KeyError as exc:
            raise FileNotFoundError(url) from exc


@pytest.fixture()
def backend() -> SimulatedAudioBackend:
    return SimulatedAudioBackend(sample_rate=8_000)


@pytest.fixture()
def fetcher() -> MemoryFetcher:
    return MemoryFetcher(
        {
            DEFAULT_SAMPLE: make_wav(2.0),
            RAIN_SAMPLE: make_wav(4.0),
        }
    )


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
