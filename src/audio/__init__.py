"""Reactive audio-graph orchestration for the ambient loop mixer."""
from .backend import AudioBackend, SampleBuffer
from .effects import Gain, Panner
from .engine import AudioEngine, EngineConfig
from .metrics import peak_dbfs, rms_dbfs, rms_per_channel
from .params import (
    BoolParam,
    Parameter,
    PolarParam,
    PositiveParam,
    RangeParam,
    StringParam,
    UnitParam,
    WaitParam,
    sample_range,
)
from .processor import PlayState, Processor
from .simulated import SimulatedAudioBackend
from .sources import (
    AssetFetcher,
    AssetLoadError,
    FileAssetFetcher,
    LoopSampleSource,
    SourceKind,
    source_from_document,
)
from .track import StereoAnalysisTap, Track

__all__ = [
    "AssetFetcher",
    "AssetLoadError",
    "AudioBackend",
    "AudioEngine",
    "BoolParam",
    "EngineConfig",
    "FileAssetFetcher",
    "Gain",
    "LoopSampleSource",
    "Panner",
    "Parameter",
    "PlayState",
    "PolarParam",
    "PositiveParam",
    "Processor",
    "RangeParam",
    "SampleBuffer",
    "SimulatedAudioBackend",
    "SourceKind",
    "StereoAnalysisTap",
    "StringParam",
    "Track",
    "UnitParam",
    "WaitParam",
    "peak_dbfs",
    "rms_dbfs",
    "rms_per_channel",
    "sample_range",
    "source_from_document",
]
