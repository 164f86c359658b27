from __future__ import annotations

from .audio import SampleBuffer, decode_wav, encode_wav, read_wav, write_wav
from .batch import BatchReport, FfmpegEncoder, generate_all
from .config import (
    SAMPLE_RATE,
    SEVERITIES,
    SUPPORTED_FREQUENCIES,
    HearingSeverity,
    ModulationBand,
    SynthesisSettings,
    TreatmentProfile,
    load_profile,
    modulation_band,
)
from .errors import (
    AudioBackendUnavailable,
    ConfigurationError,
    EncodingFailure,
    RenderAborted,
    ResourceExhaustion,
    UntinnitusError,
)
from .hearing import correction_db, correction_gain
from .playback import MixingGraph, ScheduledChunk, open_output
from .render import OfflineRenderer, RenderHooks
from .scheduler import RealTimeScheduler, SessionState
from .session import TreatmentSession
from .synth import ChunkParams, Harmonic, draw_chunk_params, plan_harmonics, synthesize_chunk

__all__ = [
    "SAMPLE_RATE",
    "SEVERITIES",
    "SUPPORTED_FREQUENCIES",
    "AudioBackendUnavailable",
    "BatchReport",
    "ChunkParams",
    "ConfigurationError",
    "EncodingFailure",
    "FfmpegEncoder",
    "Harmonic",
    "HearingSeverity",
    "MixingGraph",
    "ModulationBand",
    "OfflineRenderer",
    "RealTimeScheduler",
    "RenderAborted",
    "RenderHooks",
    "ResourceExhaustion",
    "SampleBuffer",
    "ScheduledChunk",
    "SessionState",
    "SynthesisSettings",
    "TreatmentProfile",
    "TreatmentSession",
    "UntinnitusError",
    "correction_db",
    "correction_gain",
    "decode_wav",
    "draw_chunk_params",
    "encode_wav",
    "generate_all",
    "load_profile",
    "modulation_band",
    "open_output",
    "plan_harmonics",
    "read_wav",
    "synthesize_chunk",
    "write_wav",
]

__version__ = "0.1.0"
