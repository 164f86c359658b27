from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

_LOGGER = logging.getLogger("untinnitus.config")

HearingSeverity = Literal["normal", "mild", "moderate", "severe"]
SEVERITIES: tuple[HearingSeverity, ...] = get_args(HearingSeverity)

SUPPORTED_FREQUENCIES: tuple[int, ...] = (1000, 2000, 4000, 5700, 8000, 9500, 11000, 13000)
QUICK_FREQUENCIES: tuple[int, ...] = (8000,)

SAMPLE_RATE = 44_100
CHUNK_SECONDS = 4.0
SESSION_SECONDS = 3600.0
LOOK_AHEAD_SECONDS = 0.1
POLL_INTERVAL_SECONDS = 0.05
DEFAULT_OUTPUT_GAIN = 0.3
DEFAULT_BITRATE_KBPS = 128

OUTPUT_DIR_ENV = "UNTINNITUS_OUTPUT_DIR"
_OCTAVE_HALF = math.sqrt(2.0)


def default_output_dir() -> Path:
    configured = os.environ.get(OUTPUT_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path("audio-files")


class ModulationBand(BaseModel):
    """Half-octave band either side of the tinnitus pitch."""

    lower_hz: float
    center_hz: float
    upper_hz: float

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_order(self) -> "ModulationBand":
        if not self.lower_hz < self.center_hz < self.upper_hz:
            raise ValueError("band edges must satisfy lower < center < upper")
        return self

    def contains(self, frequency_hz: float) -> bool:
        return self.lower_hz <= frequency_hz <= self.upper_hz


def modulation_band(tinnitus_frequency_hz: float) -> ModulationBand:
    try:
        center = float(tinnitus_frequency_hz)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"tinnitus frequency must be a number, got {tinnitus_frequency_hz!r}"
        ) from exc
    if not math.isfinite(center) or center <= 0:
        raise ConfigurationError(f"tinnitus frequency must be finite and > 0, got {center}")
    band = ModulationBand(
        lower_hz=center / _OCTAVE_HALF,
        center_hz=center,
        upper_hz=center * _OCTAVE_HALF,
    )
    _LOGGER.debug(
        "Modulation band: %.0f - %.0f Hz (center: %.0f Hz)",
        band.lower_hz,
        band.upper_hz,
        band.center_hz,
    )
    return band


class TreatmentProfile(BaseModel):
    tinnitus_frequency_hz: float
    hearing_severity: HearingSeverity = "normal"
    output_gain: float = Field(default=DEFAULT_OUTPUT_GAIN, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("tinnitus_frequency_hz")
    @classmethod
    def _validate_frequency(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("tinnitus_frequency_hz must be finite and > 0")
        return value

    @property
    def band(self) -> ModulationBand:
        return modulation_band(self.tinnitus_frequency_hz)


def load_profile(data: Mapping[str, Any]) -> TreatmentProfile:
    """Validate raw session input, surfacing every failure as ConfigurationError."""

    if data.get("tinnitus_frequency_hz") is None:
        raise ConfigurationError("tinnitus_frequency_hz is required before synthesis")
    try:
        return TreatmentProfile.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid treatment profile: {exc}") from exc


class SynthesisSettings(BaseModel):
    """Constants of the decorrelating harmonic complex."""

    depth: float = 1.0
    temporal_rate_hz: float = 1.0
    spectral_rate_mean: float = 4.5
    spectral_rate_range: float = 3.0
    spectral_rate_change_hz: float = 0.125
    fundamental_min_hz: float = 96.0
    fundamental_max_hz: float = 256.0
    window_low_hz: float = 1000.0
    window_high_hz: float = 16000.0
    level: float = 0.5
    chunk_seconds: float = Field(default=CHUNK_SECONDS, gt=0.0)
    # None evaluates the envelope per sample; a step holds it piecewise-constant.
    control_interval: float | None = Field(default=None, gt=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_ranges(self) -> "SynthesisSettings":
        if not 0 < self.fundamental_min_hz < self.fundamental_max_hz:
            raise ValueError("fundamental range must be increasing and positive")
        if not 0 < self.window_low_hz < self.window_high_hz:
            raise ValueError("audible window must be increasing and positive")
        return self


DEFAULT_SETTINGS = SynthesisSettings()
