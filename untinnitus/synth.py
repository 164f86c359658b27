"""Harmonic-complex synthesis with cross-frequency decorrelating modulation.

One chunk is a sum of sine partials at integer multiples of a random
fundamental, restricted to the 1-16 kHz window. Partials inside the
modulation band get a time-varying envelope

    A_n(t) = 1 + d * sin(2*pi*[w*t + F_n*S(t)] + q)
    S(t)   = mu + r * sin(p + 2*pi*nu*t)

where F_n is the partial's octave distance from the band center. Time is
absolute, so envelopes stay phase-continuous across chunk boundaries.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .config import (
    DEFAULT_SETTINGS,
    SAMPLE_RATE,
    HearingSeverity,
    ModulationBand,
    SynthesisSettings,
)
from .errors import ConfigurationError
from .hearing import correction_gain

_LOGGER = logging.getLogger("untinnitus.synth")

FloatArray = NDArray[np.float64]
_TWO_PI = 2.0 * np.pi


@dataclass(frozen=True, slots=True)
class ChunkParams:
    """Randomized parameters of one chunk, drawn fresh for every chunk."""

    start_time: float
    duration: float
    fundamental_hz: float
    q: float
    p: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass(frozen=True, slots=True)
class Harmonic:
    index: int
    frequency_hz: float
    in_band: bool
    base_gain: float
    octave_offset: float

    @property
    def is_modulated(self) -> bool:
        return self.in_band


def draw_chunk_params(
    rng: np.random.Generator,
    start_time: float,
    *,
    duration: float | None = None,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
) -> ChunkParams:
    # Draw order (fundamental, q, p) is part of the reproducibility contract.
    fundamental = float(rng.uniform(settings.fundamental_min_hz, settings.fundamental_max_hz))
    q = float(rng.uniform(0.0, _TWO_PI))
    p = float(rng.uniform(0.0, _TWO_PI))
    return ChunkParams(
        start_time=float(start_time),
        duration=settings.chunk_seconds if duration is None else float(duration),
        fundamental_hz=fundamental,
        q=q,
        p=p,
    )


def harmonic_range(
    fundamental_hz: float,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
) -> tuple[int, int]:
    """Lowest and highest harmonic numbers inside the audible window."""

    if not math.isfinite(fundamental_hz) or fundamental_hz <= 0:
        raise ConfigurationError(f"fundamental must be finite and > 0, got {fundamental_hz}")
    return (
        math.ceil(settings.window_low_hz / fundamental_hz),
        math.floor(settings.window_high_hz / fundamental_hz),
    )


def plan_harmonics(
    fundamental_hz: float,
    band: ModulationBand,
    severity: HearingSeverity,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
) -> list[Harmonic]:
    min_harmonic, max_harmonic = harmonic_range(fundamental_hz, settings)
    num_harmonics = max_harmonic - min_harmonic + 1
    if num_harmonics <= 0:
        return []
    share = settings.level / num_harmonics
    harmonics: list[Harmonic] = []
    for n in range(min_harmonic, max_harmonic + 1):
        frequency = n * fundamental_hz
        harmonics.append(
            Harmonic(
                index=n,
                frequency_hz=frequency,
                in_band=band.contains(frequency),
                base_gain=share * correction_gain(frequency, severity),
                octave_offset=math.log2(frequency / band.center_hz),
            )
        )
    return harmonics


def spectral_rate(t: FloatArray, p: float, settings: SynthesisSettings = DEFAULT_SETTINGS) -> FloatArray:
    """S(t): the slowly drifting spectral modulation rate."""

    return settings.spectral_rate_mean + settings.spectral_rate_range * np.sin(
        p + _TWO_PI * settings.spectral_rate_change_hz * t
    )


def _envelope(
    t: FloatArray,
    rate: FloatArray,
    octave_offset: float,
    q: float,
    settings: SynthesisSettings,
) -> FloatArray:
    return 1.0 + settings.depth * np.sin(
        _TWO_PI * (settings.temporal_rate_hz * t + octave_offset * rate) + q
    )


def modulation_envelope(
    t: FloatArray,
    octave_offset: float,
    q: float,
    p: float,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
) -> FloatArray:
    """A_n(t) for a partial at ``octave_offset`` octaves from the band center."""

    return _envelope(t, spectral_rate(t, p, settings), octave_offset, q, settings)


def _control_step(sample_rate: int, settings: SynthesisSettings) -> int | None:
    if settings.control_interval is None:
        return None
    return max(1, int(math.floor(sample_rate * settings.control_interval)))


def synthesize_chunk(
    params: ChunkParams,
    band: ModulationBand,
    severity: HearingSeverity,
    *,
    sample_rate: int = SAMPLE_RATE,
    num_samples: int | None = None,
    settings: SynthesisSettings = DEFAULT_SETTINGS,
) -> FloatArray:
    """Render one chunk as a ``(num_samples, 2)`` array, mono on both channels.

    ``num_samples`` defaults to the chunk's full extent; the offline renderer
    passes a shorter count for the final chunk of a render.
    """

    if sample_rate <= 0:
        raise ConfigurationError(f"sample_rate must be > 0, got {sample_rate}")
    if num_samples is None:
        num_samples = int(round(params.duration * sample_rate))
    if num_samples < 0:
        raise ConfigurationError(f"num_samples must be >= 0, got {num_samples}")

    mono = np.zeros(num_samples, dtype=np.float64)
    harmonics = plan_harmonics(params.fundamental_hz, band, severity, settings)
    if not harmonics:
        _LOGGER.debug(
            "No harmonics for fundamental %.2f Hz; chunk at %.3fs is silent.",
            params.fundamental_hz,
            params.start_time,
        )
    if not harmonics or num_samples == 0:
        return np.stack([mono, mono], axis=1)

    t = params.start_time + np.arange(num_samples, dtype=np.float64) / sample_rate
    step = _control_step(sample_rate, settings)
    # Envelopes are evaluated at breakpoints and held until the next one.
    t_env = t if step is None else t[::step]
    rate: FloatArray | None = None

    for harmonic in harmonics:
        carrier = np.sin(_TWO_PI * harmonic.frequency_hz * t)
        if not harmonic.in_band:
            mono += harmonic.base_gain * carrier
            continue
        if rate is None:
            rate = spectral_rate(t_env, params.p, settings)
        envelope = _envelope(t_env, rate, harmonic.octave_offset, params.q, settings)
        if step is not None:
            envelope = np.repeat(envelope, step)[:num_samples]
        mono += envelope * harmonic.base_gain * carrier

    return np.stack([mono, mono], axis=1)


def generate_test_tone(
    frequency_hz: float,
    duration: float,
    *,
    sample_rate: int = SAMPLE_RATE,
    amp: float = 0.3,
    t_offset: float = 0.0,
) -> FloatArray:
    """Plain stereo sine used to let the listener match their tinnitus pitch."""

    num_samples = int(sample_rate * duration)
    t = t_offset + np.arange(num_samples, dtype=np.float64) / sample_rate
    mono = amp * np.sin(_TWO_PI * frequency_hz * t)
    return np.stack([mono, mono], axis=1)
