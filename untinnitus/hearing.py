from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from .config import HearingSeverity
from .errors import ConfigurationError

MAX_CORRECTION_DB: Mapping[HearingSeverity, float] = MappingProxyType(
    {
        "normal": 0.0,
        "mild": 15.0,
        "moderate": 30.0,
        "severe": 45.0,
    }
)

_FLAT_UNTIL_KHZ = 2.0
_KNEE_KHZ = 2.8
_FULL_AT_KHZ = 8.0


def correction_db(frequency_hz: float, severity: HearingSeverity) -> float:
    """Gain boost in dB compensating an assumed high-frequency hearing loss.

    Zero up to 2 kHz, rising linearly to a ninth of the maximum at 2.8 kHz,
    then linearly to the maximum at 8 kHz and flat above.
    """

    try:
        max_correction = MAX_CORRECTION_DB[severity]
    except KeyError as exc:
        raise ConfigurationError(f"Unknown hearing severity: {severity!r}") from exc
    if max_correction == 0:
        return 0.0

    freq_khz = frequency_hz / 1000.0
    if freq_khz <= _FLAT_UNTIL_KHZ:
        return 0.0
    if freq_khz <= _KNEE_KHZ:
        t = (freq_khz - _FLAT_UNTIL_KHZ) / (_KNEE_KHZ - _FLAT_UNTIL_KHZ)
        return t * (max_correction / 9)
    if freq_khz <= _FULL_AT_KHZ:
        t = (freq_khz - _KNEE_KHZ) / (_FULL_AT_KHZ - _KNEE_KHZ)
        return max_correction / 9 + t * (8 * max_correction / 9)
    return max_correction


def correction_gain(frequency_hz: float, severity: HearingSeverity) -> float:
    return float(10 ** (correction_db(frequency_hz, severity) / 20))
