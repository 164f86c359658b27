from __future__ import annotations


class UntinnitusError(Exception):
    """Base error for the untinnitus library."""


class ConfigurationError(UntinnitusError, ValueError):
    """Raised when a treatment profile is missing or invalid."""


class AudioBackendUnavailable(UntinnitusError):
    """Raised when no live output graph can be opened."""


class ResourceExhaustion(UntinnitusError, MemoryError):
    """Raised when a sample buffer cannot be allocated."""


class EncodingFailure(UntinnitusError):
    """Raised when PCM encoding or the external lossy encoder fails."""


class RenderAborted(UntinnitusError):
    """Raised when an offline render is cancelled before completion."""
