from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from .config import SAMPLE_RATE
from .errors import EncodingFailure

_LOGGER = logging.getLogger("untinnitus.audio")

FloatArray = NDArray[np.float32]
PcmArray = NDArray[np.int16]

NUM_CHANNELS = 2
BITS_PER_SAMPLE = 16
HEADER_SIZE = 44
_NEGATIVE_SCALE = 0x8000
_POSITIVE_SCALE = 0x7FFF
_MAX_RIFF_SIZE = 0xFFFF_FFFF
_BLOCK_FRAMES = 1 << 20
# 16-bit PCM in a canonical WAV container; soundfile writes the 44-byte header.
_WAV_FORMAT = {"format": "WAV", "subtype": "PCM_16"}


class SampleBuffer(BaseModel):
    """Finished stereo render, handed read-only to the encoder."""

    left: FloatArray
    right: FloatArray
    sample_rate: int = SAMPLE_RATE

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="after")
    def _check_channels(self) -> "SampleBuffer":
        if self.left.ndim != 1 or self.right.ndim != 1:
            raise ValueError("channels must be one-dimensional")
        if self.left.shape != self.right.shape:
            raise ValueError("left and right channels must have equal length")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        self.left.setflags(write=False)
        self.right.setflags(write=False)
        return self

    @property
    def num_frames(self) -> int:
        return int(self.left.shape[0])

    @property
    def duration(self) -> float:
        return self.num_frames / self.sample_rate

    def stereo(self) -> NDArray[np.float32]:
        return np.stack([self.left, self.right], axis=1)


def wav_size(num_frames: int) -> int:
    """Total file size of a 16-bit stereo WAV; raises past the 32-bit RIFF limit."""

    data_size = num_frames * NUM_CHANNELS * (BITS_PER_SAMPLE // 8)
    if 36 + data_size > _MAX_RIFF_SIZE:
        raise EncodingFailure(f"{num_frames} frames exceed the 4 GiB RIFF size limit")
    return HEADER_SIZE + data_size


def to_pcm16(samples: NDArray[np.floating]) -> PcmArray:
    """Clamp to [-1, 1] and quantize asymmetrically (x0x8000 below zero, x0x7FFF above)."""

    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * _NEGATIVE_SCALE, clipped * _POSITIVE_SCALE)
    # Round half up, matching the reference converter.
    return np.floor(scaled + 0.5).astype(np.int16)


def from_pcm16(pcm: NDArray[np.integer]) -> NDArray[np.float32]:
    values = np.asarray(pcm, dtype=np.float64)
    return np.where(values < 0, values / _NEGATIVE_SCALE, values / _POSITIVE_SCALE).astype(
        np.float32
    )


def _interleave(left: NDArray[np.floating], right: NDArray[np.floating]) -> PcmArray:
    frames = np.empty((left.shape[0], NUM_CHANNELS), dtype=np.int16)
    frames[:, 0] = to_pcm16(left)
    frames[:, 1] = to_pcm16(right)
    return frames


def _from_frames(frames: NDArray[np.int16], sample_rate: int, source: str) -> SampleBuffer:
    if frames.shape[1] != NUM_CHANNELS:
        raise EncodingFailure(f"Expected stereo audio in {source}, got {frames.shape[1]} channels")
    return SampleBuffer(
        left=from_pcm16(frames[:, 0]),
        right=from_pcm16(frames[:, 1]),
        sample_rate=int(sample_rate),
    )


def encode_wav(buffer: SampleBuffer) -> bytes:
    wav_size(buffer.num_frames)
    stream = io.BytesIO()
    try:
        sf.write(stream, _interleave(buffer.left, buffer.right), buffer.sample_rate, **_WAV_FORMAT)
    except MemoryError as exc:
        raise EncodingFailure(
            f"Cannot allocate {buffer.num_frames * 4} bytes for PCM output"
        ) from exc
    return stream.getvalue()


def write_wav(path: str | Path, buffer: SampleBuffer, *, block_frames: int = _BLOCK_FRAMES) -> Path:
    """Stream ``buffer`` to ``path`` block by block; nothing is left behind on failure."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    wav_size(buffer.num_frames)
    with tempfile.NamedTemporaryFile(
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".part",
        delete=False,
    ) as handle:
        temp_path = Path(handle.name)
    try:
        with sf.SoundFile(
            temp_path,
            mode="w",
            samplerate=buffer.sample_rate,
            channels=NUM_CHANNELS,
            **_WAV_FORMAT,
        ) as out:
            for start in range(0, buffer.num_frames, block_frames):
                stop = min(start + block_frames, buffer.num_frames)
                out.write(_interleave(buffer.left[start:stop], buffer.right[start:stop]))
        os.replace(temp_path, target)
    except (MemoryError, OSError, sf.SoundFileError) as exc:
        temp_path.unlink(missing_ok=True)
        raise EncodingFailure(f"Failed to write {target}: {exc}") from exc
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    _LOGGER.info(
        "WAV file created: %s (%.2f MB)", target, target.stat().st_size / 1024 / 1024
    )
    return target


def decode_wav(data: bytes) -> SampleBuffer:
    """Parse bytes produced by :func:`encode_wav` back into float samples."""

    try:
        frames, sample_rate = sf.read(io.BytesIO(data), dtype="int16", always_2d=True)
    except (sf.SoundFileError, RuntimeError) as exc:
        raise EncodingFailure(f"Not a readable WAV stream: {exc}") from exc
    return _from_frames(frames, sample_rate, "WAV data")


def read_wav(path: str | Path) -> SampleBuffer:
    frames, sample_rate = sf.read(str(path), dtype="int16", always_2d=True)
    return _from_frames(frames, sample_rate, str(path))
