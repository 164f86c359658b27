import io
import struct
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
from pydantic import ValidationError

import untinnitus.audio as audio_module
from untinnitus.audio import (
    SampleBuffer,
    decode_wav,
    encode_wav,
    read_wav,
    to_pcm16,
    wav_size,
    write_wav,
)
from untinnitus.errors import EncodingFailure


def _buffer(num_frames: int = 1000, sample_rate: int = 8000, seed: int = 0) -> SampleBuffer:
    rng = np.random.default_rng(seed)
    left = rng.uniform(-1.2, 1.2, num_frames).astype(np.float32)
    right = rng.uniform(-1.2, 1.2, num_frames).astype(np.float32)
    return SampleBuffer(left=left, right=right, sample_rate=sample_rate)


def test_wav_header_layout() -> None:
    silent = np.zeros(10, dtype=np.float32)
    data = encode_wav(SampleBuffer(left=silent, right=silent.copy(), sample_rate=44100))
    assert len(data) == wav_size(10) == 84
    header = data[:44]
    fields = struct.unpack("<4sI4s4sIHHIIHH4sI", header)
    assert fields == (
        b"RIFF",
        36 + 40,
        b"WAVE",
        b"fmt ",
        16,
        1,
        2,
        44100,
        44100 * 4,
        4,
        16,
        b"data",
        40,
    )


def test_oversized_payload_rejected() -> None:
    with pytest.raises(EncodingFailure):
        wav_size(2**30)


def test_pcm_conversion_is_asymmetric_and_clamped() -> None:
    samples = np.array([-1.0, -0.5, 0.0, 0.5, 1.0, 2.0, -2.0])
    assert to_pcm16(samples).tolist() == [-32768, -16384, 0, 16384, 32767, 32767, -32768]


def test_encoded_length_and_roundtrip() -> None:
    buffer = _buffer()
    data = encode_wav(buffer)
    assert len(data) == 44 + 4 * buffer.num_frames

    decoded = decode_wav(data)
    assert decoded.sample_rate == 8000
    np.testing.assert_allclose(decoded.left, np.clip(buffer.left, -1, 1), atol=1 / 32768)
    np.testing.assert_allclose(decoded.right, np.clip(buffer.right, -1, 1), atol=1 / 32768)


def test_decode_rejects_garbage() -> None:
    with pytest.raises(EncodingFailure):
        decode_wav(b"RIFF")
    with pytest.raises(EncodingFailure):
        decode_wav(b"X" * 44)


def test_write_wav_is_readable_pcm16(tmp_path: Path) -> None:
    buffer = _buffer(num_frames=2500)
    path = write_wav(tmp_path / "out" / "session.wav", buffer, block_frames=1000)

    info = sf.info(str(path))
    assert info.samplerate == 8000
    assert info.channels == 2
    assert info.frames == 2500
    assert info.subtype == "PCM_16"
    assert path.read_bytes() == encode_wav(buffer)
    assert list(path.parent.iterdir()) == [path]

    loaded = read_wav(path)
    np.testing.assert_allclose(loaded.left, decode_wav(encode_wav(buffer)).left, atol=1e-7)


def test_write_wav_leaves_nothing_on_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(left: np.ndarray, right: np.ndarray) -> np.ndarray:
        raise MemoryError

    monkeypatch.setattr(audio_module, "_interleave", _boom)
    with pytest.raises(EncodingFailure):
        write_wav(tmp_path / "session.wav", _buffer())
    assert list(tmp_path.iterdir()) == []


def test_encode_wav_wraps_memory_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(left: np.ndarray, right: np.ndarray) -> np.ndarray:
        raise MemoryError

    monkeypatch.setattr(audio_module, "_interleave", _boom)
    with pytest.raises(EncodingFailure):
        encode_wav(_buffer())


def test_sample_buffer_validation_and_read_only() -> None:
    with pytest.raises(ValidationError):
        SampleBuffer(left=np.zeros(3, dtype=np.float32), right=np.zeros(4, dtype=np.float32))
    buffer = _buffer(num_frames=16)
    assert buffer.duration == pytest.approx(16 / 8000)
    assert buffer.stereo().shape == (16, 2)
    with pytest.raises(ValueError):
        buffer.left[0] = 0.0


def test_payload_is_interleaved_little_endian_pcm() -> None:
    buffer = _buffer(num_frames=5)
    pcm = np.stack([to_pcm16(buffer.left), to_pcm16(buffer.right)], axis=1).astype("<i2")
    assert encode_wav(buffer)[44:] == pcm.tobytes()


def test_decode_rejects_mono() -> None:
    stream = io.BytesIO()
    sf.write(stream, np.zeros(16, dtype=np.int16), 8000, format="WAV", subtype="PCM_16")
    with pytest.raises(EncodingFailure):
        decode_wav(stream.getvalue())
