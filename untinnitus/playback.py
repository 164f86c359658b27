from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Protocol

import numpy as np
from numpy.typing import NDArray

from .config import DEFAULT_OUTPUT_GAIN, SAMPLE_RATE
from .errors import AudioBackendUnavailable, ConfigurationError

_LOGGER = logging.getLogger("untinnitus.playback")


@dataclass(frozen=True, slots=True)
class ScheduledChunk:
    """Immutable, self-terminating block of stereo audio at an absolute start time."""

    chunk_id: int
    start_time: float
    samples: NDArray[np.float64]
    sample_rate: int = SAMPLE_RATE

    @property
    def duration(self) -> float:
        return self.samples.shape[0] / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class AudioGraph(Protocol):
    sample_rate: int
    master_gain: float

    @property
    def current_time(self) -> float: ...

    @property
    def closed(self) -> bool: ...

    def schedule(self, chunk: ScheduledChunk) -> None: ...

    def cancel(self, chunk_id: int) -> bool: ...


class MixingGraph:
    """In-process output graph that mixes scheduled chunks into device blocks.

    ``render`` is driven by the output device (or a test) and advances the
    graph clock, so ``current_time`` is the time of the next frame to play.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        *,
        master_gain: float = DEFAULT_OUTPUT_GAIN,
    ) -> None:
        if sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be > 0, got {sample_rate}")
        self.sample_rate = sample_rate
        self._master_gain = _checked_gain(master_gain)
        self._lock = threading.Lock()
        self._frame = 0
        self._chunks: dict[int, ScheduledChunk] = {}
        self._closed = False

    @property
    def master_gain(self) -> float:
        return self._master_gain

    @master_gain.setter
    def master_gain(self, value: float) -> None:
        self._master_gain = _checked_gain(value)

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frame / self.sample_rate

    @property
    def closed(self) -> bool:
        return self._closed

    def active_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._chunks)

    def schedule(self, chunk: ScheduledChunk) -> None:
        if self._closed:
            raise AudioBackendUnavailable("Output graph is closed")
        if chunk.sample_rate != self.sample_rate:
            raise ConfigurationError(
                f"chunk sample rate {chunk.sample_rate} != graph rate {self.sample_rate}"
            )
        with self._lock:
            self._chunks[chunk.chunk_id] = chunk

    def cancel(self, chunk_id: int) -> bool:
        with self._lock:
            return self._chunks.pop(chunk_id, None) is not None

    def cancel_all(self) -> None:
        with self._lock:
            self._chunks.clear()

    def render(self, frames: int) -> NDArray[np.float32]:
        out = np.zeros((frames, 2), dtype=np.float64)
        with self._lock:
            block_start = self._frame
            block_end = block_start + frames
            for chunk_id, chunk in list(self._chunks.items()):
                chunk_start = int(round(chunk.start_time * self.sample_rate))
                chunk_end = chunk_start + chunk.samples.shape[0]
                lo = max(chunk_start, block_start)
                hi = min(chunk_end, block_end)
                if lo < hi:
                    out[lo - block_start : hi - block_start] += chunk.samples[
                        lo - chunk_start : hi - chunk_start
                    ]
                if chunk_end <= block_end:
                    del self._chunks[chunk_id]
            self._frame = block_end
            gain = self._master_gain
        out *= gain
        np.clip(out, -1.0, 1.0, out=out)
        return out.astype(np.float32)

    def close(self) -> None:
        self._closed = True
        self.cancel_all()


def _checked_gain(value: float) -> float:
    gain = float(value)
    if not 0.0 <= gain <= 1.0:
        raise ConfigurationError(f"output gain must be within [0, 1], got {gain}")
    return gain


class DeviceOutput:
    """A running sounddevice stream pulling blocks from a :class:`MixingGraph`."""

    def __init__(self, graph: MixingGraph, stream: Any) -> None:
        self.graph = graph
        self._stream = stream

    def close(self) -> None:
        self.graph.close()
        try:
            self._stream.stop()
        finally:
            self._stream.close()

    def __enter__(self) -> "DeviceOutput":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _load_sounddevice() -> Any | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        # OSError: the module imports but PortAudio itself is missing.
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    return sd_module


def sounddevice_available() -> bool:
    return _load_sounddevice() is not None


def open_output(
    graph: MixingGraph,
    *,
    device: int | str | None = None,
    blocksize: int = 1024,
) -> DeviceOutput:
    sd = _load_sounddevice()
    if sd is None:
        raise AudioBackendUnavailable(
            "Live playback requires sounddevice. Install untinnitus[playback] "
            "(or render a file with `untinnitus render`)."
        )

    def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        _ = time_info
        if status:
            _LOGGER.debug("Output stream status: %s", status)
        outdata[:] = graph.render(frames)

    try:
        stream = sd.OutputStream(
            samplerate=graph.sample_rate,
            channels=2,
            dtype="float32",
            blocksize=blocksize,
            device=device,
            callback=_callback,
        )
        stream.start()
    except (sd.PortAudioError, ValueError) as exc:
        raise AudioBackendUnavailable(f"Cannot open audio output: {exc}") from exc
    _LOGGER.info("Opened audio output at %d Hz", graph.sample_rate)
    return DeviceOutput(graph, stream)
