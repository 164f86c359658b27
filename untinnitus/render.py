from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .audio import SampleBuffer
from .config import (
    DEFAULT_SETTINGS,
    SAMPLE_RATE,
    SESSION_SECONDS,
    ModulationBand,
    SynthesisSettings,
    TreatmentProfile,
)
from .errors import ConfigurationError, RenderAborted, ResourceExhaustion
from .logging_utils import debug_enabled
from .synth import ChunkParams, draw_chunk_params, synthesize_chunk

_LOGGER = logging.getLogger("untinnitus.render")
_PROGRESS_EVERY = 100


class RenderHooks(BaseModel):
    on_start: Callable[[int], None] | None = None
    on_chunk: Callable[[int, int], None] | None = None
    on_end: Callable[[], None] | None = None
    on_error: Callable[[Exception], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _call_hook(name: str, hook: Callable[..., None] | None, *args: object) -> None:
    if hook is None:
        return
    try:
        hook(*args)
    except Exception as exc:
        _LOGGER.warning("Render hook %s failed: %s", name, exc, exc_info=debug_enabled())


def chunk_count(total_seconds: float, chunk_seconds: float) -> int:
    return math.ceil(total_seconds / chunk_seconds)


def _allocate(num_frames: int) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
    try:
        return np.zeros(num_frames, dtype=np.float32), np.zeros(num_frames, dtype=np.float32)
    except MemoryError as exc:
        megabytes = num_frames * 2 * 4 / 1024 / 1024
        raise ResourceExhaustion(
            f"Cannot allocate a {megabytes:.0f} MB stereo sample buffer ({num_frames} frames)"
        ) from exc


class OfflineRenderer:
    """Deterministic chunk-by-chunk render of a whole session into one buffer.

    Chunk parameters are drawn from ``rng`` strictly in chunk order, so two
    renderers seeded alike produce identical buffers regardless of ``workers``.
    """

    def __init__(
        self,
        *,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        settings: SynthesisSettings = DEFAULT_SETTINGS,
        hooks: RenderHooks | None = None,
        workers: int = 1,
    ) -> None:
        if rng is not None and seed is not None:
            raise ConfigurationError("Pass either rng or seed, not both")
        if workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {workers}")
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._settings = settings
        self._hooks = hooks or RenderHooks()
        self._workers = workers
        self._abort = threading.Event()

    def abort(self) -> None:
        """Cancel the render in progress; honoured at the next chunk boundary."""

        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def render(
        self,
        profile: TreatmentProfile,
        total_seconds: float = SESSION_SECONDS,
        sample_rate: int = SAMPLE_RATE,
    ) -> SampleBuffer:
        if not math.isfinite(total_seconds) or total_seconds <= 0:
            raise ConfigurationError(f"total_seconds must be finite and > 0, got {total_seconds}")
        if sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be > 0, got {sample_rate}")
        self._abort.clear()
        band = profile.band
        chunk_seconds = self._settings.chunk_seconds
        num_frames = int(round(total_seconds * sample_rate))
        num_chunks = chunk_count(total_seconds, chunk_seconds)

        _LOGGER.info(
            "Rendering %.0fs for %.0f Hz (%s) in %d chunks",
            total_seconds,
            profile.tinnitus_frequency_hz,
            profile.hearing_severity,
            num_chunks,
        )
        _call_hook("on_start", self._hooks.on_start, num_chunks)
        try:
            left, right = _allocate(num_frames)
            if self._workers == 1:
                self._render_serial(left, right, band, profile, num_chunks, sample_rate)
            else:
                self._render_parallel(left, right, band, profile, num_chunks, sample_rate)
            np.clip(left, -1.0, 1.0, out=left)
            np.clip(right, -1.0, 1.0, out=right)
        except Exception as exc:
            _call_hook("on_error", self._hooks.on_error, exc)
            raise
        _call_hook("on_end", self._hooks.on_end)
        _LOGGER.info("Audio buffer generation complete")
        return SampleBuffer(left=left, right=right, sample_rate=sample_rate)

    def _chunk_extent(self, index: int, num_frames: int, sample_rate: int) -> tuple[int, int]:
        start_frame = int(round(index * self._settings.chunk_seconds * sample_rate))
        stop_frame = int(round((index + 1) * self._settings.chunk_seconds * sample_rate))
        return start_frame, min(stop_frame, num_frames)

    def _next_params(self, index: int) -> ChunkParams:
        return draw_chunk_params(
            self._rng,
            index * self._settings.chunk_seconds,
            settings=self._settings,
        )

    def _check_abort(self, index: int, num_chunks: int) -> None:
        if self._abort.is_set():
            _LOGGER.info("Render aborted before chunk %d/%d", index, num_chunks)
            raise RenderAborted(f"Render aborted after {index} of {num_chunks} chunks")

    def _report(self, index: int, num_chunks: int) -> None:
        if index % _PROGRESS_EVERY == 0:
            _LOGGER.info("Progress: %.1f%%", index / num_chunks * 100)
        _call_hook("on_chunk", self._hooks.on_chunk, index, num_chunks)

    def _synthesize(
        self,
        params: ChunkParams,
        band: ModulationBand,
        profile: TreatmentProfile,
        num_samples: int,
        sample_rate: int,
    ) -> NDArray[np.float64]:
        return synthesize_chunk(
            params,
            band,
            profile.hearing_severity,
            sample_rate=sample_rate,
            num_samples=num_samples,
            settings=self._settings,
        )

    def _render_serial(
        self,
        left: NDArray[np.float32],
        right: NDArray[np.float32],
        band: ModulationBand,
        profile: TreatmentProfile,
        num_chunks: int,
        sample_rate: int,
    ) -> None:
        num_frames = left.shape[0]
        for index in range(num_chunks):
            self._check_abort(index, num_chunks)
            start, stop = self._chunk_extent(index, num_frames, sample_rate)
            params = self._next_params(index)
            chunk = self._synthesize(params, band, profile, stop - start, sample_rate)
            left[start:stop] += chunk[:, 0]
            right[start:stop] += chunk[:, 1]
            self._report(index, num_chunks)

    def _render_parallel(
        self,
        left: NDArray[np.float32],
        right: NDArray[np.float32],
        band: ModulationBand,
        profile: TreatmentProfile,
        num_chunks: int,
        sample_rate: int,
    ) -> None:
        num_frames = left.shape[0]
        with ThreadPoolExecutor(max_workers=self._workers) as executor:
            for window_start in range(0, num_chunks, self._workers):
                self._check_abort(window_start, num_chunks)
                indices = range(window_start, min(window_start + self._workers, num_chunks))
                extents = [self._chunk_extent(index, num_frames, sample_rate) for index in indices]
                # Drawn before submitting so the RNG sequence matches a serial render.
                params = [self._next_params(index) for index in indices]
                futures = [
                    executor.submit(
                        self._synthesize, chunk_params, band, profile, stop - start, sample_rate
                    )
                    for chunk_params, (start, stop) in zip(params, extents)
                ]
                for index, (start, stop), future in zip(indices, extents, futures):
                    chunk = future.result()
                    left[start:stop] += chunk[:, 0]
                    right[start:stop] += chunk[:, 1]
                    self._report(index, num_chunks)
