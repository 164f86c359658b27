from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
from numpy.typing import NDArray

from .config import (
    DEFAULT_SETTINGS,
    LOOK_AHEAD_SECONDS,
    POLL_INTERVAL_SECONDS,
    ModulationBand,
    SynthesisSettings,
    TreatmentProfile,
)
from .errors import AudioBackendUnavailable, ConfigurationError
from .logging_utils import debug_enabled
from .playback import AudioGraph, ScheduledChunk
from .synth import ChunkParams, draw_chunk_params, synthesize_chunk

_LOGGER = logging.getLogger("untinnitus.scheduler")

SchedulerStatus = Literal["idle", "playing"]


@dataclass
class SessionState:
    """Everything a live session mutates, owned by one controller.

    ``active`` is the registry of in-flight chunks keyed by chunk id; it is
    the only handle used to silence audio that is already scheduled.
    ``chunk_index`` counts treatment chunks since :meth:`RealTimeScheduler.start`;
    chunk ``k`` is synthesized at session time ``k * chunk_seconds``, exactly
    like chunk ``k`` of an offline render.
    """

    graph: AudioGraph
    profile: TreatmentProfile | None = None
    band: ModulationBand | None = None
    status: SchedulerStatus = "idle"
    next_chunk_start: float = 0.0
    next_chunk_id: int = 0
    chunk_index: int = 0
    active: dict[int, ScheduledChunk] = field(default_factory=dict)

    @classmethod
    def for_profile(cls, profile: TreatmentProfile, graph: AudioGraph) -> "SessionState":
        graph.master_gain = profile.output_gain
        return cls(graph=graph, profile=profile, band=profile.band)


@dataclass
class _Prepared:
    index: int
    params: ChunkParams
    samples: Future[NDArray[np.float64]]


class RealTimeScheduler:
    """Keeps a look-ahead window of chunks queued on a live output graph.

    Each :meth:`tick` enqueues chunks while ``next_chunk_start < now + look_ahead``
    and advances ``next_chunk_start`` by exactly one chunk, so consecutive chunks
    are back to back as long as ticks arrive within the look-ahead window.
    The next chunk is synthesized one period ahead on a worker thread, so
    queueing it only waits on synthesis that has had a whole chunk to finish.
    """

    def __init__(
        self,
        state: SessionState,
        *,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        settings: SynthesisSettings = DEFAULT_SETTINGS,
        look_ahead: float = LOOK_AHEAD_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        if rng is not None and seed is not None:
            raise ConfigurationError("Pass either rng or seed, not both")
        if look_ahead <= 0 or poll_interval <= 0:
            raise ConfigurationError("look_ahead and poll_interval must be > 0")
        self.state = state
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._settings = settings
        self._look_ahead = look_ahead
        self._poll_interval = poll_interval
        self._executor: ThreadPoolExecutor | None = None
        self._prepared: _Prepared | None = None

    @property
    def playing(self) -> bool:
        return self.state.status == "playing"

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def _require_ready(self) -> tuple[TreatmentProfile, ModulationBand]:
        state = self.state
        if state.profile is None or state.band is None:
            raise ConfigurationError("Confirm a tinnitus frequency before starting playback")
        if state.graph.closed:
            raise AudioBackendUnavailable("Output graph is closed")
        return state.profile, state.band

    def _synthesize(self, params: ChunkParams) -> NDArray[np.float64]:
        profile, band = self._require_ready()
        return self._render_chunk(params, band, profile)

    def _render_chunk(
        self,
        params: ChunkParams,
        band: ModulationBand,
        profile: TreatmentProfile,
    ) -> NDArray[np.float64]:
        return synthesize_chunk(
            params,
            band,
            profile.hearing_severity,
            sample_rate=self.state.graph.sample_rate,
            settings=self._settings,
        )

    def _draw(self, index: int) -> ChunkParams:
        return draw_chunk_params(self._rng, index * self._settings.chunk_seconds, settings=self._settings)

    def _prepare(self, index: int) -> None:
        profile, band = self._require_ready()
        params = self._draw(index)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="untinnitus-synth")
        self._prepared = _Prepared(
            index, params, self._executor.submit(self._render_chunk, params, band, profile)
        )

    def _take(self, index: int) -> tuple[ChunkParams, NDArray[np.float64]]:
        prepared = self._prepared
        self._prepared = None
        if prepared is None or prepared.index != index:
            params = self._draw(index)
            return params, self._synthesize(params)
        return prepared.params, prepared.samples.result()

    def start(self) -> list[ScheduledChunk]:
        if self.playing:
            return []
        self._require_ready()
        state = self.state
        state.status = "playing"
        state.chunk_index = 0
        try:
            # Synthesized before the start time is fixed, so the first chunk is never late.
            params, samples = self._take(0)
            state.next_chunk_start = state.graph.current_time
            first = self._enqueue(params, samples)
        except Exception as exc:
            _LOGGER.warning("Playback failed to start: %s", exc, exc_info=debug_enabled())
            self.stop()
            raise
        _LOGGER.info("Playback started at %.3fs", first.start_time)
        return [first, *self.tick()]

    def tick(self) -> list[ScheduledChunk]:
        if not self.playing:
            return []
        state = self.state
        now = state.graph.current_time
        self._prune(now)
        enqueued: list[ScheduledChunk] = []
        try:
            while state.next_chunk_start < now + self._look_ahead:
                params, samples = self._take(state.chunk_index)
                enqueued.append(self._enqueue(params, samples))
            if self._prepared is None:
                self._prepare(state.chunk_index)
        except Exception as exc:
            _LOGGER.warning("Scheduling failed; stopping playback: %s", exc, exc_info=debug_enabled())
            self.stop()
            raise
        return enqueued

    def _enqueue(self, params: ChunkParams, samples: NDArray[np.float64]) -> ScheduledChunk:
        state = self.state
        chunk = self.enqueue_samples(samples, start_time=state.next_chunk_start)
        state.next_chunk_start += self._settings.chunk_seconds
        state.chunk_index += 1
        _LOGGER.debug(
            "Queued chunk %d at %.3fs (f0=%.2f Hz)",
            chunk.chunk_id,
            chunk.start_time,
            params.fundamental_hz,
        )
        return chunk

    def preview(self) -> ScheduledChunk:
        """Queue a single chunk now without entering the playing state."""

        self._require_ready()
        params = self._draw(0)
        samples = self._synthesize(params)
        self._prune(self.state.graph.current_time)
        return self.enqueue_samples(samples)

    def enqueue_samples(
        self,
        samples: NDArray[np.float64],
        *,
        start_time: float | None = None,
    ) -> ScheduledChunk:
        graph = self.state.graph
        if graph.closed:
            raise AudioBackendUnavailable("Output graph is closed")
        chunk = ScheduledChunk(
            chunk_id=self.state.next_chunk_id,
            start_time=graph.current_time if start_time is None else start_time,
            samples=samples,
            sample_rate=graph.sample_rate,
        )
        graph.schedule(chunk)
        self.state.next_chunk_id += 1
        self.state.active[chunk.chunk_id] = chunk
        return chunk

    def _prune(self, now: float) -> None:
        finished = [chunk_id for chunk_id, chunk in self.state.active.items() if chunk.end_time <= now]
        for chunk_id in finished:
            del self.state.active[chunk_id]

    def stop(self) -> None:
        """Silence every in-flight chunk immediately and return to idle."""

        was_playing = self.playing
        self.state.status = "idle"
        for chunk_id in list(self.state.active):
            self.state.graph.cancel(chunk_id)
        self.state.active.clear()
        if self._prepared is not None:
            self._prepared.samples.cancel()
            self._prepared = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        if was_playing:
            _LOGGER.info("Playback stopped at %.3fs", self.state.graph.current_time)

    def run(
        self,
        *,
        duration: float | None = None,
        stop_event: threading.Event | None = None,
    ) -> bool:
        """Tick until ``duration`` elapses on the graph clock or ``stop_event`` is set.

        Returns True when playback ran to completion.
        """

        stop_event = stop_event or threading.Event()
        self.start()
        started = self.state.graph.current_time
        try:
            while self.playing:
                if duration is not None and self.state.graph.current_time - started >= duration:
                    self.stop()
                    return True
                if stop_event.wait(self._poll_interval):
                    self.stop()
                    return False
                self.tick()
        finally:
            if self.playing:
                self.stop()
        return False

    async def arun(
        self,
        *,
        duration: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> bool:
        self.start()
        started = self.state.graph.current_time
        try:
            while self.playing:
                if duration is not None and self.state.graph.current_time - started >= duration:
                    self.stop()
                    return True
                if stop_event is not None and stop_event.is_set():
                    self.stop()
                    return False
                await asyncio.sleep(self._poll_interval)
                self.tick()
        finally:
            if self.playing:
                self.stop()
        return False
