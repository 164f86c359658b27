from __future__ import annotations

import logging
import threading

import numpy as np

from .config import (
    DEFAULT_OUTPUT_GAIN,
    DEFAULT_SETTINGS,
    LOOK_AHEAD_SECONDS,
    POLL_INTERVAL_SECONDS,
    SESSION_SECONDS,
    SEVERITIES,
    HearingSeverity,
    SynthesisSettings,
    TreatmentProfile,
    modulation_band,
)
from .errors import ConfigurationError
from .playback import AudioGraph, ScheduledChunk
from .scheduler import RealTimeScheduler, SessionState
from .synth import generate_test_tone

_LOGGER = logging.getLogger("untinnitus.session")


class TreatmentSession:
    """Controller for one listening session: pitch match, profile, timed playback."""

    def __init__(
        self,
        graph: AudioGraph,
        *,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        settings: SynthesisSettings = DEFAULT_SETTINGS,
        session_seconds: float = SESSION_SECONDS,
        look_ahead: float = LOOK_AHEAD_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        if session_seconds <= 0:
            raise ConfigurationError(f"session_seconds must be > 0, got {session_seconds}")
        self.state = SessionState(graph=graph)
        self.scheduler = RealTimeScheduler(
            self.state,
            rng=rng,
            seed=seed,
            settings=settings,
            look_ahead=look_ahead,
            poll_interval=poll_interval,
        )
        self.session_seconds = session_seconds
        self.completed = False
        self._frequency: float | None = None
        self._severity: HearingSeverity = "normal"
        self._started_at: float | None = None
        self._elapsed = 0.0
        graph.master_gain = DEFAULT_OUTPUT_GAIN

    @property
    def profile(self) -> TreatmentProfile | None:
        return self.state.profile

    @property
    def playing(self) -> bool:
        return self.scheduler.playing

    def confirm_frequency(self, frequency_hz: float) -> None:
        self.state.band = modulation_band(frequency_hz)
        self._frequency = float(frequency_hz)
        self._refresh_profile()

    def confirm_severity(self, severity: HearingSeverity) -> None:
        if severity not in SEVERITIES:
            raise ConfigurationError(f"Unknown hearing severity: {severity!r}")
        self._severity = severity
        self._refresh_profile()

    def set_output_gain(self, gain: float) -> None:
        if not 0.0 <= gain <= 1.0:
            raise ConfigurationError(f"output gain must be within [0, 1], got {gain}")
        self.state.graph.master_gain = gain
        self._refresh_profile()

    def _refresh_profile(self) -> None:
        if self._frequency is None:
            return
        self.state.profile = TreatmentProfile(
            tinnitus_frequency_hz=self._frequency,
            hearing_severity=self._severity,
            output_gain=self.state.graph.master_gain,
        )

    def play_test_tone(self, frequency_hz: float, duration: float = 2.0) -> ScheduledChunk:
        """Pure tone for pitch matching, played at the output gain."""

        tone = generate_test_tone(
            frequency_hz,
            duration,
            sample_rate=self.state.graph.sample_rate,
            amp=1.0,
        )
        return self.scheduler.enqueue_samples(tone)

    def preview(self) -> ScheduledChunk:
        return self.scheduler.preview()

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return self._elapsed
        return self._elapsed + self.state.graph.current_time - self._started_at

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self.session_seconds - self.elapsed_seconds)

    @property
    def progress(self) -> float:
        return min(1.0, self.elapsed_seconds / self.session_seconds)

    def start(self) -> None:
        if self.playing:
            return
        if self.profile is None:
            raise ConfigurationError("Confirm a tinnitus frequency before starting treatment")
        self.completed = False
        self._elapsed = 0.0
        self._started_at = self.state.graph.current_time
        try:
            self.scheduler.start()
        except Exception:
            self._started_at = None
            raise

    def tick(self) -> list[ScheduledChunk]:
        if not self.playing:
            return []
        if self.remaining_seconds <= 0:
            self.stop(completed=True)
            return []
        return self.scheduler.tick()

    def stop(self, completed: bool = False) -> None:
        self._elapsed = self.elapsed_seconds
        self._started_at = None
        self.scheduler.stop()
        self.completed = completed
        if completed:
            _LOGGER.info("Treatment complete after %.0fs", self._elapsed)

    def run(self, stop_event: threading.Event | None = None) -> bool:
        """Play the remaining session time, blocking until done or stopped."""

        stop_event = stop_event or threading.Event()
        self.start()
        try:
            while self.playing:
                if stop_event.wait(self.scheduler.poll_interval):
                    self.stop()
                    break
                self.tick()
        finally:
            if self.playing:
                self.stop()
        return self.completed

    def reset(self) -> None:
        self.stop()
        self._frequency = None
        self._severity = "normal"
        self._elapsed = 0.0
        self.completed = False
        self.state.profile = None
        self.state.band = None
        self.state.graph.master_gain = DEFAULT_OUTPUT_GAIN
