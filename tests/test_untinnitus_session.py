import numpy as np
import pytest

from untinnitus.errors import ConfigurationError
from untinnitus.playback import MixingGraph
from untinnitus.session import TreatmentSession

SR = 1000


def _session(session_seconds: float = 8.0) -> tuple[TreatmentSession, MixingGraph]:
    graph = MixingGraph(SR)
    return TreatmentSession(graph, seed=3, session_seconds=session_seconds), graph


def test_start_requires_confirmed_frequency() -> None:
    session, _ = _session()
    with pytest.raises(ConfigurationError):
        session.start()
    assert not session.playing


def test_invalid_frequency_leaves_profile_unset() -> None:
    session, _ = _session()
    with pytest.raises(ConfigurationError):
        session.confirm_frequency(-4000)
    assert session.profile is None
    with pytest.raises(ConfigurationError):
        session.confirm_severity("profound")  # type: ignore[arg-type]


def test_confirmation_builds_profile() -> None:
    session, graph = _session()
    session.confirm_frequency(5700)
    session.confirm_severity("moderate")
    session.set_output_gain(0.6)

    profile = session.profile
    assert profile is not None
    assert profile.tinnitus_frequency_hz == 5700
    assert profile.hearing_severity == "moderate"
    assert profile.output_gain == pytest.approx(0.6)
    assert session.state.band == profile.band
    assert graph.master_gain == pytest.approx(0.6)

    with pytest.raises(ConfigurationError):
        session.set_output_gain(1.2)
    assert graph.master_gain == pytest.approx(0.6)


def test_test_tone_plays_at_output_gain() -> None:
    graph = MixingGraph(8000)
    session = TreatmentSession(graph)
    session.set_output_gain(0.5)
    chunk = session.play_test_tone(1000.0)
    assert chunk.duration == pytest.approx(2.0)
    assert np.abs(graph.render(800)).max() == pytest.approx(0.5, abs=1e-6)


def test_session_completes_after_countdown() -> None:
    session, graph = _session(session_seconds=8.0)
    session.confirm_frequency(4000)
    session.start()
    assert session.remaining_seconds == pytest.approx(8.0)

    for _ in range(1000):
        if not session.playing:
            break
        graph.render(50)
        session.tick()

    assert session.completed
    assert session.remaining_seconds == 0.0
    assert session.progress == 1.0
    assert session.state.active == {}
    assert not graph.render(50).any()


def test_stop_is_not_completion() -> None:
    session, graph = _session()
    session.confirm_frequency(4000)
    session.start()
    graph.render(2000)
    session.stop()
    assert not session.completed
    assert session.elapsed_seconds == pytest.approx(2.0)
    assert session.progress == pytest.approx(0.25)


def test_run_blocks_until_complete(simulated_clock) -> None:
    session, graph = _session(session_seconds=6.0)
    session.confirm_frequency(9500)
    assert session.run(stop_event=simulated_clock(graph)) is True
    assert session.elapsed_seconds >= 6.0


def test_reset_returns_to_initial_state() -> None:
    session, graph = _session()
    session.confirm_frequency(4000)
    session.set_output_gain(0.9)
    session.start()
    session.reset()
    assert session.profile is None
    assert session.state.band is None
    assert not session.playing
    assert session.elapsed_seconds == 0.0
    assert graph.master_gain == pytest.approx(0.3)
    assert graph.active_ids() == []
