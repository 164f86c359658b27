from collections.abc import Callable
from pathlib import Path

import pytest

from untinnitus.logging_utils import LOG_DIR_ENV
from untinnitus.playback import MixingGraph


class SimulatedClock:
    """Stands in for a stop event: each wait advances the graph like a device would."""

    def __init__(self, graph: MixingGraph) -> None:
        self.graph = graph
        self.waits = 0

    def wait(self, timeout: float | None = None) -> bool:
        self.waits += 1
        self.graph.render(int(round((timeout or 0.0) * self.graph.sample_rate)))
        return False


@pytest.fixture(autouse=True)
def _isolated_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv(LOG_DIR_ENV, str(log_dir))
    return log_dir


@pytest.fixture
def simulated_clock() -> Callable[[MixingGraph], SimulatedClock]:
    return SimulatedClock
