"""Tests for debounce, supersede and delivery rules of the search coordinator."""
import pytest

from vaultgrep.app import config
from vaultgrep.app.rg_results import ExecutionFailure, MatchRecord, ParseFailure
from vaultgrep.app.rg_runner import RunHandle
from vaultgrep.app.search_coordinator import SearchCoordinator, SearchState


class FakeRunner:
    """Hands out plain RunHandles that the test resolves by hand."""

    def __init__(self):
        self.handles: list[RunHandle] = []

    def invoke(self, query, token=None):
        handle = RunHandle(query, token)
        handle.start()
        self.handles.append(handle)
        return handle

    @property
    def queries(self):
        return [h.query.text for h in self.handles]


class Sink:
    def __init__(self, coordinator):
        self.renders = []
        self.failures = []
        coordinator.resultsReady.connect(self.renders.append)
        coordinator.searchFailed.connect(self.failures.append)


def _record(path):
    return MatchRecord(path=path, absolute_path=f"/vault/{path}", line_text="x", line_number=1, absolute_offset=0)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def coordinator(qapp, runner):
    settings = config.SearchSettings(rg_path="/opt/rg", extra_args="--hidden -i")
    coord = SearchCoordinator(runner, lambda: "/vault", lambda: settings, debounce_ms=30)
    yield coord
    coord.shutdown()


def test_only_last_input_in_window_triggers(qtbot, coordinator, runner):
    for text in ("j", "jo", "jou", "journal"):
        coordinator.on_input(text)
    qtbot.wait(10)
    assert runner.handles == []
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    qtbot.wait(80)
    assert runner.queries == ["journal"]


def test_window_resets_on_each_keystroke(qtbot, runner, qapp):
    coord = SearchCoordinator(runner, lambda: "/vault", config.SearchSettings, debounce_ms=300)
    coord.on_input("a")
    qtbot.wait(150)
    coord.on_input("ab")
    qtbot.wait(200)
    # 350ms after the first key, but only 200ms after the last one.
    assert runner.handles == []
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    assert runner.queries == ["ab"]
    coord.shutdown()


def test_query_built_from_root_and_settings(qtbot, coordinator, runner):
    coordinator.on_input("todo")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    query = runner.handles[0].query
    assert query.root == "/vault"
    assert query.executable == "/opt/rg"
    assert query.extra_args == ("--hidden", "-i")


def test_empty_query_is_still_sent(qtbot, coordinator, runner):
    coordinator.on_input("")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    assert runner.queries == [""]


def test_results_delivered_and_state_returns_idle(qtbot, coordinator, runner):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    assert coordinator.state is SearchState.RUNNING
    records = [_record("a.md"), _record("b.md")]
    runner.handles[0].resolve(records)
    assert sink.renders == [records]
    assert coordinator.state is SearchState.IDLE
    assert coordinator.current_handle is None


def test_supersede_cancels_previous_run(qtbot, coordinator, runner):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    first = runner.handles[0]
    coordinator.on_input("ab")
    qtbot.waitUntil(lambda: len(runner.handles) == 2, timeout=2000)
    second = runner.handles[1]
    assert first.token.cancelled
    assert coordinator.current_handle is second

    # The stale run resolving late must not render.
    first.resolve([_record("stale.md")])
    assert sink.renders == []
    second.resolve([_record("fresh.md")])
    assert [[r.path for r in batch] for batch in sink.renders] == [["fresh.md"]]
    assert sink.failures == []


def test_cancelled_handle_resolution_never_renders(qtbot, coordinator, runner):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    handle = runner.handles[0]
    coordinator.cancel_current()
    handle.resolve([_record("a.md")])
    handle.reject(ExecutionFailure("boom"))
    assert sink.renders == []
    assert sink.failures == []


@pytest.mark.parametrize("error", [ExecutionFailure("rg missing", exit_code=None), ParseFailure("line 1: bad")])
def test_failures_reported_as_search_failed(qtbot, coordinator, runner, error):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    runner.handles[0].reject(error)
    assert sink.renders == []
    assert sink.failures == [str(error)]
    assert coordinator.state is SearchState.IDLE


def test_session_usable_after_failure(qtbot, coordinator, runner):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    runner.handles[0].reject(ExecutionFailure("crashed"))
    coordinator.on_input("b")
    qtbot.waitUntil(lambda: len(runner.handles) == 2, timeout=2000)
    runner.handles[1].resolve([_record("b.md")])
    assert len(sink.renders) == 1


def test_missing_root_reports_failure(qtbot, runner, qapp):
    coord = SearchCoordinator(runner, lambda: None, config.SearchSettings, debounce_ms=10)
    sink = Sink(coord)
    coord.on_input("a")
    qtbot.waitUntil(lambda: len(sink.failures) == 1, timeout=2000)
    assert runner.handles == []
    coord.shutdown()


def test_shutdown_mid_search_cancels_and_silences(qtbot, coordinator, runner):
    sink = Sink(coordinator)
    coordinator.on_input("a")
    qtbot.waitUntil(lambda: len(runner.handles) == 1, timeout=2000)
    handle = runner.handles[0]
    coordinator.shutdown()
    assert handle.token.cancelled
    handle.resolve([_record("a.md")])
    coordinator.on_input("b")
    qtbot.wait(80)
    assert len(runner.handles) == 1
    assert sink.renders == []
    assert sink.failures == []


def test_shutdown_drops_pending_debounce(qtbot, coordinator, runner):
    coordinator.on_input("a")
    coordinator.shutdown()
    qtbot.wait(80)
    assert runner.handles == []


def test_flush_fires_pending_input_immediately(qtbot, runner, qapp):
    coord = SearchCoordinator(runner, lambda: "/vault", config.SearchSettings, debounce_ms=5000)
    coord.on_input("now")
    coord.flush()
    assert runner.queries == ["now"]
    coord.flush()
    assert runner.queries == ["now"]
    coord.shutdown()
