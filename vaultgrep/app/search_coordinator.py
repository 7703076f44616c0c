"""Incremental search coordination: debounce, supersede, deliver."""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional, Protocol

from PySide6.QtCore import QObject, QTimer, Signal

from vaultgrep.app import config
from vaultgrep.app.rg_results import (
    ExecutionFailure,
    ParseFailure,
    SearchCancelled,
    SearchError,
    SearchQuery,
)
from vaultgrep.app.rg_runner import CancelToken, RunHandle, split_extra_args

logger = logging.getLogger(__name__)


class SearchRunner(Protocol):
    """Anything that hands back a RunHandle which settles after ``invoke`` returns."""

    def invoke(self, query: SearchQuery, token: Optional[CancelToken] = None) -> RunHandle: ...


class SearchState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class SearchCoordinator(QObject):
    """Owns the single current run for one search view.

    Input is debounced with a single-shot timer; each fire cancels the
    previous run before starting the next one. Outcomes of handles that are
    no longer current never leave this object.
    """

    searchStarted = Signal(str)  # query text
    resultsReady = Signal(object)  # list[MatchRecord]
    searchFailed = Signal(str)  # user-facing message
    stateChanged = Signal(object)  # SearchState

    def __init__(
        self,
        runner: SearchRunner,
        root_resolver: Callable[[], Optional[str]],
        settings_loader: Callable[[], config.SearchSettings] = config.load_search_settings,
        debounce_ms: int = config.DEFAULT_SEARCH_DEBOUNCE_MS,
        parent=None,
    ) -> None:
        super().__init__(parent)
        self._runner = runner
        self._root_resolver = root_resolver
        self._settings_loader = settings_loader
        self._current: Optional[RunHandle] = None
        self._pending_text: Optional[str] = None
        self._state = SearchState.IDLE
        self._closed = False
        self._debounce_timer = QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.setInterval(max(0, int(debounce_ms)))
        self._debounce_timer.timeout.connect(self._fire)

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def current_handle(self) -> Optional[RunHandle]:
        return self._current

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def debounce_ms(self) -> int:
        return self._debounce_timer.interval()

    def on_input(self, text: str) -> None:
        """Record the latest input and (re)arm the debounce window."""
        if self._closed:
            return
        self._pending_text = text
        self._debounce_timer.start()

    def flush(self) -> None:
        """Fire a pending debounced search right away."""
        if self._closed or self._pending_text is None:
            return
        self._debounce_timer.stop()
        self._fire()

    def run_search(self, query: SearchQuery) -> Optional[RunHandle]:
        if self._closed:
            return None
        self.cancel_current()
        token = CancelToken()
        handle = self._runner.invoke(query, token)
        self._current = handle
        handle.succeeded.connect(lambda records, h=handle: self._on_succeeded(h, records))
        handle.failed.connect(lambda error, h=handle: self._on_failed(h, error))
        self._set_state(SearchState.RUNNING)
        self.searchStarted.emit(query.text)
        return handle

    def cancel_current(self) -> None:
        handle, self._current = self._current, None
        if handle is not None:
            logger.debug("Cancelling search for %r", handle.query.text)
            handle.cancel()
        self._set_state(SearchState.IDLE)

    def shutdown(self) -> None:
        """Stop debouncing and cancel the in-flight run; no signals afterwards."""
        if self._closed:
            return
        self._debounce_timer.stop()
        self._pending_text = None
        self.cancel_current()
        self._closed = True

    def build_query(self, text: str) -> SearchQuery:
        root = self._root_resolver()
        if not root:
            raise ExecutionFailure("No search root is available")
        settings = self._settings_loader()
        return SearchQuery(
            text=text,
            root=str(root),
            executable=settings.rg_path,
            extra_args=split_extra_args(settings.extra_args),
        )

    def _fire(self) -> None:
        if self._closed or self._pending_text is None:
            return
        text, self._pending_text = self._pending_text, None
        try:
            query = self.build_query(text)
        except SearchError as exc:
            self.cancel_current()
            self._report_failure(exc)
            return
        self.run_search(query)

    def _is_current(self, handle: RunHandle) -> bool:
        return not self._closed and handle is self._current and not handle.token.cancelled

    def _on_succeeded(self, handle: RunHandle, records: list) -> None:
        if not self._is_current(handle):
            logger.debug("Dropping stale results for %r", handle.query.text)
            return
        self._current = None
        self._set_state(SearchState.IDLE)
        logger.debug("Search for %r returned %d match(es)", handle.query.text, len(records))
        self.resultsReady.emit(records)

    def _on_failed(self, handle: RunHandle, error: SearchError) -> None:
        if isinstance(error, SearchCancelled):
            logger.debug("%s", error)
            if handle is self._current:
                self._current = None
                self._set_state(SearchState.IDLE)
            return
        if not self._is_current(handle):
            logger.debug("Dropping stale failure for %r: %s", handle.query.text, error)
            return
        self._current = None
        self._set_state(SearchState.IDLE)
        self._report_failure(error)

    def _report_failure(self, error: SearchError) -> None:
        if isinstance(error, ExecutionFailure):
            logger.warning(
                "ripgrep execution failed: %s (exit=%s) %s",
                error,
                error.exit_code,
                error.stderr,
            )
        elif isinstance(error, ParseFailure):
            logger.warning("ripgrep output could not be parsed: %s", error)
        else:
            logger.warning("Search failed: %s", error)
        if not self._closed:
            self.searchFailed.emit(str(error))

    def _set_state(self, state: SearchState) -> None:
        if state == self._state:
            return
        self._state = state
        if not self._closed:
            self.stateChanged.emit(state)
