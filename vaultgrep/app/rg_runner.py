"""Ripgrep process invocation and cancellation.

Handles:
- argv construction for ``rg <query> <root> --json [extra args]``
- asynchronous execution through QProcess on the Qt event loop
- cancellation tokens that terminate the child process
- executable discovery and a version probe for the preferences dialog
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from PySide6.QtCore import QObject, QProcess, QTimer, Signal

from vaultgrep.app.rg_results import (
    ExecutionFailure,
    MatchRecord,
    ParseFailure,
    SearchCancelled,
    SearchError,
    SearchQuery,
    parse_output,
)

logger = logging.getLogger(__name__)

JSON_FLAG = "--json"
# ripgrep exits 1 when nothing matched; 2 means a real error.
NO_MATCH_EXIT_CODE = 1
KILL_GRACE_MS = 1000
PROBE_TIMEOUT_S = 5

COMMON_RG_PATHS = [
    Path("/usr/local/bin/rg"),
    Path("/opt/homebrew/bin/rg"),  # macOS Homebrew (Apple Silicon)
    Path("/usr/bin/rg"),
    Path.home() / ".cargo" / "bin" / "rg",
    Path("C:\\Program Files\\ripgrep\\rg.exe"),  # Windows
]


def discover_rg() -> Optional[str]:
    """Attempt to locate ripgrep on PATH or in common install locations."""
    on_path = shutil.which("rg")
    if on_path:
        return on_path
    for candidate in COMMON_RG_PATHS:
        if candidate.exists() and candidate.is_file():
            return str(candidate)
    return None


def split_extra_args(text: Optional[str]) -> tuple[str, ...]:
    """Split the user's extra-arguments string into argv tokens."""
    if not text or not text.strip():
        return ()
    try:
        return tuple(shlex.split(text, posix=os.name != "nt"))
    except ValueError as exc:
        logger.warning("Could not parse extra ripgrep arguments %r (%s); splitting on whitespace", text, exc)
        return tuple(text.split())


def build_arguments(query: SearchQuery) -> list[str]:
    return [query.text, query.root, JSON_FLAG, *query.extra_args]


def probe_version(executable: str) -> str:
    """Run ``<executable> --version`` and return its first line."""
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_S,
        )
    except FileNotFoundError as exc:
        raise ExecutionFailure(f"Executable not found: {executable}") from exc
    except PermissionError as exc:
        raise ExecutionFailure(f"Permission denied: {executable}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ExecutionFailure(f"{executable} --version timed out (>{PROBE_TIMEOUT_S}s)") from exc
    except OSError as exc:
        raise ExecutionFailure(f"Could not run {executable}: {exc}") from exc
    if result.returncode != 0:
        raise ExecutionFailure(
            f"{executable} --version exited with status {result.returncode}",
            exit_code=result.returncode,
            stderr=result.stderr,
        )
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else ""


class CancelToken:
    """One-shot cancellation flag shared between the coordinator and a run."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()


class RunHandle(QObject):
    """One search invocation. Emits exactly one of ``succeeded``/``failed``.

    A cancelled handle always ends with ``failed(SearchCancelled)``, even when
    the underlying work completes afterwards.
    """

    succeeded = Signal(object)  # list[MatchRecord]
    failed = Signal(object)  # SearchError

    def __init__(self, query: SearchQuery, token: Optional[CancelToken] = None, parent=None) -> None:
        super().__init__(parent)
        self.query = query
        self.token = token or CancelToken()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def start(self) -> None:
        self.token.add_callback(self._on_cancelled)
        if not self._done:
            self._launch()

    def cancel(self) -> None:
        self.token.cancel()

    def resolve(self, records: list[MatchRecord]) -> None:
        if self._done:
            return
        if self.token.cancelled:
            self._on_cancelled()
            return
        self._done = True
        self.succeeded.emit(records)

    def reject(self, error: SearchError) -> None:
        if self._done:
            return
        self._done = True
        self.failed.emit(error)

    def _launch(self) -> None:
        """Start the underlying work; subclasses override."""

    def _abort(self) -> None:
        """Stop the underlying work; subclasses override."""

    def _on_cancelled(self) -> None:
        if self._done:
            return
        self._done = True
        self._abort()
        self.failed.emit(SearchCancelled(f"search for {self.query.text!r} cancelled"))


class ProcessRunHandle(RunHandle):
    """RunHandle backed by a ripgrep child process."""

    released = Signal()

    def __init__(self, query: SearchQuery, token: Optional[CancelToken] = None, parent=None) -> None:
        super().__init__(query, token, parent)
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._released = False
        self.process = QProcess(self)
        self.process.setProgram(query.executable)
        self.process.setArguments(build_arguments(query))
        self.process.setStandardInputFile(QProcess.nullDevice())
        self.process.readyReadStandardOutput.connect(self._on_stdout)
        self.process.readyReadStandardError.connect(self._on_stderr)
        self.process.finished.connect(self._on_finished)
        self.process.errorOccurred.connect(self._on_error)

    @property
    def stderr_text(self) -> str:
        return self._stderr.decode("utf-8", errors="replace").strip()

    def _launch(self) -> None:
        logger.debug("Starting %s %s", self.query.executable, build_arguments(self.query))
        self.process.start()

    def _abort(self) -> None:
        if self.process.state() == QProcess.ProcessState.NotRunning:
            self._release()
            return
        logger.debug("Terminating ripgrep run for %r", self.query.text)
        if os.name == "nt":
            self.process.kill()
        else:
            self.process.terminate()
            QTimer.singleShot(KILL_GRACE_MS, self._kill_if_running)

    def _kill_if_running(self) -> None:
        if self.process.state() != QProcess.ProcessState.NotRunning:
            logger.debug("ripgrep ignored SIGTERM; killing")
            self.process.kill()

    def _on_stdout(self) -> None:
        self._stdout.extend(self.process.readAllStandardOutput().data())

    def _on_stderr(self) -> None:
        self._stderr.extend(self.process.readAllStandardError().data())

    def _on_error(self, error: QProcess.ProcessError) -> None:
        # FailedToStart is the only error not followed by finished().
        if error != QProcess.ProcessError.FailedToStart:
            return
        self.reject(
            ExecutionFailure(f"Could not start {self.query.executable}: {self.process.errorString()}")
        )
        self._release()

    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        self._on_stdout()
        self._on_stderr()
        self._release()
        if self._done:
            return
        if exit_status == QProcess.ExitStatus.CrashExit:
            self.reject(
                ExecutionFailure(f"{self.query.executable} crashed", exit_code=exit_code, stderr=self.stderr_text)
            )
            return
        if exit_code not in (0, NO_MATCH_EXIT_CODE):
            self.reject(
                ExecutionFailure(
                    f"{self.query.executable} exited with status {exit_code}",
                    exit_code=exit_code,
                    stderr=self.stderr_text,
                )
            )
            return
        raw = self._stdout.decode("utf-8", errors="replace").rstrip()
        try:
            records = parse_output(raw, self.query.root)
        except ParseFailure as exc:
            self.reject(exc)
            return
        self.resolve(records)

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self.released.emit()


class RipgrepRunner:
    """Spawns ripgrep runs and keeps them alive until their process exits."""

    def __init__(self) -> None:
        self._live: set[ProcessRunHandle] = set()

    @property
    def live_count(self) -> int:
        return len(self._live)

    def invoke(self, query: SearchQuery, token: Optional[CancelToken] = None) -> RunHandle:
        handle = ProcessRunHandle(query, token)
        self._live.add(handle)
        handle.released.connect(lambda: self._live.discard(handle))
        # Deferred so callers can connect to the handle's signals first.
        QTimer.singleShot(0, handle.start)
        return handle
