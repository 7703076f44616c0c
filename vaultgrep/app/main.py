from __future__ import annotations

import argparse
import logging
import os
import sys
import time
import traceback

from PySide6.QtCore import QtMsgType, qInstallMessageHandler
from PySide6.QtWidgets import QApplication

from vaultgrep.app import config
from vaultgrep.app.ui.main_window import MainWindow


# ============================================================================
# DEBUG CONFIGURATION - Environment Variables
# ============================================================================
# VAULTGREP_LOG_LEVEL     - Root log level (DEBUG, INFO, WARNING...). Default INFO.
# VAULTGREP_DEBUG_SEARCH  - "1"/"true" enables DEBUG for the search modules only
#                           (ripgrep argv, cancellations, stale results).
# VAULTGREP_CONFIG        - Alternate settings file (default ~/.vaultgrep_config.json).
#
# Examples:
#   VAULTGREP_DEBUG_SEARCH=1 vaultgrep --vault ~/notes
# ============================================================================

SEARCH_LOGGERS = (
    "vaultgrep.app.rg_runner",
    "vaultgrep.app.rg_results",
    "vaultgrep.app.search_coordinator",
    "vaultgrep.app.ui.search_dialog",
)


def _debug_enabled(var_name: str) -> bool:
    """Check if a debug flag is enabled."""
    return os.getenv(var_name, "0") not in ("0", "false", "False", "", None)


def _configure_logging() -> None:
    level_name = os.getenv("VAULTGREP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if _debug_enabled("VAULTGREP_DEBUG_SEARCH"):
        for name in SEARCH_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)


def _qt_message_handler(mode: QtMsgType, context, message: str) -> None:
    """Custom Qt message handler to suppress known harmless warnings."""
    if "QTextCursor::setPosition" in message:
        return
    if "Accessible invalid" in message or "Could not find accessible on path" in message:
        return
    if mode == QtMsgType.QtDebugMsg:
        print(f"Qt Debug: {message}", file=sys.stderr)
    elif mode == QtMsgType.QtWarningMsg:
        print(f"Qt Warning: {message}", file=sys.stderr)
    elif mode == QtMsgType.QtCriticalMsg:
        print(f"Qt Critical: {message}", file=sys.stderr)
    elif mode == QtMsgType.QtFatalMsg:
        print(f"Qt Fatal: {message}", file=sys.stderr)
        sys.exit(1)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VaultGrep: live ripgrep search over a folder of notes.")
    parser.add_argument("--vault", help="Path to a vault to open at startup.")
    parser.add_argument("--rg", help="ripgrep executable for this session (overrides preferences).")
    return parser.parse_args(argv)


def _diag(msg: str) -> None:
    """Lightweight diagnostic logger for startup/teardown events."""
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    print(f"[VaultGrepDiag {timestamp}] {msg}", file=sys.stderr)


def main() -> None:
    args = _parse_args(sys.argv[1:])
    start_ts = time.time()
    _configure_logging()
    _diag("Application starting.")
    config.init_settings()
    qInstallMessageHandler(_qt_message_handler)
    qt_app = QApplication(sys.argv)
    qt_app.setApplicationName("VaultGrep")
    qt_app.aboutToQuit.connect(lambda: _diag("QApplication aboutToQuit emitted."))
    window = MainWindow(rg_override=args.rg)
    try:
        window.startup(vault_hint=args.vault)
        window.show()
        _diag("Main window shown; entering Qt event loop.")
        rc = qt_app.exec()
        uptime = time.time() - start_ts
        _diag(f"Qt event loop exited with code {rc} after {uptime:.2f}s.")
        sys.exit(rc)
    except Exception as exc:
        uptime = time.time() - start_ts
        _diag(f"Unhandled exception after {uptime:.2f}s: {exc}")
        traceback.print_exc()
        qt_app.quit()
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - manual entry point
    main()
