from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PySide6.QtCore import Qt, QByteArray
from PySide6.QtGui import QAction, QKeySequence, QTextCursor
from PySide6.QtWidgets import (
    QFileDialog,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QTabWidget,
)

from vaultgrep.app import config
from vaultgrep.app.rg_runner import RipgrepRunner
from vaultgrep.app.search_coordinator import SearchCoordinator
from .preferences_dialog import PreferencesDialog
from .search_dialog import SearchDialog

logger = logging.getLogger(__name__)


class FileView(QPlainTextEdit):
    """Read-only pane showing one vault file."""

    def __init__(self, parent=None) -> None:
        super().__init__(parent)
        self.setReadOnly(True)
        self.rel_path: Optional[str] = None

    def load(self, abs_path: Path, rel_path: str) -> None:
        self.setPlainText(abs_path.read_text(encoding="utf-8", errors="replace"))
        self.rel_path = rel_path

    def go_to_line(self, line: int) -> None:
        """Move the cursor to a 1-based line and center it."""
        if line <= 0:
            return
        block = self.document().findBlockByNumber(line - 1)
        if not block.isValid():
            return
        cursor = QTextCursor(block)
        self.setTextCursor(cursor)
        self.centerCursor()


class MainWindow(QMainWindow):

    def __init__(self, rg_override: Optional[str] = None) -> None:
        super().__init__()
        self.setWindowTitle("VaultGrep")
        self.vault_root: Optional[str] = None
        self.runner = RipgrepRunner()
        self._rg_override = rg_override
        self._search_dialog: Optional[SearchDialog] = None

        self.tabs = QTabWidget()
        self.tabs.setTabsClosable(True)
        self.tabs.setDocumentMode(True)
        self.tabs.tabCloseRequested.connect(self._close_tab)
        self.setCentralWidget(self.tabs)

        self._empty_label = QLabel("Open a vault, then use Search ▸ Find (Ctrl+Shift+F).")
        self._empty_label.setAlignment(Qt.AlignCenter)
        self.statusBar().addPermanentWidget(self._empty_label)

        file_menu = self.menuBar().addMenu("&File")
        open_vault_action = QAction("Open Vault…", self)
        open_vault_action.setShortcut(QKeySequence.Open)
        open_vault_action.setToolTip("Choose the folder to search")
        open_vault_action.triggered.connect(self._select_vault)
        file_menu.addAction(open_vault_action)
        preferences_action = QAction("Preferences…", self)
        preferences_action.setShortcut(QKeySequence.Preferences)
        preferences_action.triggered.connect(self._open_preferences)
        file_menu.addAction(preferences_action)
        file_menu.addSeparator()
        quit_action = QAction("Quit", self)
        quit_action.setShortcut(QKeySequence.Quit)
        quit_action.triggered.connect(self.close)
        file_menu.addAction(quit_action)

        search_menu = self.menuBar().addMenu("&Search")
        self.find_action = QAction("Find", self)
        self.find_action.setShortcut(QKeySequence("Ctrl+Shift+F"))
        self.find_action.setShortcutContext(Qt.ApplicationShortcut)
        self.find_action.setToolTip("Search the vault with ripgrep")
        self.find_action.triggered.connect(self.open_search_dialog)
        search_menu.addAction(self.find_action)
        self._update_actions()

        self.resize(1000, 700)
        self._restore_geometry()

    # --- Vault ----------------------------------------------------------
    def startup(self, vault_hint: Optional[str] = None) -> bool:
        """Open the hinted or last used vault; the window is usable without one."""
        candidate = vault_hint or config.load_last_vault()
        if candidate and not self.set_vault(candidate):
            self.statusBar().showMessage(f"Vault not found: {candidate}", 5000)
        return True

    def set_vault(self, path: str) -> bool:
        root = Path(path).expanduser()
        if not root.is_dir():
            logger.warning("Ignoring vault path that is not a directory: %s", path)
            return False
        self.vault_root = str(root.resolve())
        self._close_search_dialog()
        self.tabs.clear()
        self.setWindowTitle(f"VaultGrep - {root.name}")
        config.save_last_vault(self.vault_root)
        self._update_actions()
        logger.info("Opened vault %s", self.vault_root)
        return True

    def _select_vault(self) -> None:
        start_dir = self.vault_root or str(Path.home())
        target = QFileDialog.getExistingDirectory(self, "Select Vault Folder", start_dir)
        if target:
            self.set_vault(target)

    def _update_actions(self) -> None:
        has_vault = bool(self.vault_root)
        self.find_action.setEnabled(has_vault)
        self._empty_label.setVisible(not has_vault)

    # --- Search ---------------------------------------------------------
    def search_settings(self) -> config.SearchSettings:
        settings = config.load_search_settings()
        if self._rg_override:
            settings.rg_path = self._rg_override
        return settings

    def open_search_dialog(self) -> Optional[SearchDialog]:
        if not self.vault_root:
            return None
        if self._search_dialog is not None:
            self._search_dialog.raise_()
            self._search_dialog.activateWindow()
            return self._search_dialog
        coordinator = SearchCoordinator(
            self.runner,
            root_resolver=lambda: self.vault_root,
            settings_loader=self.search_settings,
            debounce_ms=config.load_search_debounce_ms(),
        )
        dialog = SearchDialog(coordinator, root=self.vault_root, parent=self)
        dialog.navigationRequested.connect(self._on_search_navigation)
        dialog.finished.connect(self._on_search_dialog_finished)
        self._search_dialog = dialog
        dialog.open()
        return dialog

    def _on_search_navigation(self, rel_path: str, line: int, new_pane: bool) -> None:
        self.open_file(rel_path, new_pane=new_pane, line=line)

    def _on_search_dialog_finished(self, _result: int) -> None:
        dialog, self._search_dialog = self._search_dialog, None
        if dialog is not None:
            dialog.deleteLater()

    def _close_search_dialog(self) -> None:
        if self._search_dialog is not None:
            self._search_dialog.reject()

    # --- Navigation -----------------------------------------------------
    def open_file(self, rel_path: str, new_pane: bool = False, line: int = 0) -> bool:
        """Show a vault-relative file, reusing the current tab unless ``new_pane``."""
        if not self.vault_root:
            return False
        root = Path(self.vault_root)
        target = (root / rel_path.lstrip("/\\")).resolve()
        try:
            target.relative_to(root)
        except ValueError:
            logger.warning("Refusing to open path outside the vault: %s", rel_path)
            return False
        if not target.is_file():
            self.statusBar().showMessage(f"File not found: {rel_path}", 5000)
            return False
        view = None if new_pane else self.tabs.currentWidget()
        if not isinstance(view, FileView):
            view = FileView(self.tabs)
            self.tabs.addTab(view, target.name)
        try:
            view.load(target, rel_path)
        except OSError as exc:
            QMessageBox.warning(self, "Open File", f"Could not read {rel_path}: {exc}")
            return False
        index = self.tabs.indexOf(view)
        self.tabs.setTabText(index, target.name)
        self.tabs.setTabToolTip(index, rel_path)
        self.tabs.setCurrentIndex(index)
        view.go_to_line(line)
        view.setFocus()
        return True

    def _close_tab(self, index: int) -> None:
        widget = self.tabs.widget(index)
        self.tabs.removeTab(index)
        if widget is not None:
            widget.deleteLater()

    # --- Preferences / geometry ----------------------------------------
    def _open_preferences(self) -> None:
        PreferencesDialog(self).exec()

    def _restore_geometry(self) -> None:
        saved = config.load_window_geometry()
        if saved:
            self.restoreGeometry(QByteArray.fromBase64(saved.encode("ascii")))

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self._close_search_dialog()
        try:
            config.save_window_geometry(self.saveGeometry().toBase64().data().decode("ascii"))
        except OSError as exc:
            logger.warning("Failed to save window geometry: %s", exc)
        super().closeEvent(event)
