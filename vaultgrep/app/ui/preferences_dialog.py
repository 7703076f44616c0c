from __future__ import annotations

import logging

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import (
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
)

from vaultgrep.app import config
from vaultgrep.app.rg_results import ExecutionFailure
from vaultgrep.app.rg_runner import discover_rg, probe_version

logger = logging.getLogger(__name__)


class PreferencesDialog(QDialog):
    """Ripgrep settings. Every edit is persisted immediately."""

    settingsChanged = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Preferences")
        self.setModal(True)
        self.resize(520, 260)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(10, 10, 10, 10)
        layout.setSpacing(8)

        layout.addWidget(QLabel("<b>ripgrep location</b>"))
        hint = QLabel("Execute <code>which rg</code> in your shell to see where it's located.")
        hint.setStyleSheet("color: #888;")
        layout.addWidget(hint)
        rg_row = QHBoxLayout()
        self.rg_path_edit = QLineEdit()
        self.rg_path_edit.setPlaceholderText(config.DEFAULT_RG_LOCATION)
        self.rg_path_edit.setText(config.load_rg_location())
        rg_row.addWidget(self.rg_path_edit, 1)
        rg_browse = QPushButton("Browse…")
        rg_browse.clicked.connect(self._browse_rg_path)
        rg_row.addWidget(rg_browse)
        rg_detect = QPushButton("Detect")
        rg_detect.setToolTip("Look for rg on PATH and in common install locations")
        rg_detect.clicked.connect(self._detect_rg_path)
        rg_row.addWidget(rg_detect)
        layout.addLayout(rg_row)

        layout.addWidget(QLabel("<b>ripgrep arguments</b>"))
        args_hint = QLabel("Additional arguments to send ripgrep.")
        args_hint.setStyleSheet("color: #888;")
        layout.addWidget(args_hint)
        self.extra_args_edit = QLineEdit()
        self.extra_args_edit.setPlaceholderText("--hidden")
        self.extra_args_edit.setText(config.load_rg_additional_arguments())
        layout.addWidget(self.extra_args_edit)

        debounce_row = QHBoxLayout()
        debounce_row.addWidget(QLabel("Search delay after typing (ms):"))
        self.debounce_spin = QSpinBox()
        self.debounce_spin.setRange(0, 5000)
        self.debounce_spin.setSingleStep(50)
        self.debounce_spin.setValue(config.load_search_debounce_ms())
        debounce_row.addWidget(self.debounce_spin, 1)
        layout.addLayout(debounce_row)

        test_row = QHBoxLayout()
        self.rg_test_btn = QPushButton("Test ripgrep")
        self.rg_test_btn.clicked.connect(self._run_rg_test)
        self.rg_test_status = QLabel("Not tested")
        self.rg_test_status.setStyleSheet("color: #888;")
        test_row.addWidget(self.rg_test_btn)
        test_row.addWidget(self.rg_test_status, 1)
        layout.addLayout(test_row)
        layout.addStretch(1)

        btn_box = QDialogButtonBox(QDialogButtonBox.Close)
        btn_box.rejected.connect(self.reject)
        layout.addWidget(btn_box, 0, Qt.AlignRight)

        # Connected last so populating the fields does not write the config back.
        self.rg_path_edit.textChanged.connect(self._on_rg_path_changed)
        self.extra_args_edit.textChanged.connect(self._on_extra_args_changed)
        self.debounce_spin.valueChanged.connect(self._on_debounce_changed)

    def _on_rg_path_changed(self, text: str) -> None:
        config.save_rg_location(text)
        self.rg_test_status.setText("Not tested")
        self.rg_test_status.setStyleSheet("color: #888;")
        self.settingsChanged.emit()

    def _on_extra_args_changed(self, text: str) -> None:
        config.save_rg_additional_arguments(text)
        self.settingsChanged.emit()

    def _on_debounce_changed(self, value: int) -> None:
        config.save_search_debounce_ms(value)
        self.settingsChanged.emit()

    def _browse_rg_path(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Select ripgrep executable", "", "Executable Files (*)")
        if path:
            self.rg_path_edit.setText(path)

    def _detect_rg_path(self) -> None:
        found = discover_rg()
        if found:
            self.rg_path_edit.setText(found)
            return
        self.rg_test_status.setText("ripgrep not found on PATH")
        self.rg_test_status.setStyleSheet("color: #c00;")

    def _run_rg_test(self) -> None:
        path = self.rg_path_edit.text().strip() or config.DEFAULT_RG_LOCATION
        self.rg_test_status.setText("Testing…")
        self.rg_test_status.setStyleSheet("color: #888;")
        try:
            version = probe_version(path)
        except ExecutionFailure as exc:
            logger.info("ripgrep probe failed: %s", exc)
            self.rg_test_status.setText(f"Failed: {exc}")
            self.rg_test_status.setStyleSheet("color: #c00;")
            return
        self.rg_test_status.setText(f"OK ({version})" if version else "OK")
        self.rg_test_status.setStyleSheet("color: #2a8f2a;")
