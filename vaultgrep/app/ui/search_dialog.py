"""Live ripgrep search dialog."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from PySide6.QtCore import Qt, QAbstractListModel, QByteArray, QEvent, QModelIndex, QSize, QTimer, Signal
from PySide6.QtGui import QPainter, QTextDocument
from PySide6.QtWidgets import (
    QApplication,
    QDialog,
    QDialogButtonBox,
    QLabel,
    QLineEdit,
    QListView,
    QStyle,
    QStyledItemDelegate,
    QStyleOptionViewItem,
    QVBoxLayout,
)

from vaultgrep.app import config
from vaultgrep.app.rg_results import MatchRecord, Submatch, relative_to_root
from vaultgrep.app.search_coordinator import SearchCoordinator

logger = logging.getLogger(__name__)

NO_RESULTS_TEXT = "no results found"
HIGHLIGHT_OPEN = '<span class="match" style="background-color: rgba(255, 215, 0, 0.45); font-weight: bold;">'
HIGHLIGHT_CLOSE = "</span>"

PATH_ROLE = Qt.UserRole
LINE_ROLE = Qt.UserRole + 1
SNIPPET_ROLE = Qt.UserRole + 2
PLACEHOLDER_ROLE = Qt.UserRole + 3


def highlight_snippet(
    line_text: str, submatches: Iterable[Submatch], line_bytes: Optional[bytes] = None
) -> str:
    """Return ``line_text`` as HTML with every submatch span highlighted.

    Submatch offsets are UTF-8 byte offsets. Spans that overlap an earlier
    span or run past the end of the line are clamped.

    When ripgrep sent the line as raw bytes, pass them as ``line_bytes`` so
    the offsets index the original bytes rather than the re-encoded text.
    """
    if line_bytes is not None:
        encoded = line_bytes.rstrip(b"\r\n")
    else:
        encoded = line_text.rstrip("\r\n").encode("utf-8")
    size = len(encoded)
    parts: list[str] = []
    cursor = 0
    for sub in sorted(submatches, key=lambda s: (s.start, s.end)):
        start = min(max(sub.start, cursor), size)
        end = min(sub.end, size)
        if end <= start:
            continue
        parts.append(html.escape(encoded[cursor:start].decode("utf-8", errors="replace")))
        parts.append(HIGHLIGHT_OPEN)
        parts.append(html.escape(encoded[start:end].decode("utf-8", errors="replace")))
        parts.append(HIGHLIGHT_CLOSE)
        cursor = end
    parts.append(html.escape(encoded[cursor:].decode("utf-8", errors="replace")))
    return "".join(parts)


@dataclass(frozen=True)
class ResultRow:
    display_path: str
    snippet_html: str = ""
    path: str = ""
    line: int = 0
    is_placeholder: bool = False


def build_rows(records: Iterable[MatchRecord], root: str = "") -> list[ResultRow]:
    rows: list[ResultRow] = []
    for record in records:
        path = relative_to_root(record.absolute_path, root) if root else record.path
        rows.append(
            ResultRow(
                display_path=path,
                snippet_html=highlight_snippet(record.line_text, record.submatches, record.line_bytes),
                path=path,
                line=record.line_number or 0,
            )
        )
    return rows


class SearchResultModel(QAbstractListModel):
    """Flat list of match rows; every update is a single model reset."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self._rows: list[ResultRow] = []

    @property
    def rows(self) -> list[ResultRow]:
        return list(self._rows)

    def set_results(self, records: Iterable[MatchRecord], root: str = "") -> None:
        rows = build_rows(records, root)
        self._replace(rows or [self._placeholder()])

    def show_placeholder(self, text: str = NO_RESULTS_TEXT) -> None:
        self._replace([self._placeholder(text)])

    def clear(self) -> None:
        self._replace([])

    def has_matches(self) -> bool:
        return any(not row.is_placeholder for row in self._rows)

    def _placeholder(self, text: str = NO_RESULTS_TEXT) -> ResultRow:
        return ResultRow(display_path=text, is_placeholder=True)

    def _replace(self, rows: list[ResultRow]) -> None:
        self.beginResetModel()
        self._rows = rows
        self.endResetModel()

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        if parent.isValid():
            return 0
        return len(self._rows)

    def data(self, index: QModelIndex, role: int = Qt.DisplayRole):
        if not index.isValid() or not (0 <= index.row() < len(self._rows)):
            return None
        row = self._rows[index.row()]
        if role == Qt.DisplayRole:
            return row.display_path
        if role == PATH_ROLE:
            return row.path
        if role == LINE_ROLE:
            return row.line
        if role == SNIPPET_ROLE:
            return row.snippet_html
        if role == PLACEHOLDER_ROLE:
            return row.is_placeholder
        return None

    def flags(self, index: QModelIndex) -> Qt.ItemFlags:
        if not index.isValid():
            return Qt.NoItemFlags
        if index.data(PLACEHOLDER_ROLE):
            return Qt.ItemIsEnabled
        return Qt.ItemIsEnabled | Qt.ItemIsSelectable


class ResultDelegate(QStyledItemDelegate):
    """Paints a bold display path above the highlighted snippet."""

    def _document(self, option: QStyleOptionViewItem, index: QModelIndex) -> QTextDocument:
        doc = QTextDocument()
        doc.setDefaultFont(option.font)
        doc.setDocumentMargin(4)
        if index.data(PLACEHOLDER_ROLE):
            doc.setHtml(f"<i style='color: gray;'>{html.escape(index.data(Qt.DisplayRole) or '')}</i>")
        else:
            path = html.escape(index.data(Qt.DisplayRole) or "")
            line = index.data(LINE_ROLE) or 0
            suffix = f" <span style='color: gray;'>:{line}</span>" if line else ""
            doc.setHtml(f"<b>{path}</b>{suffix}<br>{index.data(SNIPPET_ROLE) or ''}")
        doc.setTextWidth(option.rect.width() if option.rect.width() > 0 else 500)
        return doc

    def paint(self, painter: QPainter, option, index):
        options = QStyleOptionViewItem(option)
        self.initStyleOption(options, index)
        painter.save()
        doc = self._document(options, index)
        if options.state & QStyle.StateFlag.State_Selected:
            painter.fillRect(options.rect, options.palette.highlight())
            doc.setDefaultStyleSheet("body { color: white; }")
        painter.translate(options.rect.topLeft())
        doc.drawContents(painter)
        painter.restore()

    def sizeHint(self, option, index):
        options = QStyleOptionViewItem(option)
        self.initStyleOption(options, index)
        doc = self._document(options, index)
        return QSize(int(doc.idealWidth()), int(doc.size().height()))


class SearchDialog(QDialog):
    """Search-as-you-type over the vault with ripgrep.

    Enter (or click) opens the selected match and closes the dialog;
    Ctrl/Cmd+Enter (or Ctrl/Cmd+click) opens it in a new pane and keeps the
    dialog open.
    """

    # path relative to the vault, 1-based line number (0 = unknown), new pane
    navigationRequested = Signal(str, int, bool)

    def __init__(self, coordinator: SearchCoordinator, root: str = "", parent=None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Find")
        self.setModal(True)
        self._root = root
        # Row chosen by render or keyboard; hover only borrows the selection.
        self._keyboard_row = -1
        self.coordinator = coordinator
        self.coordinator.setParent(self)
        self.coordinator.searchStarted.connect(self._on_search_started)
        self.coordinator.resultsReady.connect(self._on_results)
        self.coordinator.searchFailed.connect(self._on_failed)

        self.geometry_save_timer = QTimer(self)
        self.geometry_save_timer.setInterval(500)
        self.geometry_save_timer.setSingleShot(True)
        self.geometry_save_timer.timeout.connect(self._save_geometry)

        self.resize(640, 420)
        layout = QVBoxLayout()

        self.search = QLineEdit()
        self.search.setPlaceholderText("journal")
        self.search.textChanged.connect(self.coordinator.on_input)
        layout.addWidget(self.search)

        self.status_label = QLabel("")
        self.status_label.setStyleSheet("color: gray; font-style: italic;")
        layout.addWidget(self.status_label)

        self.results_model = SearchResultModel(self)
        self.results_view = QListView()
        self.results_view.setModel(self.results_model)
        self.results_view.setItemDelegate(ResultDelegate(self.results_view))
        self.results_view.setMouseTracking(True)
        self.results_view.setUniformItemSizes(False)
        self.results_view.entered.connect(self._on_hover)
        self.results_view.viewport().installEventFilter(self)
        self.results_view.clicked.connect(self._on_clicked)
        layout.addWidget(self.results_view, 1)

        buttons = QDialogButtonBox(QDialogButtonBox.Close)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

        self.setLayout(layout)
        self._restore_geometry()
        self.search.setFocus()

    def render_results(self, records: list[MatchRecord]) -> None:
        self.results_model.set_results(records, self._root)
        count = len(records)
        self.status_label.setText(f"Found {count} result(s)" if count else "")
        self._keyboard_row = 0 if self.results_model.has_matches() else -1
        self._restore_keyboard_row()

    def render_empty(self) -> None:
        self.results_model.show_placeholder()
        self._keyboard_row = -1
        self.status_label.setText("")

    def selected_path(self) -> Optional[str]:
        index = self.results_view.currentIndex()
        if not index.isValid() or index.data(PLACEHOLDER_ROLE):
            return None
        return index.data(PATH_ROLE)

    def keyPressEvent(self, event):  # type: ignore[override]
        if event.key() in (Qt.Key_Up, Qt.Key_Down):
            self._forward_to_list(event)
            return
        if event.key() in (Qt.Key_J, Qt.Key_K) and (event.modifiers() & Qt.ShiftModifier):
            arrow = Qt.Key_Down if event.key() == Qt.Key_J else Qt.Key_Up
            self._forward_to_list(event.__class__(event.type(), arrow, Qt.NoModifier))
            return
        if event.key() in (Qt.Key_Return, Qt.Key_Enter):
            new_pane = bool(event.modifiers() & (Qt.ControlModifier | Qt.MetaModifier))
            if not self._activate(self.results_view.currentIndex(), new_pane):
                self.coordinator.flush()
            return
        super().keyPressEvent(event)

    def done(self, result: int) -> None:  # type: ignore[override]
        self.coordinator.shutdown()
        self.geometry_save_timer.stop()
        self._save_geometry()
        super().done(result)

    def resizeEvent(self, event) -> None:  # type: ignore[override]
        super().resizeEvent(event)
        self.geometry_save_timer.start()

    def eventFilter(self, obj, event):  # type: ignore[override]
        if event.type() == QEvent.Leave and obj is self.results_view.viewport():
            self._restore_keyboard_row()
        return super().eventFilter(obj, event)

    def _forward_to_list(self, event) -> None:
        previous_focus = self.focusWidget()
        QApplication.sendEvent(self.results_view, event)
        self._keyboard_row = self.results_view.currentIndex().row()
        if previous_focus is not None and previous_focus is not self.results_view:
            previous_focus.setFocus()

    def _activate(self, index: QModelIndex, new_pane: bool) -> bool:
        if not index.isValid() or index.data(PLACEHOLDER_ROLE):
            return False
        path = index.data(PATH_ROLE)
        if not path:
            return False
        self.navigationRequested.emit(path, int(index.data(LINE_ROLE) or 0), new_pane)
        if not new_pane:
            self.accept()
        return True

    def _on_hover(self, index: QModelIndex) -> None:
        if index.isValid() and not index.data(PLACEHOLDER_ROLE):
            self.results_view.setCurrentIndex(index)

    def _restore_keyboard_row(self) -> None:
        """Drop the hover selection and go back to the keyboard row."""
        index = self.results_model.index(self._keyboard_row, 0) if self._keyboard_row >= 0 else QModelIndex()
        if index.isValid() and not index.data(PLACEHOLDER_ROLE):
            self.results_view.setCurrentIndex(index)
        else:
            self.results_view.clearSelection()
            self.results_view.setCurrentIndex(QModelIndex())

    def _on_clicked(self, index: QModelIndex) -> None:
        modifiers = QApplication.keyboardModifiers()
        self._activate(index, bool(modifiers & (Qt.ControlModifier | Qt.MetaModifier)))

    def _on_search_started(self, text: str) -> None:
        self.status_label.setText("Searching…")

    def _on_results(self, records: list) -> None:
        self.render_results(records)

    def _on_failed(self, message: str) -> None:
        logger.debug("Rendering empty state after failure: %s", message)
        self.render_empty()

    def _restore_geometry(self) -> None:
        saved_geometry = config.load_dialog_geometry("search_dialog")
        if not saved_geometry:
            return
        try:
            self.restoreGeometry(QByteArray.fromBase64(saved_geometry.encode("ascii")))
        except (ValueError, UnicodeEncodeError) as exc:
            logger.warning("Failed to restore search dialog geometry: %s", exc)

    def _save_geometry(self) -> None:
        try:
            geometry_b64 = self.saveGeometry().toBase64().data().decode("ascii")
            config.save_dialog_geometry("search_dialog", geometry_b64)
        except OSError as exc:
            logger.warning("Failed to save search dialog geometry: %s", exc)
