"""Ripgrep JSON-lines output decoding.

ripgrep's ``--json`` mode prints one JSON object per line. Only ``match``
records are kept; ``begin``/``end``/``context``/``summary`` records are
dropped. Every retained record is validated before it becomes a
``MatchRecord`` so malformed output fails the whole run instead of leaking
half-decoded data into the UI.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SearchError(Exception):
    """Base class for anything that ends a search run without results."""


class SearchCancelled(SearchError):
    """Raised/emitted when a run was superseded or its view closed."""


class ExecutionFailure(SearchError):
    """The search executable could not run or exited with an error status."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class ParseFailure(SearchError):
    """The executable produced output that is not valid ripgrep JSON."""


@dataclass(frozen=True)
class SearchQuery:
    text: str
    root: str
    executable: str
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class Submatch:
    """One highlighted span; ``start``/``end`` are UTF-8 byte offsets."""
    start: int
    end: int
    text: str


@dataclass(frozen=True)
class MatchRecord:
    path: str
    absolute_path: str
    line_text: str
    line_number: Optional[int]
    absolute_offset: int
    submatches: tuple[Submatch, ...] = ()
    # Raw line when ripgrep sent it as base64; submatch offsets index into it.
    line_bytes: Optional[bytes] = None


def relative_to_root(path: str, root: str) -> str:
    """Strip ``root`` and one separator from ``path`` when it is a prefix."""
    if not path:
        return ""
    if root:
        trimmed_root = root.rstrip("/\\")
        if trimmed_root and path.startswith(trimmed_root):
            rest = path[len(trimmed_root):]
            if rest[:1] in ("/", "\\"):
                path = rest[1:]
            elif not rest:
                path = ""
    return path.replace("\\", "/")


def _decode_arbitrary(value: Any, field: str) -> str:
    return _decode_arbitrary_raw(value, field)[0]


def _decode_arbitrary_raw(value: Any, field: str) -> tuple[str, Optional[bytes]]:
    """Decode ripgrep's ``{"text": ...}`` / ``{"bytes": <base64>}`` union.

    The raw bytes are returned as well when the payload was base64.
    """
    if not isinstance(value, dict):
        raise ParseFailure(f"{field}: expected an object, got {type(value).__name__}")
    text = value.get("text")
    if isinstance(text, str):
        return text, None
    raw = value.get("bytes")
    if isinstance(raw, str):
        try:
            decoded = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ParseFailure(f"{field}: invalid base64 payload") from exc
        return decoded.decode("utf-8", errors="replace"), decoded
    raise ParseFailure(f"{field}: missing 'text' or 'bytes'")


def _require_int(data: dict, key: str, allow_none: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None and allow_none:
        return None
    # bool is an int subclass; ripgrep never emits it for offsets.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseFailure(f"data.{key}: expected an integer, got {value!r}")
    return value


def _decode_submatches(raw: Any) -> tuple[Submatch, ...]:
    if not isinstance(raw, list):
        raise ParseFailure("data.submatches: expected a list")
    submatches: list[Submatch] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ParseFailure(f"data.submatches[{idx}]: expected an object")
        text = _decode_arbitrary(entry.get("match"), f"data.submatches[{idx}].match")
        start = _require_int(entry, "start")
        end = _require_int(entry, "end")
        if start < 0 or end < start:
            raise ParseFailure(f"data.submatches[{idx}]: invalid span {start}..{end}")
        submatches.append(Submatch(start=start, end=end, text=text))
    return tuple(submatches)


def decode_record(payload: Any, root: str = "") -> Optional[MatchRecord]:
    """Project one decoded JSON value into a ``MatchRecord``.

    Returns ``None`` for well-formed records of another kind.
    """
    if not isinstance(payload, dict):
        raise ParseFailure(f"expected a JSON object, got {type(payload).__name__}")
    kind = payload.get("type")
    if not isinstance(kind, str):
        raise ParseFailure("record without a 'type' field")
    if kind != "match":
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ParseFailure("match record without a 'data' object")
    absolute_path = _decode_arbitrary(data.get("path"), "data.path")
    line_text, line_bytes = _decode_arbitrary_raw(data.get("lines"), "data.lines")
    return MatchRecord(
        path=relative_to_root(absolute_path, root),
        absolute_path=absolute_path,
        line_text=line_text,
        line_number=_require_int(data, "line_number", allow_none=True),
        absolute_offset=_require_int(data, "absolute_offset"),
        submatches=_decode_submatches(data.get("submatches")),
        line_bytes=line_bytes,
    )


def parse_output(raw: str, root: str = "") -> list[MatchRecord]:
    """Parse a complete ``rg --json`` stdout capture, keeping emission order."""
    records: list[MatchRecord] = []
    text = (raw or "").rstrip()
    if not text:
        return records
    # Records end at "\n" only. U+2028 and U+0085 can appear raw inside strings.
    for line_no, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ParseFailure(f"line {line_no}: not valid JSON ({exc.msg})") from exc
        try:
            record = decode_record(payload, root)
        except ParseFailure as exc:
            raise ParseFailure(f"line {line_no}: {exc}") from exc
        if record is not None:
            records.append(record)
    logger.debug("Parsed %d match record(s)", len(records))
    return records
