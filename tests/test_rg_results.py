import base64
import json

import pytest

from vaultgrep.app.rg_results import (
    MatchRecord,
    ParseFailure,
    Submatch,
    decode_record,
    parse_output,
    relative_to_root,
)


def test_parse_empty_output_is_empty():
    assert parse_output("") == []
    assert parse_output("\n  \n") == []


def test_parse_keeps_only_match_records(rg_match):
    raw = "\n".join(
        [
            json.dumps({"type": "begin", "data": {"path": {"text": "/root/a.md"}}}),
            rg_match("/root/a.md", "alpha\n", 3, [("alpha", 0, 5)]),
            json.dumps({"type": "end", "data": {"path": {"text": "/root/a.md"}}}),
            json.dumps({"type": "summary", "data": {"elapsed_total": {"secs": 0}}}),
        ]
    )
    records = parse_output(raw + "\n", root="/root")
    assert records == [
        MatchRecord(
            path="a.md",
            absolute_path="/root/a.md",
            line_text="alpha\n",
            line_number=3,
            absolute_offset=0,
            submatches=(Submatch(start=0, end=5, text="alpha"),),
        )
    ]


def test_parse_preserves_emission_order(rg_match):
    raw = "\n".join(
        [
            rg_match("/root/z.md", "z"),
            rg_match("/root/a.md", "a"),
            rg_match("/root/m.md", "m"),
        ]
    )
    assert [r.path for r in parse_output(raw, root="/root")] == ["z.md", "a.md", "m.md"]


def test_invalid_json_line_raises_parse_failure(rg_match):
    raw = rg_match("/root/a.md", "ok") + "\n{not json"
    with pytest.raises(ParseFailure, match="line 2"):
        parse_output(raw)


def test_non_object_line_raises_parse_failure():
    with pytest.raises(ParseFailure):
        parse_output("[1, 2, 3]")


def test_match_missing_fields_fails_closed():
    payload = {"type": "match", "data": {"path": {"text": "/root/a.md"}, "lines": {"text": "x"}}}
    with pytest.raises(ParseFailure):
        decode_record(payload)


def test_match_with_bad_submatch_span_fails():
    payload = {
        "type": "match",
        "data": {
            "path": {"text": "/root/a.md"},
            "lines": {"text": "hello"},
            "line_number": 1,
            "absolute_offset": 0,
            "submatches": [{"match": {"text": "h"}, "start": 4, "end": 2}],
        },
    }
    with pytest.raises(ParseFailure):
        decode_record(payload)


def test_bytes_payloads_are_decoded():
    payload = {
        "type": "match",
        "data": {
            "path": {"bytes": base64.b64encode(b"/root/caf\xc3\xa9.md").decode("ascii")},
            "lines": {"bytes": base64.b64encode(b"bad \xff byte").decode("ascii")},
            "line_number": None,
            "absolute_offset": 10,
            "submatches": [],
        },
    }
    record = decode_record(payload, root="/root")
    assert record.path == "café.md"
    assert record.line_text == "bad \ufffd byte"
    assert record.line_number is None


def test_other_record_kinds_decode_to_none():
    assert decode_record({"type": "context", "data": {}}) is None


@pytest.mark.parametrize(
    ("path", "root", "expected"),
    [
        ("/root/a.md", "/root", "a.md"),
        ("/root/a.md", "/root/", "a.md"),
        ("/root/sub/b.md", "/root", "sub/b.md"),
        ("/rooted/a.md", "/root", "/rooted/a.md"),
        ("/other/a.md", "/root", "/other/a.md"),
        ("C:\\vault\\notes\\a.md", "C:\\vault", "notes/a.md"),
        ("a.md", "", "a.md"),
    ],
)
def test_relative_to_root(path, root, expected):
    assert relative_to_root(path, root) == expected


def test_unicode_line_separators_inside_strings_do_not_split_records():
    lines = [
        json.dumps(
            {
                "type": "match",
                "data": {
                    "path": {"text": f"/v/{name}"},
                    "lines": {"text": text},
                    "line_number": 1,
                    "absolute_offset": 0,
                    "submatches": [],
                },
            },
            ensure_ascii=False,
        )
        for name, text in (("a.md", "foo\u2028bar\n"), ("b.md", "next\u0085line\x1c\f\n"))
    ]
    records = parse_output("\r\n".join(lines) + "\r\n", "/v")
    assert [r.path for r in records] == ["a.md", "b.md"]
    assert records[0].line_text == "foo\u2028bar\n"
    assert records[1].line_text == "next\u0085line\x1c\f\n"


def test_bytes_payload_keeps_raw_line(rg_match):
    raw = b"\xff\xfe needle\n"
    payload = {
        "type": "match",
        "data": {
            "path": {"text": "/root/a.md"},
            "lines": {"bytes": base64.b64encode(raw).decode("ascii")},
            "line_number": 1,
            "absolute_offset": 0,
            "submatches": [{"match": {"text": "needle"}, "start": 3, "end": 9}],
        },
    }
    record = decode_record(payload, root="/root")
    assert record.line_bytes == raw
    assert decode_record(json.loads(rg_match("/root/b.md", "plain\n")), root="/root").line_bytes is None
