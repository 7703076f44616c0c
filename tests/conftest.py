import json
import os
import stat
import sys
import textwrap

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from vaultgrep.app import config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the settings store at a throwaway file for every test."""
    path = tmp_path / "vaultgrep_config.json"
    monkeypatch.setattr(config, "GLOBAL_CONFIG", path)
    return path


def _match_line(path: str, text: str, line_number: int = 1, submatches=None) -> str:
    """Build one ``rg --json`` match record line."""
    subs = submatches if submatches is not None else []
    return json.dumps(
        {
            "type": "match",
            "data": {
                "path": {"text": path},
                "lines": {"text": text},
                "line_number": line_number,
                "absolute_offset": 0,
                "submatches": [
                    {"match": {"text": s_text}, "start": start, "end": end} for s_text, start, end in subs
                ],
            },
        }
    )


@pytest.fixture
def fake_rg(tmp_path):
    """Write a stand-in ripgrep script and return a factory for it.

    The script prints ``stdout``, writes argv to ``argv.txt`` next to itself,
    optionally sleeps, and exits with ``exit_code``.
    """

    def make(stdout: str = "", exit_code: int = 0, sleep: float = 0.0, stderr: str = "", name: str = "rg"):
        script = tmp_path / name
        argv_file = tmp_path / f"{name}.argv.txt"
        script.write_text(
            f"#!{sys.executable}\n"
            + textwrap.dedent(
                f"""
                import sys, time
                with open({str(argv_file)!r}, "w", encoding="utf-8") as fh:
                    fh.write("\\n".join(sys.argv[1:]))
                time.sleep({sleep!r})
                sys.stdout.write({stdout!r})
                sys.stdout.flush()
                sys.stderr.write({stderr!r})
                sys.exit({exit_code!r})
                """
            ),
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return make


@pytest.fixture
def rg_match():
    return _match_line
