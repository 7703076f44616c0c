from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

GLOBAL_CONFIG = Path(os.getenv("VAULTGREP_CONFIG") or (Path.home() / ".vaultgrep_config.json"))

DEFAULT_RG_LOCATION = "/usr/local/bin/rg"
DEFAULT_SEARCH_DEBOUNCE_MS = 300


@dataclass
class SearchSettings:
    rg_path: str = DEFAULT_RG_LOCATION
    extra_args: str = ""


def init_settings() -> None:
    GLOBAL_CONFIG.parent.mkdir(parents=True, exist_ok=True)


def _read_global_config() -> dict:
    """Return the parsed global config, or an empty dict on error/missing."""
    if not GLOBAL_CONFIG.exists():
        return {}
    try:
        payload = json.loads(GLOBAL_CONFIG.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _update_global_config(updates: dict) -> None:
    """Merge updates into global config file."""
    existing = _read_global_config()
    existing.update(updates)
    GLOBAL_CONFIG.write_text(json.dumps(existing, indent=2), encoding="utf-8")


def load_rg_location() -> str:
    """Return the configured ripgrep executable (default: /usr/local/bin/rg)."""
    payload = _read_global_config()
    value = payload.get("rg_location")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULT_RG_LOCATION


def save_rg_location(path: str) -> None:
    _update_global_config({"rg_location": (path or "").strip()})


def load_rg_additional_arguments() -> str:
    """Return extra ripgrep arguments as typed by the user (default: empty)."""
    payload = _read_global_config()
    value = payload.get("rg_additional_arguments")
    return value if isinstance(value, str) else ""


def save_rg_additional_arguments(arguments: str) -> None:
    _update_global_config({"rg_additional_arguments": arguments or ""})


def load_search_settings() -> SearchSettings:
    """Load persisted search settings merged over defaults."""
    return SearchSettings(
        rg_path=load_rg_location(),
        extra_args=load_rg_additional_arguments(),
    )


def save_search_settings(settings: SearchSettings) -> None:
    _update_global_config(
        {
            "rg_location": (settings.rg_path or "").strip(),
            "rg_additional_arguments": settings.extra_args or "",
        }
    )


def load_search_debounce_ms(default: int = DEFAULT_SEARCH_DEBOUNCE_MS) -> int:
    """Return the keystroke quiescence window in milliseconds."""
    payload = _read_global_config()
    value = payload.get("search_debounce_ms")
    if isinstance(value, bool):
        return default
    try:
        ms = int(value)
    except (TypeError, ValueError):
        return default
    return max(0, min(ms, 5000))


def save_search_debounce_ms(ms: int) -> None:
    _update_global_config({"search_debounce_ms": max(0, min(int(ms), 5000))})


def load_last_vault() -> Optional[str]:
    payload = _read_global_config()
    last = payload.get("last_vault")
    return last if isinstance(last, str) else None


def save_last_vault(path: str) -> None:
    _update_global_config({"last_vault": path})


def load_window_geometry() -> Optional[str]:
    """Load the saved main window geometry (base64 encoded QByteArray)."""
    return load_dialog_geometry("main_window")


def save_window_geometry(geometry: str) -> None:
    save_dialog_geometry("main_window", geometry)


def load_dialog_geometry(dialog_name: str) -> Optional[str]:
    """Load the saved dialog geometry (base64 encoded QByteArray)."""
    payload = _read_global_config()
    value = payload.get(f"{dialog_name}_geometry")
    return value if isinstance(value, str) and value else None


def save_dialog_geometry(dialog_name: str, geometry: str) -> None:
    """Save the dialog geometry (base64 encoded QByteArray)."""
    _update_global_config({f"{dialog_name}_geometry": geometry})
