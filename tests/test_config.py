import json

import pytest

from vaultgrep.app import config


def test_defaults_when_file_missing(isolated_config):
    assert not isolated_config.exists()
    settings = config.load_search_settings()
    assert settings.rg_path == config.DEFAULT_RG_LOCATION
    assert settings.extra_args == ""
    assert config.load_search_debounce_ms() == config.DEFAULT_SEARCH_DEBOUNCE_MS
    assert config.load_last_vault() is None


def test_malformed_file_falls_back_to_defaults(isolated_config):
    isolated_config.write_text("{not json", encoding="utf-8")
    assert config.load_rg_location() == config.DEFAULT_RG_LOCATION
    isolated_config.write_text("[1, 2]", encoding="utf-8")
    assert config.load_rg_additional_arguments() == ""


def test_updates_merge_with_existing_keys(isolated_config):
    config.save_last_vault("/notes")
    config.save_search_settings(config.SearchSettings(rg_path="  /opt/rg  ", extra_args="--hidden"))
    payload = json.loads(isolated_config.read_text(encoding="utf-8"))
    assert payload == {
        "last_vault": "/notes",
        "rg_location": "/opt/rg",
        "rg_additional_arguments": "--hidden",
    }
    assert config.load_search_settings() == config.SearchSettings("/opt/rg", "--hidden")


def test_blank_rg_location_means_default():
    config.save_rg_location("   ")
    assert config.load_rg_location() == config.DEFAULT_RG_LOCATION


@pytest.mark.parametrize(
    ("stored", "expected"),
    [(150, 150), ("40", 40), (-5, 0), (99999, 5000), (True, 300), ("soon", 300), (None, 300)],
)
def test_debounce_is_clamped(isolated_config, stored, expected):
    isolated_config.write_text(json.dumps({"search_debounce_ms": stored}), encoding="utf-8")
    assert config.load_search_debounce_ms() == expected


def test_dialog_geometry_keyed_by_name():
    config.save_dialog_geometry("search_dialog", "AAAA")
    assert config.load_dialog_geometry("search_dialog") == "AAAA"
    assert config.load_dialog_geometry("other") is None
    assert config.load_window_geometry() is None
