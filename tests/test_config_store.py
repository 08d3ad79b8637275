from __future__ import annotations

import json
from pathlib import Path

from config import DEFAULT_HOTKEY, JsonConfigStore, RecognitionOptions, SessionSettings


def test_config_read_write(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""
    assert store.get_hotkey() == DEFAULT_HOTKEY == "Key.alt_r"

    store.set_api_key("abc")
    store.set_hotkey("f8")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "abc"
    assert reloaded.get_hotkey() == "f8"


def test_config_invalid_json_fallback(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""
    assert store.get_hotkey() == "Key.alt_r"
    assert store.get_session_settings() == SessionSettings()


def test_api_key_falls_back_to_environment(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DEEPGRAM_API_KEY", "from-env")
    store = JsonConfigStore(path=tmp_path / "config.json")
    assert store.get_api_key() == "from-env"

    store.set_api_key("from-file")
    assert store.get_api_key() == "from-file"


def test_recognition_options_round_trip(tmp_path: Path) -> None:
    store = JsonConfigStore(path=tmp_path / "config.json")
    assert store.get_recognition_options() == RecognitionOptions()

    store.set_recognition_options(RecognitionOptions(model="nova-3", language="fr", smart_format=False))
    store.set_hotkey("Key.f9")

    options = JsonConfigStore(path=tmp_path / "config.json").get_recognition_options()
    assert options.model == "nova-3"
    assert options.language == "fr"
    assert options.to_query_params()["smart_format"] == "false"


def test_session_section_ignores_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"session": {"chunk_ms": 100, "stop_timeout_s": 2.5, "legacy_flag": True}}),
        encoding="utf-8",
    )

    settings = JsonConfigStore(path=path).get_session_settings()
    assert settings.chunk_ms == 100
    assert settings.stop_timeout_s == 2.5
    assert settings.fragment_queue_size == 32


def test_non_object_config_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_hotkey() == "Key.alt_r"
    assert store.get_recognition_options() == RecognitionOptions()


def test_null_api_key_counts_as_missing(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_key": None, "hotkey": None}), encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""
    assert store.get_hotkey() == "Key.alt_r"

    monkeypatch.setenv("DEEPGRAM_API_KEY", "from-env")
    assert store.get_api_key() == "from-env"


def test_non_string_api_key_is_ignored(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_key": 12345}), encoding="utf-8")

    assert JsonConfigStore(path=path).get_api_key() == ""


def test_out_of_range_session_values_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"session": {"fragment_queue_size": 0, "stop_timeout_s": -1}}),
        encoding="utf-8",
    )

    assert JsonConfigStore(path=path).get_session_settings() == SessionSettings()
