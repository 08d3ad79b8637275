"""Simple JSON-based config store plus the typed settings it hands out."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

API_KEY_ENV = "DEEPGRAM_API_KEY"
DEFAULT_HOTKEY = "Key.alt_r"


@dataclass
class RecognitionOptions:
    model: str = "nova-2"
    language: str = "en"
    punctuate: bool = True
    interim_results: bool = True
    smart_format: bool = True

    def to_query_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        for key, value in asdict(self).items():
            if isinstance(value, bool):
                params[key] = "true" if value else "false"
            elif value:
                params[key] = str(value)
        return params


@dataclass
class SessionSettings:
    chunk_ms: int = 250
    stop_timeout_s: float = 5.0
    fragment_queue_size: int = 32
    # 0 disables the threshold
    max_consecutive_send_failures: int = 8

    def __post_init__(self) -> None:
        if self.chunk_ms <= 0:
            raise ValueError(f"chunk_ms must be positive, got {self.chunk_ms}")
        if self.stop_timeout_s <= 0:
            raise ValueError(f"stop_timeout_s must be positive, got {self.stop_timeout_s}")
        if self.fragment_queue_size <= 0:
            raise ValueError(f"fragment_queue_size must be positive, got {self.fragment_queue_size}")
        if self.max_consecutive_send_failures < 0:
            raise ValueError(
                f"max_consecutive_send_failures must not be negative, got {self.max_consecutive_send_failures}"
            )


def _from_section(cls: type, section: Any) -> Any:
    if not isinstance(section, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in section.items() if k in known}
    try:
        return cls(**values)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring invalid %s section in config: %s", cls.__name__, exc)
        return cls()


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_to_text" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_api_key(self) -> str:
        value = self._read_all().get("api_key")
        if isinstance(value, str) and value:
            return value
        return os.getenv(API_KEY_ENV, "")

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_hotkey(self) -> str:
        value = self._read_all().get("hotkey")
        return value if isinstance(value, str) and value else DEFAULT_HOTKEY

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def get_recognition_options(self) -> RecognitionOptions:
        return _from_section(RecognitionOptions, self._read_all().get("recognition"))

    def set_recognition_options(self, options: RecognitionOptions) -> None:
        data = self._read_all()
        data["recognition"] = asdict(options)
        self._write_all(data)

    def get_session_settings(self) -> SessionSettings:
        return _from_section(SessionSettings, self._read_all().get("session"))

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read config %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
