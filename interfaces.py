"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from config import RecognitionOptions, SessionSettings
from errors import TranscriberError
from models import AudioFragment, CopyResult, TranscriptEvent

FragmentCallback = Callable[[AudioFragment], None]
ResultCallback = Callable[[TranscriptEvent], None]
FailureCallback = Callable[[TranscriberError], None]
CloseCallback = Callable[[], None]


class AudioCapture(Protocol):
    async def request_access(self) -> None: ...

    async def start(
        self,
        on_fragment: FragmentCallback,
        on_error: Optional[FailureCallback] = None,
    ) -> None: ...

    async def stop(self) -> None: ...

    def is_active(self) -> bool: ...

    def release(self) -> None: ...


class TranscriptionChannel(Protocol):
    async def open(
        self,
        on_result: ResultCallback,
        on_error: FailureCallback,
        on_close: Optional[CloseCallback] = None,
    ) -> None: ...

    async def send(self, fragment: AudioFragment) -> None: ...

    async def close(self) -> None: ...

    async def abort(self) -> None: ...

    def is_open(self) -> bool: ...


ChannelFactory = Callable[[str], TranscriptionChannel]


class PrerecordedTranscriber(Protocol):
    def transcribe(self, audio: bytes, mimetype: str = "audio/wav") -> Awaitable[str]: ...


class Clipboard(Protocol):
    def copy_text(self, text: str) -> CopyResult: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_recognition_options(self) -> RecognitionOptions: ...

    def get_session_settings(self) -> SessionSettings: ...
