"""Core data models for the app."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import TranscriberError


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    ERRORED = "ERRORED"


class ChannelState(str, Enum):
    CLOSED = "CLOSED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"


class SessionEventKind(str, Enum):
    START = "start"
    STOP = "stop"
    CLEAR = "clear"
    APPEND = "append"
    TRANSCRIPT = "transcript"
    CHANNEL_ERROR = "channel_error"
    CHANNEL_CLOSED = "channel_closed"
    CAPTURE_ERROR = "capture_error"
    TEARDOWN_DONE = "teardown_done"


@dataclass
class AudioFragment:
    data: bytes
    sequence: int = 0
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0
    is_last: bool = False


@dataclass
class TranscriptEvent:
    text: str
    is_final: bool = False
    confidence: Optional[float] = None


@dataclass
class SessionEvent:
    """One entry of the controller's event queue."""

    kind: str
    session_id: int = 0
    transcript: Optional[TranscriptEvent] = None
    error: Optional[TranscriberError] = None
    done: Optional[asyncio.Future] = None


@dataclass
class SessionSnapshot:
    state: SessionState
    final_transcript: str = ""
    interim_fragment: str = ""
    last_error: Optional[str] = None


@dataclass
class CopyResult:
    success: bool
    reason: str
