"""Shared error codes, user-facing messages and the exception hierarchy."""

from __future__ import annotations

from typing import Optional

DEVICE_DENIED = "DEVICE_DENIED"
DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
NOT_READY = "NOT_READY"
NOT_OPEN = "NOT_OPEN"
ALREADY_OPEN = "ALREADY_OPEN"
CONNECTION_ERROR = "CONNECTION_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
CLIPBOARD_FAILED = "CLIPBOARD_FAILED"
UNKNOWN = "UNKNOWN"

ERROR_MESSAGES = {
    DEVICE_DENIED: "Microphone access denied. Please grant permission in settings.",
    DEVICE_NOT_FOUND: "No microphone found. Please connect a microphone.",
    DEVICE_UNAVAILABLE: "Failed to access microphone.",
    NOT_READY: "Audio capture is already running.",
    NOT_OPEN: "Transcription connection is not open.",
    ALREADY_OPEN: "Transcription connection is already open.",
    CONNECTION_ERROR: "Transcription connection failed.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    MISSING_CREDENTIAL: "Missing credential: please set your Deepgram API key.",
    CLIPBOARD_FAILED: "Failed to copy to clipboard.",
    UNKNOWN: "Unexpected error.",
}


class TranscriberError(Exception):
    """Base class for every failure the session pipeline knows how to surface."""

    code = UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str = "",
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message or ERROR_MESSAGES.get(self.code, ERROR_MESSAGES[UNKNOWN]))

    @property
    def message(self) -> str:
        return str(self)


class DeviceError(TranscriberError):
    code = DEVICE_UNAVAILABLE


class DeviceDenied(DeviceError):
    code = DEVICE_DENIED


class DeviceNotFound(DeviceError):
    code = DEVICE_NOT_FOUND


class DeviceUnavailable(DeviceError):
    code = DEVICE_UNAVAILABLE


class NotReady(TranscriberError):
    code = NOT_READY


class ChannelError(TranscriberError):
    code = CONNECTION_ERROR


class NotOpen(ChannelError):
    code = NOT_OPEN


class AlreadyOpen(ChannelError):
    code = ALREADY_OPEN


class ChannelConnectionError(ChannelError):
    """Network loss, auth rejection or protocol error on the remote connection.

    ``code`` narrows the cause to NETWORK_ERROR, AUTH_FAILED or
    ASR_PROTOCOL_ERROR when it is known.
    """

    code = CONNECTION_ERROR
    retryable = True


class MissingCredential(TranscriberError):
    code = MISSING_CREDENTIAL


class UnknownError(TranscriberError):
    code = UNKNOWN


def to_transcriber_error(exc: BaseException) -> TranscriberError:
    """Return ``exc`` unchanged if it is already ours, else wrap it as UNKNOWN."""
    if isinstance(exc, TranscriberError):
        return exc
    message = str(exc) or exc.__class__.__name__
    return UnknownError(f"{ERROR_MESSAGES[UNKNOWN]} {message}")
