"""ASR adapters for the Deepgram listen API.

``DeepgramLiveChannel`` keeps one WebSocket open for the length of a
session: binary audio goes out, JSON ``Results`` messages come back and are
handed to ``on_result`` one at a time from a single receive task.
``DeepgramPrerecordedClient`` is the one-shot HTTP variant for a complete
audio buffer.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from config import RecognitionOptions
from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    ERROR_MESSAGES,
    NETWORK_ERROR,
    AlreadyOpen,
    ChannelConnectionError,
    MissingCredential,
    NotOpen,
    TranscriberError,
)
from interfaces import CloseCallback, FailureCallback, ResultCallback
from models import AudioFragment, ChannelState, TranscriptEvent

try:
    import websockets
    from websockets.exceptions import ConnectionClosed, InvalidStatus
except Exception:  # pragma: no cover
    websockets = None  # type: ignore
    ConnectionClosed = None  # type: ignore
    InvalidStatus = None  # type: ignore

try:
    import httpx
except Exception:  # pragma: no cover
    httpx = None  # type: ignore

logger = logging.getLogger(__name__)

LIVE_URL = "wss://api.deepgram.com/v1/listen"
PRERECORDED_URL = "https://api.deepgram.com/v1/listen"
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})


def parse_transcript_event(data: dict) -> Optional[TranscriptEvent]:
    """Pull the top alternative out of a ``Results`` message, if it has text."""
    channel = data.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives") or []
    if not alternatives or not isinstance(alternatives[0], dict):
        return None
    best = alternatives[0]
    text = str(best.get("transcript") or "")
    if not text:
        return None
    confidence = best.get("confidence")
    return TranscriptEvent(
        text=text,
        is_final=bool(data.get("is_final", False)),
        confidence=float(confidence) if confidence is not None else None,
    )


def _to_channel_error(exc: BaseException) -> TranscriberError:
    """Map a websockets/httpx/network exception to a channel error."""
    if isinstance(exc, TranscriberError):
        return exc
    status = None
    if InvalidStatus is not None and isinstance(exc, InvalidStatus):
        status = exc.response.status_code
    elif httpx is not None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    if status in (401, 403):
        return ChannelConnectionError(ERROR_MESSAGES[AUTH_FAILED], code=AUTH_FAILED, retryable=False)

    message = str(exc) or exc.__class__.__name__
    low = message.lower()
    if ConnectionClosed is not None and isinstance(exc, ConnectionClosed):
        return ChannelConnectionError(f"Connection lost: {message}", code=NETWORK_ERROR)
    if "401" in low or "403" in low or "auth" in low or "api key" in low:
        return ChannelConnectionError(ERROR_MESSAGES[AUTH_FAILED], code=AUTH_FAILED, retryable=False)
    if isinstance(exc, (OSError, asyncio.TimeoutError)) or (
        "timeout" in low or "network" in low or "connection" in low
    ):
        return ChannelConnectionError(f"{ERROR_MESSAGES[NETWORK_ERROR]} ({message})", code=NETWORK_ERROR)
    return ChannelConnectionError(f"Transcription error: {message}", code=ASR_PROTOCOL_ERROR)


class DeepgramLiveChannel:
    def __init__(
        self,
        api_key: str,
        options: Optional[RecognitionOptions] = None,
        sample_rate: int = 16000,
        channels: int = 1,
        url: str = LIVE_URL,
        open_timeout_s: float = 10.0,
        close_timeout_s: float = 5.0,
    ) -> None:
        self._api_key = api_key
        self._options = options or RecognitionOptions()
        self._sample_rate = sample_rate
        self._channels = channels
        self._url = url
        self._open_timeout_s = open_timeout_s
        self._close_timeout_s = close_timeout_s

        self._state = ChannelState.CLOSED
        self._ws: Any = None
        self._receiver: Optional[asyncio.Task] = None
        self._on_result: Optional[ResultCallback] = None
        self._on_error: Optional[FailureCallback] = None
        self._on_close: Optional[CloseCallback] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    def is_open(self) -> bool:
        return self._state == ChannelState.OPEN

    def build_url(self) -> str:
        params = self._options.to_query_params()
        params.update(
            {
                "encoding": "linear16",
                "sample_rate": str(self._sample_rate),
                "channels": str(self._channels),
            }
        )
        return f"{self._url}?{urlencode(params)}"

    async def open(
        self,
        on_result: ResultCallback,
        on_error: FailureCallback,
        on_close: Optional[CloseCallback] = None,
    ) -> None:
        if self._state != ChannelState.CLOSED:
            raise AlreadyOpen()
        if not self._api_key:
            raise MissingCredential()
        if websockets is None:
            raise ChannelConnectionError("websockets is not installed", code=ASR_PROTOCOL_ERROR)

        self._state = ChannelState.CONNECTING
        try:
            self._ws = await websockets.connect(
                self.build_url(),
                additional_headers={"Authorization": f"Token {self._api_key}"},
                open_timeout=self._open_timeout_s,
            )
        except Exception as exc:
            self._state = ChannelState.CLOSED
            logger.warning("Deepgram connection failed: %s", exc)
            raise _to_channel_error(exc) from exc

        self._on_result = on_result
        self._on_error = on_error
        self._on_close = on_close
        self._state = ChannelState.OPEN
        self._receiver = asyncio.create_task(self._receive_loop(self._ws))
        logger.info("Deepgram connection opened (model=%s, language=%s)", self._options.model, self._options.language)

    async def send(self, fragment: AudioFragment) -> None:
        if self._state != ChannelState.OPEN or self._ws is None:
            raise NotOpen()
        try:
            await self._ws.send(fragment.data)
        except Exception as exc:
            if ConnectionClosed is not None and isinstance(exc, ConnectionClosed):
                raise NotOpen(f"Connection closed while sending: {exc}") from exc
            raise _to_channel_error(exc) from exc

    async def close(self) -> None:
        if self._state not in (ChannelState.OPEN, ChannelState.CONNECTING):
            return
        self._state = ChannelState.CLOSING
        ws = self._ws
        receiver = self._receiver
        try:
            try:
                await ws.send(CLOSE_STREAM_MESSAGE)
            except Exception as exc:
                logger.debug("Could not send CloseStream: %s", exc)
            if receiver is not None and not receiver.done():
                try:
                    await asyncio.wait_for(asyncio.shield(receiver), timeout=self._close_timeout_s)
                except asyncio.TimeoutError:
                    logger.warning("Deepgram did not finish within %.1fs, closing anyway", self._close_timeout_s)
        finally:
            await self._teardown(ws, receiver)
        logger.info("Deepgram connection closed")

    async def abort(self) -> None:
        if self._state == ChannelState.CLOSED:
            return
        self._state = ChannelState.CLOSING
        await self._teardown(self._ws, self._receiver)
        logger.info("Deepgram connection aborted")

    async def _teardown(self, ws: Any, receiver: Optional[asyncio.Task]) -> None:
        if receiver is not None and not receiver.done():
            receiver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await receiver
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.debug("Error while closing socket: %s", exc)
        self._ws = None
        self._receiver = None
        self._state = ChannelState.CLOSED

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._state == ChannelState.OPEN:
                self._report(_to_channel_error(exc))
            else:
                logger.debug("Receive loop ended during close: %s", exc)
        finally:
            if self._on_close is not None:
                self._on_close()

    def _dispatch(self, message: Any) -> None:
        if isinstance(message, (bytes, bytearray)):
            logger.debug("Ignoring %d-byte binary message", len(message))
            return
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._report(ChannelConnectionError("ASR response is not valid JSON", code=ASR_PROTOCOL_ERROR))
            return
        if not isinstance(data, dict):
            return

        kind = data.get("type", "Results")
        if kind == "Results":
            event = parse_transcript_event(data)
            if event is not None and self._on_result is not None:
                self._on_result(event)
        elif kind == "Error":
            description = data.get("description") or data.get("message") or "unknown error"
            self._report(ChannelConnectionError(f"Transcription error: {description}", code=ASR_PROTOCOL_ERROR))
        else:
            logger.debug("Ignoring %s message", kind)

    def _report(self, error: TranscriberError) -> None:
        logger.error("Deepgram error [%s]: %s", error.code, error)
        if self._on_error is not None:
            self._on_error(error)


class DeepgramPrerecordedClient:
    """One-shot transcription of a complete audio buffer."""

    def __init__(
        self,
        api_key: str,
        options: Optional[RecognitionOptions] = None,
        url: str = PRERECORDED_URL,
        timeout_s: float = 60.0,
        transport: Any = None,
    ) -> None:
        self._api_key = api_key
        self._options = options or RecognitionOptions()
        self._url = url
        self._timeout_s = timeout_s
        self._transport = transport

    async def transcribe(self, audio: bytes, mimetype: str = "audio/wav") -> str:
        if not self._api_key:
            raise MissingCredential()
        if httpx is None:
            raise ChannelConnectionError("httpx is not installed", code=ASR_PROTOCOL_ERROR)

        params = self._options.to_query_params()
        params.pop("interim_results", None)
        headers = {"Authorization": f"Token {self._api_key}", "Content-Type": mimetype}
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self._url, params=params, headers=headers, content=audio)
                response.raise_for_status()
                data = response.json()
        except Exception as exc:
            logger.warning("Pre-recorded transcription failed: %s", exc)
            raise _to_channel_error(exc) from exc
        return self._extract_transcript(data)

    def _extract_transcript(self, data: Any) -> str:
        try:
            return str(data["results"]["channels"][0]["alternatives"][0].get("transcript") or "")
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ChannelConnectionError(ERROR_MESSAGES[ASR_PROTOCOL_ERROR], code=ASR_PROTOCOL_ERROR) from exc
