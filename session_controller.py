"""State-machine based session orchestration.

All intents and channel/capture notifications become ``SessionEvent``s on a
single queue that one worker task drains in order. Audio takes a separate,
bounded path: capture → fragment queue → sender task → channel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from functools import partial
from typing import Callable, Optional

from config import SessionSettings
from errors import (
    CLIPBOARD_FAILED,
    CONNECTION_ERROR,
    ChannelConnectionError,
    MissingCredential,
    TranscriberError,
    to_transcriber_error,
)
from interfaces import AudioCapture, ChannelFactory, Clipboard, TranscriptionChannel
from models import (
    AudioFragment,
    CopyResult,
    SessionEvent,
    SessionEventKind,
    SessionSnapshot,
    SessionState,
    TranscriptEvent,
)
from transcript import TranscriptReconciler

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TranscriptCallback = Callable[[str, str], None]
ErrorCallback = Callable[[str, str], None]

ACTIVE_STATES = (SessionState.RECORDING, SessionState.PROCESSING)


def _drain(queue: asyncio.Queue) -> None:
    while not queue.empty():
        queue.get_nowait()
        queue.task_done()


class SessionController:
    def __init__(
        self,
        capture: AudioCapture,
        channel_factory: ChannelFactory,
        credential: str,
        clipboard: Optional[Clipboard] = None,
        settings: Optional[SessionSettings] = None,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._capture = capture
        self._channel_factory = channel_factory
        self._credential = credential or ""
        self._clipboard = clipboard
        self._settings = settings or SessionSettings()
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_error = on_error

        self._state = SessionState.IDLE
        self._session_id = 0
        self._reconciler = TranscriptReconciler()
        self._last_error: Optional[str] = None

        self._events: Optional[asyncio.Queue[SessionEvent]] = None
        self._worker: Optional[asyncio.Task] = None
        self._dispatching = False

        self._channel: Optional[TranscriptionChannel] = None
        self._fragments: Optional[asyncio.Queue[AudioFragment | None]] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._send_failures = 0
        self.dropped_fragments = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def final_transcript(self) -> str:
        return self._reconciler.final

    @property
    def interim_fragment(self) -> str:
        return self._reconciler.interim

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def has_credential(self) -> bool:
        return bool(self._credential)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            final_transcript=self._reconciler.final,
            interim_fragment=self._reconciler.interim,
            last_error=self._last_error,
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def start_session(self) -> None:
        await self._submit(SessionEventKind.START)

    async def stop_session(self) -> None:
        await self._submit(SessionEventKind.STOP)

    async def clear_transcript(self) -> None:
        await self._submit(SessionEventKind.CLEAR)

    async def append_final_text(self, text: str) -> None:
        """Append text confirmed outside a live session, e.g. a transcribed file."""
        await self._submit(SessionEventKind.APPEND, TranscriptEvent(text=text, is_final=True))

    def copy_transcript(self) -> CopyResult:
        text = self._reconciler.final
        if self._clipboard is None:
            result = CopyResult(success=False, reason="no clipboard available")
        else:
            result = self._clipboard.copy_text(text)
        if not result.success:
            logger.warning("Copy to clipboard failed: %s", result.reason)
            self._emit_error(CLIPBOARD_FAILED, result.reason)
        return result

    async def settled(self) -> None:
        """Wait until queued events, queued fragments and any teardown are done."""
        while True:
            if self._events is not None:
                await self._events.join()
            fragments = self._fragments
            if fragments is not None:
                await fragments.join()
            teardown = self._teardown_task
            if teardown is not None and not teardown.done():
                await asyncio.wait({teardown})
                continue
            await asyncio.sleep(0)
            pending = self._events is not None and (self._events.qsize() or self._dispatching)
            if not pending and (self._fragments is None or self._fragments.empty()):
                return

    async def aclose(self) -> None:
        """Stop any running session and shut the worker down."""
        if self._state == SessionState.RECORDING:
            await self.stop_session()
        try:
            await asyncio.wait_for(self.settled(), timeout=self._settings.stop_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Controller did not settle on close, forcing release")
        await self._release_resources()
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    async def _submit(self, kind: SessionEventKind, transcript: Optional[TranscriptEvent] = None) -> None:
        done = asyncio.get_running_loop().create_future()
        self._post(SessionEvent(kind=kind.value, session_id=self._session_id, transcript=transcript, done=done))
        await done

    def _post(self, event: SessionEvent) -> None:
        if self._events is None:
            self._events = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(self._events))
        self._events.put_nowait(event)

    async def _run(self, events: asyncio.Queue[SessionEvent]) -> None:
        while True:
            event = await events.get()
            self._dispatching = True
            try:
                await self._dispatch(event)
            except Exception as exc:
                logger.exception("Unhandled error while processing %s", event.kind)
                await self._fail(to_transcriber_error(exc))
            finally:
                self._dispatching = False
                if event.done is not None and not event.done.done():
                    event.done.set_result(None)
                events.task_done()

    async def _dispatch(self, event: SessionEvent) -> None:
        kind = event.kind
        if kind == SessionEventKind.START.value:
            await self._handle_start()
        elif kind == SessionEventKind.STOP.value:
            self._handle_stop()
        elif kind == SessionEventKind.CLEAR.value:
            self._handle_clear()
        elif kind == SessionEventKind.APPEND.value:
            if event.transcript is not None and self._reconciler.apply(event.transcript):
                self._publish_transcript()
        elif event.session_id != self._session_id:
            logger.debug("Dropping %s from stale session %d", kind, event.session_id)
        elif kind == SessionEventKind.TRANSCRIPT.value:
            self._handle_transcript(event)
        elif kind == SessionEventKind.TEARDOWN_DONE.value:
            self._handle_teardown_done()
        elif kind == SessionEventKind.CHANNEL_CLOSED.value:
            if self._state == SessionState.RECORDING:
                await self._fail(ChannelConnectionError("Connection closed unexpectedly"))
        elif kind in (SessionEventKind.CHANNEL_ERROR.value, SessionEventKind.CAPTURE_ERROR.value):
            if self._state in ACTIVE_STATES:
                await self._fail(event.error or ChannelConnectionError())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _handle_start(self) -> None:
        if self._state in ACTIVE_STATES:
            logger.debug("Start ignored while %s", self._state.value)
            return
        if not self._credential:
            error = MissingCredential()
            self._last_error = error.message
            self._transition(SessionState.IDLE)
            self._emit_error(error.code, error.message)
            return

        self._session_id += 1
        session_id = self._session_id
        self._last_error = None
        self._send_failures = 0
        self._transition(SessionState.RECORDING)
        logger.info("Session %d started", session_id)

        channel = self._channel_factory(self._credential)
        self._channel = channel
        try:
            await channel.open(
                on_result=partial(self._on_channel_result, session_id),
                on_error=partial(self._on_failure, SessionEventKind.CHANNEL_ERROR, session_id),
                on_close=partial(self._on_channel_closed, session_id),
            )
            self._fragments = asyncio.Queue()
            self._sender_task = asyncio.create_task(self._send_fragments(session_id, channel, self._fragments))
            await self._capture.start(
                partial(self._on_fragment, session_id),
                on_error=partial(self._on_failure, SessionEventKind.CAPTURE_ERROR, session_id),
            )
        except Exception as exc:
            await self._fail(to_transcriber_error(exc))

    def _handle_stop(self) -> None:
        if self._state != SessionState.RECORDING:
            logger.debug("Stop ignored while %s", self._state.value)
            return
        self._transition(SessionState.PROCESSING)
        self._teardown_task = asyncio.create_task(self._finish_session(self._session_id))

    def _handle_teardown_done(self) -> None:
        self._teardown_task = None
        if self._state != SessionState.PROCESSING:
            return
        self._channel = None
        self._fragments = None
        self._sender_task = None
        if self._reconciler.clear_interim():
            self._publish_transcript()
        self._transition(SessionState.IDLE)
        logger.info("Session %d finished", self._session_id)

    def _handle_transcript(self, event: SessionEvent) -> None:
        if self._state not in ACTIVE_STATES or event.transcript is None:
            return
        if self._reconciler.apply(event.transcript):
            self._publish_transcript()

    def _handle_clear(self) -> None:
        self._reconciler.clear()
        self._last_error = None
        if self._state == SessionState.ERRORED:
            self._transition(SessionState.IDLE)
        self._publish_transcript()

    async def _fail(self, error: TranscriberError) -> None:
        logger.error("Session %d failed [%s]: %s", self._session_id, error.code, error.message)
        self._last_error = error.message
        self._transition(SessionState.ERRORED)
        self._emit_error(error.code, error.message)

        teardown = self._teardown_task
        self._teardown_task = None
        if teardown is not None and not teardown.done():
            teardown.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await teardown
        await self._release_resources()
        if self._reconciler.clear_interim():
            self._publish_transcript()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _finish_session(self, session_id: int) -> None:
        try:
            await asyncio.wait_for(self._shutdown_pipeline(), timeout=self._settings.stop_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Stop did not settle within %.1fs, forcing release", self._settings.stop_timeout_s)
            await self._release_resources()
        except Exception as exc:
            logger.exception("Error while stopping session %d", session_id)
            await self._release_resources()
            self._post(
                SessionEvent(
                    kind=SessionEventKind.CAPTURE_ERROR.value,
                    session_id=session_id,
                    error=to_transcriber_error(exc),
                )
            )
        finally:
            self._post(SessionEvent(kind=SessionEventKind.TEARDOWN_DONE.value, session_id=session_id))

    async def _shutdown_pipeline(self) -> None:
        await self._capture.stop()
        fragments = self._fragments
        if fragments is not None:
            fragments.put_nowait(None)
        sender = self._sender_task
        if sender is not None:
            await sender
        channel = self._channel
        if channel is not None:
            await channel.close()
        self._capture.release()

    async def _release_resources(self) -> None:
        sender = self._sender_task
        self._sender_task = None
        if sender is not None and not sender.done():
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
        fragments = self._fragments
        self._fragments = None
        if fragments is not None:
            _drain(fragments)

        try:
            self._capture.release()
        except Exception:
            logger.exception("Failed to release audio capture")

        channel = self._channel
        self._channel = None
        if channel is not None:
            try:
                await asyncio.wait_for(channel.abort(), timeout=self._settings.stop_timeout_s)
            except Exception:
                logger.exception("Failed to abort transcription channel")

    # ------------------------------------------------------------------
    # Audio path
    # ------------------------------------------------------------------

    def _on_fragment(self, session_id: int, fragment: AudioFragment) -> None:
        queue = self._fragments
        if session_id != self._session_id or queue is None:
            return
        if queue.qsize() >= self._settings.fragment_queue_size:
            dropped = queue.get_nowait()
            queue.task_done()
            self.dropped_fragments += 1
            logger.warning(
                "Fragment queue full, dropped fragment #%s (%d total)",
                getattr(dropped, "sequence", "?"),
                self.dropped_fragments,
            )
        queue.put_nowait(fragment)

    async def _send_fragments(
        self,
        session_id: int,
        channel: TranscriptionChannel,
        queue: asyncio.Queue[AudioFragment | None],
    ) -> None:
        try:
            while True:
                fragment = await queue.get()
                try:
                    if fragment is None:
                        return
                    await channel.send(fragment)
                    self._send_failures = 0
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._send_failures += 1
                    logger.warning(
                        "Failed to send fragment #%d (%d in a row): %s",
                        fragment.sequence,
                        self._send_failures,
                        exc,
                    )
                    limit = self._settings.max_consecutive_send_failures
                    if limit and self._send_failures >= limit:
                        self._post(
                            SessionEvent(
                                kind=SessionEventKind.CHANNEL_ERROR.value,
                                session_id=session_id,
                                error=ChannelConnectionError(
                                    f"{self._send_failures} audio sends failed in a row: {exc}",
                                    code=CONNECTION_ERROR,
                                ),
                            )
                        )
                        return
                finally:
                    queue.task_done()
        finally:
            _drain(queue)

    # ------------------------------------------------------------------
    # Channel / capture notifications
    # ------------------------------------------------------------------

    def _on_channel_result(self, session_id: int, event: TranscriptEvent) -> None:
        self._post(SessionEvent(kind=SessionEventKind.TRANSCRIPT.value, session_id=session_id, transcript=event))

    def _on_channel_closed(self, session_id: int) -> None:
        self._post(SessionEvent(kind=SessionEventKind.CHANNEL_CLOSED.value, session_id=session_id))

    def _on_failure(self, kind: SessionEventKind, session_id: int, error: TranscriberError) -> None:
        self._post(SessionEvent(kind=kind.value, session_id=session_id, error=error))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish_transcript(self) -> None:
        if self._on_transcript:
            self._on_transcript(self._reconciler.final, self._reconciler.interim)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
