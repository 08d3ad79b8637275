"""Microphone capture adapter.

PortAudio delivers small blocks on its own thread. They are handed to the
event loop with ``call_soon_threadsafe`` and regrouped there into fixed-size
fragments, so everything downstream runs on the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Optional

from errors import DeviceDenied, DeviceNotFound, DeviceUnavailable, NotReady, TranscriberError
from interfaces import FailureCallback, FragmentCallback
from models import AudioFragment

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

SAMPLE_WIDTH = 2  # int16
_DENIED_MARKERS = ("permission", "denied", "not authorized", "not permitted")


def _to_device_error(exc: Exception) -> TranscriberError:
    if isinstance(exc, TranscriberError):
        return exc
    message = str(exc)
    low = message.lower()
    if any(marker in low for marker in _DENIED_MARKERS):
        return DeviceDenied()
    return DeviceUnavailable(f"Failed to access microphone: {message}")


class SoundDeviceAudioCapture:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 250,
        block_ms: int = 50,
        max_pending_blocks: int = 200,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.block_ms = block_ms
        self.device = device
        self.max_pending_blocks = max_pending_blocks
        self.dropped_blocks = 0

        self._stream: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._blocks: Optional[asyncio.Queue[bytes | None]] = None
        self._cancelled = asyncio.Event()
        self._pump_task: Optional[asyncio.Task] = None
        self._capturing = False
        self._stopping = False
        self._buffer = bytearray()
        self._sequence = 0

    @property
    def chunk_bytes(self) -> int:
        return int(self.sample_rate * self.chunk_ms / 1000) * self.channels * SAMPLE_WIDTH

    @property
    def has_device(self) -> bool:
        return self._stream is not None

    def is_active(self) -> bool:
        return self._capturing

    async def request_access(self) -> None:
        if self._stream is not None:
            return
        self._stream = await asyncio.to_thread(self._open_stream)
        logger.info("Microphone acquired (%d Hz, %d ch)", self.sample_rate, self.channels)

    def _open_stream(self) -> Any:
        if sd is None:
            raise DeviceUnavailable("sounddevice is not installed")
        try:
            sd.query_devices(self.device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            logger.warning("No input device: %s", exc)
            raise DeviceNotFound() from exc
        try:
            return sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=int(self.sample_rate * self.block_ms / 1000),
                device=self.device,
                callback=self._on_audio,
            )
        except Exception as exc:
            raise _to_device_error(exc) from exc

    async def start(
        self,
        on_fragment: FragmentCallback,
        on_error: Optional[FailureCallback] = None,
    ) -> None:
        if self._capturing:
            raise NotReady()
        await self.request_access()

        self._loop = asyncio.get_running_loop()
        self._blocks = asyncio.Queue()
        self._cancelled = asyncio.Event()
        self._buffer = bytearray()
        self._sequence = 0
        self._capturing = True
        try:
            self._stream.start()
        except Exception as exc:
            self._capturing = False
            raise _to_device_error(exc) from exc
        self._pump_task = asyncio.create_task(self._pump(on_fragment, on_error))

    async def stop(self) -> None:
        if not self._capturing or self._stopping:
            return
        self._stopping = True
        try:
            # stream.stop() waits for PortAudio to drain its last block
            await asyncio.to_thread(self._stop_stream, self._stream)
        finally:
            self._stopping = False
        if self._capturing:
            self._halt()
        task = self._pump_task
        self._pump_task = None
        if task is not None:
            await task

    def release(self) -> None:
        if self._capturing:
            self._stop_stream(self._stream)
            self._halt()
        task = self._pump_task
        self._pump_task = None
        if task is not None and not task.done():
            task.cancel()
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.close()
            except Exception:
                logger.exception("Failed to close input stream")
            logger.info("Microphone released")

    async def __aenter__(self) -> "SoundDeviceAudioCapture":
        await self.request_access()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.release()

    async def fragments(self) -> AsyncIterator[AudioFragment]:
        """
        Yield fixed-size fragments in capture order until stop.

        The cancellation token is checked before every emission. Once it is
        set, whatever audio remains is delivered as one final fragment.
        """
        blocks = self._blocks
        if blocks is None:
            raise NotReady("Audio capture has not been started")
        while True:
            block = await blocks.get()
            if block is None:
                break
            self._buffer.extend(block)
            while len(self._buffer) >= self.chunk_bytes and not self._cancelled.is_set():
                yield self._take(self.chunk_bytes)
        if self._buffer:
            yield self._take(len(self._buffer), is_last=True)

    def _take(self, size: int, is_last: bool = False) -> AudioFragment:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        fragment = AudioFragment(
            data=data,
            sequence=self._sequence,
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
            is_last=is_last,
        )
        self._sequence += 1
        return fragment

    async def _pump(self, on_fragment: FragmentCallback, on_error: Optional[FailureCallback]) -> None:
        try:
            async for fragment in self.fragments():
                on_fragment(fragment)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Audio capture failed")
            if on_error is not None:
                on_error(_to_device_error(exc))

    @staticmethod
    def _stop_stream(stream: Any) -> None:
        if stream is None:
            return
        try:
            stream.stop()
        except Exception:
            logger.exception("Failed to stop input stream")

    def _halt(self) -> None:
        # PortAudio has returned from its last callback, so every block it
        # scheduled is already queued on the loop ahead of this sentinel.
        self._capturing = False
        self._cancelled.set()
        if self._loop is not None and self._blocks is not None:
            self._loop.call_soon(self._blocks.put_nowait, None)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._capturing or self._loop is None or np is None:
            return
        if status:
            logger.debug("Input stream status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        try:
            self._loop.call_soon_threadsafe(self._enqueue_block, payload)
        except RuntimeError:
            logger.debug("Event loop closed, discarding audio block")

    def _enqueue_block(self, payload: bytes) -> None:
        if self._blocks is None:
            return
        if self._blocks.qsize() >= self.max_pending_blocks:
            self.dropped_blocks += 1
            logger.warning("Capture backlog full, dropped block (%d total)", self.dropped_blocks)
            return
        self._blocks.put_nowait(payload)
