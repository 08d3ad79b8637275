"""Tests for SoundDeviceAudioCapture."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import numpy as np
import pytest

import recorder as rec_mod
from errors import DeviceDenied, DeviceNotFound, DeviceUnavailable, NotReady
from models import AudioFragment
from recorder import SoundDeviceAudioCapture


class _FakePortAudioError(Exception):
    pass


@pytest.fixture
def mock_sd(monkeypatch) -> MagicMock:  # noqa: ANN001
    sd = MagicMock()
    sd.PortAudioError = _FakePortAudioError
    monkeypatch.setattr(rec_mod, "sd", sd)
    return sd


def _block(n_frames: int = 800) -> np.ndarray:
    """One 50 ms PortAudio block at 16 kHz mono."""
    return np.ones((n_frames, 1), dtype=np.int16)


async def _let_loop_run(turns: int = 10) -> None:
    for _ in range(turns):
        await asyncio.sleep(0)


# ---------------------------------------------------------------
# Device acquisition
# ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_request_access_opens_stream_once(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    await capture.request_access()
    await capture.request_access()

    assert mock_sd.InputStream.call_count == 1
    kwargs = mock_sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 16000
    assert kwargs["channels"] == 1
    assert kwargs["dtype"] == "int16"
    assert capture.has_device is True
    assert capture.is_active() is False


@pytest.mark.asyncio
async def test_missing_input_device_raises_not_found(mock_sd: MagicMock) -> None:
    mock_sd.query_devices.side_effect = _FakePortAudioError("Error querying device -1")

    with pytest.raises(DeviceNotFound):
        await SoundDeviceAudioCapture().request_access()
    mock_sd.InputStream.assert_not_called()


@pytest.mark.asyncio
async def test_permission_failure_raises_denied(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.side_effect = _FakePortAudioError("Permission denied by the system")

    with pytest.raises(DeviceDenied):
        await SoundDeviceAudioCapture().request_access()


@pytest.mark.asyncio
async def test_other_open_failure_raises_unavailable(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.side_effect = _FakePortAudioError("Device unavailable [PaErrorCode -9985]")

    with pytest.raises(DeviceUnavailable, match="-9985"):
        await SoundDeviceAudioCapture().request_access()


@pytest.mark.asyncio
async def test_request_access_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(rec_mod, "sd", None)

    with pytest.raises(DeviceUnavailable, match="sounddevice is not installed"):
        await SoundDeviceAudioCapture().request_access()


# ---------------------------------------------------------------
# Capture loop
# ---------------------------------------------------------------

@pytest.mark.asyncio
async def test_blocks_are_regrouped_into_chunks_and_flushed_on_stop(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture(chunk_ms=100, block_ms=50)
    fragments: list[AudioFragment] = []
    await capture.start(fragments.append)

    stream = mock_sd.InputStream.return_value
    stream.start.assert_called_once()
    assert capture.is_active() is True

    for _ in range(3):
        capture._on_audio(_block(), 800, None, None)
    await _let_loop_run()

    assert len(fragments) == 1
    assert len(fragments[0].data) == capture.chunk_bytes == 3200
    assert fragments[0].is_last is False

    await capture.stop()

    stream.stop.assert_called_once()
    assert capture.is_active() is False
    assert [f.sequence for f in fragments] == [0, 1]
    assert len(fragments[1].data) == 1600
    assert fragments[1].is_last is True


@pytest.mark.asyncio
async def test_blocks_queued_before_stop_are_not_lost(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture(chunk_ms=250, block_ms=50)
    fragments: list[AudioFragment] = []
    await capture.start(fragments.append)

    # scheduled on the loop but not yet consumed when stop() runs
    capture._on_audio(_block(), 800, None, None)
    capture._on_audio(_block(), 800, None, None)
    await capture.stop()

    assert len(fragments) == 1
    assert len(fragments[0].data) == 3200
    assert fragments[0].is_last is True


@pytest.mark.asyncio
async def test_start_while_capturing_raises_not_ready(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    await capture.start(lambda f: None)

    with pytest.raises(NotReady):
        await capture.start(lambda f: None)
    assert mock_sd.InputStream.call_count == 1
    capture.release()


@pytest.mark.asyncio
async def test_stop_when_not_capturing_is_noop(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    await capture.stop()
    await capture.request_access()
    await capture.stop()

    mock_sd.InputStream.return_value.stop.assert_not_called()


@pytest.mark.asyncio
async def test_release_is_idempotent_and_closes_device(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    await capture.start(lambda f: None)

    capture.release()
    capture.release()

    stream = mock_sd.InputStream.return_value
    stream.stop.assert_called_once()
    stream.close.assert_called_once()
    assert capture.is_active() is False
    assert capture.has_device is False


@pytest.mark.asyncio
async def test_context_manager_releases_device(mock_sd: MagicMock) -> None:
    async with SoundDeviceAudioCapture() as capture:
        assert capture.has_device is True
    assert capture.has_device is False
    mock_sd.InputStream.return_value.close.assert_called_once()


@pytest.mark.asyncio
async def test_callback_after_stop_is_noop(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    fragments: list[AudioFragment] = []
    await capture.start(fragments.append)
    await capture.stop()

    capture._on_audio(_block(), 800, None, None)
    await _let_loop_run()
    assert fragments == []


@pytest.mark.asyncio
async def test_backlog_full_drops_blocks(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture(max_pending_blocks=2)
    await capture.start(lambda f: None)

    # enqueue directly so the pump has no chance to drain in between
    for _ in range(3):
        capture._enqueue_block(b"\x00\x00" * 800)

    assert capture.dropped_blocks == 1
    capture.release()


@pytest.mark.asyncio
async def test_capture_can_restart_after_stop(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture(chunk_ms=50, block_ms=50)
    first: list[AudioFragment] = []
    second: list[AudioFragment] = []

    await capture.start(first.append)
    capture._on_audio(_block(), 800, None, None)
    await capture.stop()

    await capture.start(second.append)
    capture._on_audio(_block(), 800, None, None)
    await _let_loop_run()
    await capture.stop()

    assert [f.sequence for f in first] == [0]
    assert [f.sequence for f in second] == [0]
    assert mock_sd.InputStream.call_count == 1


@pytest.mark.asyncio
async def test_stop_waits_for_stream_off_the_event_loop(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()
    await capture.start(lambda f: None)

    stop_threads: list[int] = []
    mock_sd.InputStream.return_value.stop.side_effect = lambda: stop_threads.append(threading.get_ident())
    await capture.stop()

    assert len(stop_threads) == 1
    assert stop_threads[0] != threading.get_ident()
    assert capture.is_active() is False


@pytest.mark.asyncio
async def test_fragments_before_start_raises_not_ready(mock_sd: MagicMock) -> None:
    capture = SoundDeviceAudioCapture()

    with pytest.raises(NotReady):
        async for _ in capture.fragments():
            pass
