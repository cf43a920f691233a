"""Tests for the camera capture manager."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import numpy as np
import pytest

from ecosnap.errors import CameraNotReadyError, CameraPermissionError, CameraUnavailableError
from ecosnap.media.capture import CaptureManager
from ecosnap.media.offload import OffloadPool

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import NDArray

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _frame(height: int = 48, width: int = 64, bgr: tuple[int, int, int] = (0, 0, 255)) -> NDArray[np.uint8]:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[...] = bgr
    return frame


class FakeVideoCapture:
    """Stands in for cv2.VideoCapture; returns queued frames, then keeps repeating the last one."""

    def __init__(self, frames: list[NDArray[np.uint8] | None] | None = None, opened: bool = True) -> None:
        self.frames = list(frames) if frames is not None else [_frame()]
        self.opened = opened
        self.release_count = 0
        self.read_count = 0

    def isOpened(self) -> bool:  # noqa: N802
        return self.opened

    def read(self) -> tuple[bool, NDArray[np.uint8] | None]:
        self.read_count += 1
        if not self.frames:
            return False, None
        frame = self.frames.pop(0) if len(self.frames) > 1 else self.frames[0]
        return frame is not None, frame

    def release(self) -> None:
        self.release_count += 1


@pytest.fixture()
def pool() -> Iterator[OffloadPool]:
    offload = OffloadPool(2)
    yield offload
    offload.shutdown()


def _manager(pool: OffloadPool, *sources: FakeVideoCapture) -> CaptureManager:
    queue = list(sources)
    return CaptureManager(pool, device_index=0, source_factory=lambda _index: queue.pop(0))


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


class TestOpen:
    async def test_open_marks_stream_ready_with_native_size(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture([_frame(height=480, width=640)])
        manager = _manager(pool, source)

        stream = await manager.open()

        assert stream.ready is True
        assert (stream.width, stream.height) == (640, 480)
        assert manager.active is stream

    async def test_unopened_device_is_unavailable_and_released(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture(opened=False)
        manager = _manager(pool, source)

        with pytest.raises(CameraUnavailableError):
            await manager.open()

        assert source.release_count == 1
        assert manager.active is None

    async def test_failing_open_check_still_releases(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)

        with (
            patch.object(source, "isOpened", side_effect=RuntimeError("driver crashed")),
            pytest.raises(RuntimeError, match="driver crashed"),
        ):
            await manager.open()

        assert source.release_count == 1
        assert manager.active is None

    async def test_permission_denied(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)

        with (
            patch.object(CaptureManager, "_has_device_permission", return_value=False),
            pytest.raises(CameraPermissionError),
        ):
            await manager.open()

        assert source.read_count == 0
        assert manager.active is None

    async def test_reopen_closes_previous_session_first(self, pool: OffloadPool) -> None:
        first = FakeVideoCapture()
        second = FakeVideoCapture()
        manager = _manager(pool, first, second)

        stream_one = await manager.open()
        stream_two = await manager.open()

        assert first.release_count == 1
        assert stream_one.closed is True
        assert second.release_count == 0
        assert manager.active is stream_two

    async def test_open_without_first_frame_is_not_ready(self, pool: OffloadPool) -> None:
        manager = _manager(pool, FakeVideoCapture([None, _frame()]))

        stream = await manager.open()

        assert stream.ready is False
        assert manager.active is stream


# ---------------------------------------------------------------------------
# Preview and capture
# ---------------------------------------------------------------------------


class TestCapture:
    async def test_capture_returns_rgb_buffer(self, pool: OffloadPool) -> None:
        manager = _manager(pool, FakeVideoCapture([_frame(bgr=(0, 0, 255))]))
        stream = await manager.open()

        buffer = await manager.capture(stream)

        assert (buffer.width, buffer.height) == (64, 48)
        assert buffer.pixels.shape == (48, 64, 3)
        assert buffer.pixels[0, 0].tolist() == [255, 0, 0]

    async def test_capture_before_ready_raises(self, pool: OffloadPool) -> None:
        manager = _manager(pool, FakeVideoCapture([None, _frame()]))
        stream = await manager.open()

        with pytest.raises(CameraNotReadyError):
            await manager.capture(stream)

    async def test_preview_establishes_readiness(self, pool: OffloadPool) -> None:
        manager = _manager(pool, FakeVideoCapture([None, _frame()]))
        stream = await manager.open()

        jpeg = await manager.preview(stream)

        assert jpeg.startswith(b"\xff\xd8")
        assert stream.ready is True
        buffer = await manager.capture(stream)
        assert buffer.width == 64

    async def test_capture_after_close_raises(self, pool: OffloadPool) -> None:
        manager = _manager(pool, FakeVideoCapture())
        stream = await manager.open()
        await manager.close(stream)

        with pytest.raises(CameraNotReadyError):
            await manager.capture(stream)


# ---------------------------------------------------------------------------
# Release
# ---------------------------------------------------------------------------


class TestRelease:
    async def test_close_is_idempotent(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)
        stream = await manager.open()

        await manager.close(stream)
        await manager.close(stream)

        assert source.release_count == 1
        assert manager.active is None

    async def test_session_releases_on_error(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)

        with pytest.raises(RuntimeError, match="caller failed"):
            async with manager.session():
                raise RuntimeError("caller failed")

        assert source.release_count == 1
        assert manager.active is None

    async def test_session_releases_on_success(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)

        async with manager.session() as stream:
            buffer = await manager.capture(stream)

        assert buffer.height == 48
        assert source.release_count == 1

    async def test_shutdown_releases_active_stream(self, pool: OffloadPool) -> None:
        source = FakeVideoCapture()
        manager = _manager(pool, source)
        await manager.open()

        await manager.shutdown()
        await manager.shutdown()

        assert source.release_count == 1
        assert manager.active is None
