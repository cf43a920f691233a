"""Camera lifecycle: acquisition, live preview, still capture and guaranteed release.

The manager owns at most one live ``VideoCapture``. Opening a new stream
closes the previous one first, and ``session()`` / ``shutdown()`` release the
device on every exit path. Blocking OpenCV calls run on the offload pool.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2

from ecosnap.errors import CameraNotReadyError, CameraPermissionError, CameraUnavailableError
from ecosnap.models import ImageBuffer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import numpy as np
    from numpy.typing import NDArray

    from ecosnap.media.offload import OffloadPool

logger = logging.getLogger(__name__)

PREVIEW_JPEG_QUALITY = 80


class VideoSource(Protocol):
    """The subset of ``cv2.VideoCapture`` the manager relies on."""

    def isOpened(self) -> bool:  # noqa: N802
        ...

    def read(self) -> tuple[bool, NDArray[np.uint8] | None]:
        ...

    def release(self) -> None:
        ...


@dataclass(eq=False)
class CameraStream:
    """Handle for one live camera session."""

    source: VideoSource
    device_index: int
    width: int = 0
    height: int = 0
    ready: bool = False
    closed: bool = False


class CaptureManager:
    """Single owner of the camera device."""

    def __init__(
        self,
        pool: OffloadPool,
        device_index: int = 0,
        source_factory: Callable[[int], VideoSource] = cv2.VideoCapture,
    ) -> None:
        self._pool = pool
        self._device_index = device_index
        self._source_factory = source_factory
        self._active: CameraStream | None = None

    @property
    def active(self) -> CameraStream | None:
        return self._active

    # -- Public API ---------------------------------------------------------

    async def open(self) -> CameraStream:
        """Acquire the camera, closing any session that is still live.

        Raises:
            CameraPermissionError: If the OS refuses access to the device.
            CameraUnavailableError: For any other acquisition failure.
        """
        if self._active is not None:
            logger.info("Closing previous camera session before reopening")
            await self.close(self._active)

        if not self._has_device_permission(self._device_index):
            raise CameraPermissionError(f"Access to camera {self._device_index} was denied")

        try:
            source = await self._pool.run(self._source_factory, self._device_index)
        except (cv2.error, OSError) as exc:
            raise CameraUnavailableError(f"Camera {self._device_index} could not be opened: {exc}") from exc

        try:
            opened = source.isOpened()
        except BaseException:
            await self._pool.run(source.release)
            raise
        if not opened:
            await self._pool.run(source.release)
            raise CameraUnavailableError(f"Camera {self._device_index} is not available")

        stream = CameraStream(source=source, device_index=self._device_index)
        self._active = stream
        logger.info("Opened camera %s", self._device_index)

        try:
            await self._read_frame(stream)
        except CameraNotReadyError:
            logger.info("Camera %s opened but has not delivered a frame yet", self._device_index)
        except BaseException:
            await self.close(stream)
            raise
        return stream

    async def preview(self, stream: CameraStream) -> bytes:
        """Return the current frame as JPEG bytes for the live preview.

        Raises:
            CameraNotReadyError: If the stream is closed or yields no frame.
        """
        if stream.closed:
            raise CameraNotReadyError("Camera stream is closed")
        frame = await self._read_frame(stream)
        ok, encoded = await self._pool.run(
            cv2.imencode, ".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, PREVIEW_JPEG_QUALITY]
        )
        if not ok:
            raise CameraNotReadyError("Preview frame could not be encoded")
        return encoded.tobytes()

    async def capture(self, stream: CameraStream) -> ImageBuffer:
        """Take a still frame at the stream's native resolution.

        Raises:
            CameraNotReadyError: If the stream is closed, not yet ready, or the read fails.
        """
        if stream.closed or not stream.ready:
            raise CameraNotReadyError("Camera not ready")
        frame = await self._read_frame(stream)
        pixels = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return ImageBuffer(pixels=pixels, width=stream.width, height=stream.height)

    async def close(self, stream: CameraStream) -> None:
        """Release the device. Safe to call more than once."""
        if stream.closed:
            return
        stream.closed = True
        stream.ready = False
        if self._active is stream:
            self._active = None
        await self._pool.run(stream.source.release)
        logger.info("Released camera %s", stream.device_index)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[CameraStream]:
        """Open a stream for the duration of the block and always release it."""
        stream = await self.open()
        try:
            yield stream
        finally:
            await self.close(stream)

    async def shutdown(self) -> None:
        """Release any live stream; used on application teardown."""
        if self._active is not None:
            await self.close(self._active)

    # -- Internal -----------------------------------------------------------

    async def _read_frame(self, stream: CameraStream) -> NDArray[np.uint8]:
        ok, frame = await self._pool.run(stream.source.read)
        if not ok or frame is None or frame.size == 0:
            raise CameraNotReadyError("Camera did not deliver a frame")
        stream.height, stream.width = frame.shape[:2]
        stream.ready = True
        return frame

    @staticmethod
    def _has_device_permission(device_index: int) -> bool:
        if not sys.platform.startswith("linux"):
            return True
        node = Path(f"/dev/video{device_index}")
        if not node.exists():
            # Missing node is an availability problem, reported by the open itself.
            return True
        return os.access(node, os.R_OK | os.W_OK)
