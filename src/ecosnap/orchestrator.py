"""Session orchestration: the image -> classify -> save state machine.

All per-user state lives in one ``SessionState`` owned by the orchestrator.
Every user action is a method that validates the current phase, drives the
capture, encoding, classification, advice and history components, and leaves
the session in an interactive phase whatever happens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from ecosnap.errors import (
    CameraNotReadyError,
    CameraPermissionError,
    GeolocationError,
    InvalidTransitionError,
    ResourceError,
)
from ecosnap.media.encoder import encode_full, encode_thumbnail
from ecosnap.models import (
    ClassificationRecord,
    TransportImage,
    UploadedImage,
    generate_record_id,
    now_ms,
)

if TYPE_CHECKING:
    from ecosnap.media.capture import CameraStream, CaptureManager
    from ecosnap.media.offload import OffloadPool
    from ecosnap.models import Location
    from ecosnap.services.classifier import ClassificationClient
    from ecosnap.services.disposal import DisposalAdvisor
    from ecosnap.services.geolocation import LocationProvider
    from ecosnap.services.history import HistoryStore

logger = logging.getLogger(__name__)

NO_IMAGE_MESSAGE = "Please select an image first."
CAMERA_DENIED_MESSAGE = "Camera access denied. Please grant permission in your system settings."
CAMERA_UNAVAILABLE_MESSAGE = "Could not access camera. Please ensure permissions are granted and try again."
CAMERA_NOT_READY_MESSAGE = "Camera not ready or stream unavailable. Please try again."


class SessionPhase(StrEnum):
    IDLE = "idle"
    IMAGE_SELECTED = "image_selected"
    CLASSIFYING = "classifying"
    RESULT_READY = "result_ready"
    SAVING = "saving"
    SAVED = "saved"


class LocationStatus(StrEnum):
    PENDING = "pending"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass
class SessionState:
    """Everything the UI needs to render the current session."""

    phase: SessionPhase = SessionPhase.IDLE
    image: TransportImage | None = None
    result: ClassificationRecord | None = None
    error: str | None = None
    location: Location | None = None
    location_status: LocationStatus = LocationStatus.PENDING
    detail_id: str | None = None
    saved_entry: ClassificationRecord | None = None
    history: list[ClassificationRecord] = field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        capture: CaptureManager,
        classifier: ClassificationClient,
        advisor: DisposalAdvisor,
        history: HistoryStore,
        locator: LocationProvider,
        pool: OffloadPool,
        camera_jpeg_quality: float = 0.9,
    ) -> None:
        self.capture = capture
        self.classifier = classifier
        self.advisor = advisor
        self.history = history
        self.locator = locator
        self.pool = pool
        self.camera_jpeg_quality = camera_jpeg_quality
        self.state = SessionState()

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        self.state.history = await self.history.load()
        logger.info("Loaded %d history entries", len(self.state.history))
        await self.refresh_location()

    async def shutdown(self) -> None:
        await self.capture.shutdown()

    async def refresh_location(self) -> Location | None:
        """Ask the location provider; failure only disables facility ranking."""
        self.state.location_status = LocationStatus.PENDING
        try:
            location = await self.locator.get_current_position()
        except GeolocationError as exc:
            logger.warning("Geolocation error (%s): %s", exc.reason, exc)
            self.state.location_status = LocationStatus.UNAVAILABLE
            return None
        self.state.location = location
        self.state.location_status = LocationStatus.AVAILABLE
        return location

    # -- Image selection ----------------------------------------------------

    def select_image(self, image: TransportImage | None) -> SessionState:
        """Replace the selected image; ``None`` clears it and returns to idle."""
        self._reject_while_busy()
        self.state.image = image
        self.state.result = None
        self.state.saved_entry = None
        self.state.error = None
        self.state.phase = SessionPhase.IMAGE_SELECTED if image is not None else SessionPhase.IDLE
        return self.state

    async def upload_image(self, upload: UploadedImage) -> SessionState:
        """Validate and select an uploaded file.

        Raises:
            ImageValidationError: If the file is not a supported image; the session is left unchanged.
        """
        self._reject_while_busy()
        image = await self.pool.run(encode_full, upload)
        return self.select_image(image)

    # -- Camera -------------------------------------------------------------

    async def open_camera(self) -> CameraStream:
        self.select_image(None)
        try:
            return await self.capture.open()
        except ResourceError as exc:
            logger.warning("Error accessing camera: %s", exc)
            if isinstance(exc, CameraPermissionError):
                self.state.error = CAMERA_DENIED_MESSAGE
            else:
                self.state.error = CAMERA_UNAVAILABLE_MESSAGE
            raise

    async def camera_preview(self) -> bytes:
        """Current live frame as JPEG.

        Raises:
            LookupError: If no camera session is open.
            CameraNotReadyError: If the camera yields no frame.
        """
        stream = self._require_stream()
        return await self.capture.preview(stream)

    async def capture_photo(self) -> SessionState:
        """Snap a still from the open camera, select it, and release the camera."""
        self._reject_while_busy()
        stream = self._require_stream()
        try:
            frame = await self.capture.capture(stream)
        except CameraNotReadyError:
            self.state.error = CAMERA_NOT_READY_MESSAGE
            raise
        finally:
            await self.capture.close(stream)
        image = await self.pool.run(encode_full, frame, self.camera_jpeg_quality)
        return self.select_image(image)

    async def close_camera(self) -> None:
        if self.capture.active is not None:
            await self.capture.close(self.capture.active)

    # -- Classification -----------------------------------------------------

    async def classify(self) -> SessionState:
        """Classify the selected image and assemble a result record.

        Raises:
            InvalidTransitionError: If there is no selected image or a result already exists.
        """
        if self.state.phase is SessionPhase.IDLE or self.state.image is None:
            self.state.error = NO_IMAGE_MESSAGE
            raise InvalidTransitionError(NO_IMAGE_MESSAGE)
        if self.state.phase is not SessionPhase.IMAGE_SELECTED:
            raise InvalidTransitionError(f"Cannot classify while {self.state.phase}")

        image = self.state.image
        self.state.phase = SessionPhase.CLASSIFYING
        self.state.error = None
        self.state.result = None

        try:
            outcome = await self.classifier.classify(image)
            if outcome.is_configuration_failure:
                self.state.error = (
                    f"Classification failed: {outcome.reasoning}. Please ensure the API key is correctly configured."
                )
                self.state.phase = SessionPhase.IMAGE_SELECTED
                return self.state

            location = self.state.location
            self.state.result = ClassificationRecord(
                image_url=image.to_data_url(),
                category=outcome.category,
                confidence=outcome.confidence,
                reasoning=outcome.reasoning,
                suggestions=self.advisor.suggest(outcome.category, location),
                timestamp=now_ms(),
                location=location,
            )
            self.state.phase = SessionPhase.RESULT_READY
        except Exception as exc:
            logger.exception("Error during classification process")
            self.state.error = f"Classification failed: {str(exc) or 'An unexpected error occurred.'}"
            self.state.phase = SessionPhase.IMAGE_SELECTED
        return self.state

    # -- History ------------------------------------------------------------

    async def save(self) -> ClassificationRecord:
        """Commit the current result to history with a thumbnail image.

        A repeated save returns the entry already committed.

        Raises:
            InvalidTransitionError: If there is no unsaved result or a save is already running.
        """
        if self.state.phase is SessionPhase.SAVED and self.state.saved_entry is not None:
            return self.state.saved_entry
        if self.state.phase is SessionPhase.SAVING:
            raise InvalidTransitionError("A save is in progress")
        if self.state.phase is not SessionPhase.RESULT_READY or self.state.result is None:
            raise InvalidTransitionError("There is no classification result to save")

        # Claimed before the first await; SAVING blocks re-entry and image changes.
        self.state.phase = SessionPhase.SAVING
        result = self.state.result.model_copy(update={"id": generate_record_id()})
        try:
            thumbnail = await self.pool.run(encode_thumbnail, result.image_url)
        except BaseException:
            self.state.phase = SessionPhase.RESULT_READY
            raise
        entry = result.model_copy(update={"image_url": thumbnail.to_data_url()})

        self.state.history = self.history.append(self.state.history, entry)
        self.state.result = result
        self.state.saved_entry = entry
        self.state.phase = SessionPhase.SAVED
        await self.history.persist(self.state.history)
        logger.info("Saved %s classification %s", entry.category, entry.id)
        return entry

    def get_history_item(self, record_id: str) -> ClassificationRecord:
        for item in self.state.history:
            if item.id == record_id:
                return item
        raise KeyError(record_id)

    def view_history_item(self, record_id: str) -> ClassificationRecord:
        item = self.get_history_item(record_id)
        self.state.detail_id = record_id
        return item

    def close_detail(self) -> None:
        self.state.detail_id = None

    async def delete_history_item(self, record_id: str) -> None:
        self.state.history = self.history.remove(self.state.history, record_id)
        await self.history.persist(self.state.history)
        if self.state.detail_id == record_id:
            self.close_detail()

    async def clear_history(self) -> None:
        self.state.history = self.history.clear()
        await self.history.persist(self.state.history)
        self.close_detail()

    # -- Internal -----------------------------------------------------------

    def _reject_while_busy(self) -> None:
        if self.state.phase is SessionPhase.CLASSIFYING:
            raise InvalidTransitionError("A classification is in progress")
        if self.state.phase is SessionPhase.SAVING:
            raise InvalidTransitionError("A save is in progress")

    def _require_stream(self) -> CameraStream:
        stream = self.capture.active
        if stream is None:
            raise LookupError("No camera session is open")
        return stream
