"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, Response, UploadFile, status

from ecosnap.api.middleware import verify_access_key
from ecosnap.api.schemas import CameraResponse, ErrorResponse, HealthResponse, SessionResponse
from ecosnap.errors import (
    CameraNotReadyError,
    CameraPermissionError,
    ImageValidationError,
    InvalidTransitionError,
    ResourceError,
)
from ecosnap.models import ClassificationRecord, UploadedImage
from ecosnap.orchestrator import SessionPhase

if TYPE_CHECKING:
    from ecosnap.config import Settings
    from ecosnap.media.capture import CameraStream
    from ecosnap.orchestrator import Orchestrator

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_access_key)])

BUSY_MESSAGE = "The service is busy processing other images. Please try again."


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_orchestrator(request: Request) -> Orchestrator:
    orchestrator: Orchestrator = request.app.state.orchestrator
    return orchestrator


def _session_response(orchestrator: Orchestrator) -> SessionResponse:
    state = orchestrator.state
    return SessionResponse(
        phase=state.phase,
        image_url=state.image.to_data_url() if state.image is not None else None,
        result=state.result,
        error=state.error,
        location=state.location,
        location_status=state.location_status,
        detail_id=state.detail_id,
        can_classify=state.phase is SessionPhase.IMAGE_SELECTED,
        can_save=state.phase is SessionPhase.RESULT_READY,
    )


def _camera_response(stream: CameraStream | None) -> CameraResponse:
    if stream is None:
        return CameraResponse(active=False)
    return CameraResponse(active=True, ready=stream.ready, width=stream.width, height=stream.height)


def _conflict(exc: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _busy() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=BUSY_MESSAGE)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionResponse, summary="Current session state")
async def get_session(request: Request) -> SessionResponse:
    return _session_response(_get_orchestrator(request))


@router.post(
    "/session/image",
    response_model=SessionResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Select an uploaded image",
)
async def upload_image(request: Request, file: UploadFile) -> SessionResponse:
    """Validate an uploaded image and make it the current selection."""
    settings = _get_settings(request)
    orchestrator = _get_orchestrator(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds the {settings.max_file_size} byte limit",
        )
    upload = UploadedImage(
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        data=data,
    )
    try:
        await orchestrator.upload_image(upload)
    except ImageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except TimeoutError as exc:
        raise _busy() from exc
    return _session_response(orchestrator)


@router.delete(
    "/session/image",
    response_model=SessionResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Clear the selected image",
)
async def clear_image(request: Request) -> SessionResponse:
    orchestrator = _get_orchestrator(request)
    try:
        orchestrator.select_image(None)
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    return _session_response(orchestrator)


@router.post(
    "/session/classify",
    response_model=SessionResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Classify the selected image",
)
async def classify(request: Request) -> SessionResponse:
    """Run classification; failures are reported through the session's error field."""
    orchestrator = _get_orchestrator(request)
    try:
        await orchestrator.classify()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    return _session_response(orchestrator)


@router.post(
    "/session/save",
    response_model=ClassificationRecord,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Save the current result to history",
)
async def save_result(request: Request) -> ClassificationRecord:
    orchestrator = _get_orchestrator(request)
    try:
        return await orchestrator.save()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except TimeoutError as exc:
        raise _busy() from exc


@router.delete("/session/detail", status_code=status.HTTP_204_NO_CONTENT, summary="Close the detail view")
async def close_detail(request: Request) -> Response:
    _get_orchestrator(request).close_detail()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------


@router.post(
    "/camera/open",
    response_model=CameraResponse,
    responses={
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Open the camera",
)
async def open_camera(request: Request) -> CameraResponse:
    orchestrator = _get_orchestrator(request)
    try:
        stream = await orchestrator.open_camera()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except TimeoutError as exc:
        raise _busy() from exc
    except CameraPermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=orchestrator.state.error) from exc
    except ResourceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=orchestrator.state.error
        ) from exc
    return _camera_response(stream)


@router.get(
    "/camera",
    response_model=CameraResponse,
    summary="Camera session status",
)
async def camera_status(request: Request) -> CameraResponse:
    return _camera_response(_get_orchestrator(request).capture.active)


@router.get(
    "/camera/preview",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/jpeg": {}}},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Current live preview frame",
)
async def camera_preview(request: Request) -> Response:
    orchestrator = _get_orchestrator(request)
    try:
        frame = await orchestrator.camera_preview()
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CameraNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise _busy() from exc
    return Response(content=frame, media_type="image/jpeg", headers={"Cache-Control": "no-store"})


@router.post(
    "/camera/capture",
    response_model=SessionResponse,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Take a photo and select it",
)
async def capture_photo(request: Request) -> SessionResponse:
    orchestrator = _get_orchestrator(request)
    try:
        await orchestrator.capture_photo()
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CameraNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=orchestrator.state.error) from exc
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except TimeoutError as exc:
        raise _busy() from exc
    return _session_response(orchestrator)


@router.post("/camera/close", response_model=CameraResponse, summary="Close the camera")
async def close_camera(request: Request) -> CameraResponse:
    orchestrator = _get_orchestrator(request)
    await orchestrator.close_camera()
    return _camera_response(None)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@router.get("/history", response_model=list[ClassificationRecord], summary="Saved classifications, newest first")
async def list_history(request: Request) -> list[ClassificationRecord]:
    return _get_orchestrator(request).state.history


@router.get(
    "/history/{record_id}",
    response_model=ClassificationRecord,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Open a history entry in the detail view",
)
async def view_history_item(request: Request, record_id: str) -> ClassificationRecord:
    try:
        return _get_orchestrator(request).view_history_item(record_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No history entry {record_id}") from exc


@router.delete("/history/{record_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a history entry")
async def delete_history_item(request: Request, record_id: str) -> Response:
    await _get_orchestrator(request).delete_history_item(record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/history",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Clear all history",
)
async def clear_history(request: Request, confirm: bool = False) -> Response:
    """Delete every history entry. Requires ``?confirm=true`` since this cannot be undone."""
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Clearing history cannot be undone; repeat the request with confirm=true",
        )
    await _get_orchestrator(request).clear_history()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    orchestrator = _get_orchestrator(request)
    return HealthResponse(
        status="ok",
        classifier_configured=orchestrator.classifier.configured,
        camera_active=orchestrator.capture.active is not None,
        history_size=len(orchestrator.state.history),
        active_tasks=orchestrator.pool.active_count,
        queue_depth=orchestrator.pool.queue_depth,
    )
