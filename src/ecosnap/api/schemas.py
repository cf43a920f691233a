"""Pydantic response schemas for the EcoSnap API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ecosnap.models import ClassificationRecord, Location


class SessionResponse(BaseModel):
    """Snapshot of the interactive session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    phase: str = Field(description="'idle', 'image_selected', 'classifying', 'result_ready', 'saving' or 'saved'")
    image_url: str | None = Field(default=None, description="Selected image as a data URL")
    result: ClassificationRecord | None = None
    error: str | None = None
    location: Location | None = None
    location_status: str = Field(description="'pending', 'available' or 'unavailable'")
    detail_id: str | None = Field(default=None, description="History entry shown in the detail view")
    can_classify: bool
    can_save: bool


class CameraResponse(BaseModel):
    """State of the camera session."""

    active: bool
    ready: bool = False
    width: int = 0
    height: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    classifier_configured: bool
    camera_active: bool
    history_size: int
    active_tasks: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
