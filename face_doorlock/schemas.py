from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """camelCase on the wire, matching the stored user records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class EnrollUserBody(ApiModel):
    name: str = ""
    employee_id: str = ""
    image_data: Optional[str] = None


class UserResponse(ApiModel):
    id: str
    name: str
    employee_id: str
    image_data: str
    registered_at: datetime


class MatchedUser(ApiModel):
    id: str
    name: str
    employee_id: str


class DetectionResultResponse(ApiModel):
    success: bool
    confidence: float
    confidence_text: str
    title: str
    message: str
    user: Optional[MatchedUser] = None


class CaptureStateResponse(ApiModel):
    state: str
    countdown: int
    face_detected: bool
    auto_capturing: bool
    processing: bool
    progress: float
    notice: Optional[str] = None
    captured_image: Optional[str] = None
    result: Optional[DetectionResultResponse] = None
    registered_users: int
    message: Optional[str] = None


class DeleteUserResponse(ApiModel):
    ok: bool
    removed: bool