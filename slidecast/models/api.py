from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import CaptionPosition, Job

REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class CaptionRequest(BaseModel):
    text: Optional[str] = None
    text_url: Optional[str] = None
    color: Optional[str] = None
    position: Optional[CaptionPosition] = None
    font_size: Optional[int] = Field(default=None, ge=8, le=200)


class SlideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(..., min_length=1)
    narration_url: Optional[str] = None
    caption: Optional[CaptionRequest] = None

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("image_url must not be blank")
        return value.strip()


class JobRequest(BaseModel):
    """Canonical job description accepted at the HTTP boundary."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: Optional[str] = None
    slides: List[SlideRequest] = Field(..., min_length=1)
    music_url: Optional[str] = None
    webhook_url: str = Field(..., min_length=1)
    return_inline: bool = False

    @field_validator("request_id")
    @classmethod
    def validate_request_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not REQUEST_ID_PATTERN.match(value):
            raise ValueError("request_id may only contain letters, digits, '-' and '_' (max 64)")
        return value

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an http(s) URL")
        return value

    @model_validator(mode="after")
    def blank_music_is_none(self) -> "JobRequest":
        if self.music_url is not None and not self.music_url.strip():
            self.music_url = None
        return self


class JobResponse(BaseModel):
    job: Job


class JobListResponse(BaseModel):
    items: List[Job]


class LegacyJobAccepted(BaseModel):
    success: bool = True
    message: str
    job_id: str


class WebhookPayload(BaseModel):
    job_id: str
    request_id: str
    success: bool
    state: str
    video_url: Optional[str] = None
    video_base64: Optional[str] = None
    clips: Optional[int] = None
    duration: Optional[float] = None
    error: Optional[str] = None
