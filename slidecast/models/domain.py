from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    REGISTERED = "registered"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.REGISTERED: frozenset({JobState.DOWNLOADING, JobState.FAILED}),
    JobState.DOWNLOADING: frozenset({JobState.PROCESSING, JobState.FAILED}),
    JobState.PROCESSING: frozenset({JobState.UPLOADING, JobState.FAILED}),
    JobState.UPLOADING: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


class CaptionPosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class CaptionSpec(BaseModel):
    text: Optional[str] = None
    text_url: Optional[str] = None
    color: Optional[str] = None
    position: Optional[CaptionPosition] = None
    font_size: Optional[int] = None


class SlideSpec(BaseModel):
    image_url: str
    narration_url: Optional[str] = None
    caption: Optional[CaptionSpec] = None


class JobStatusHistory(BaseModel):
    state: JobState
    message: str
    occurred_at: datetime = Field(default_factory=utcnow)


class JobResult(BaseModel):
    video_url: Optional[str] = None
    clips: int
    duration: float


class Job(BaseModel):
    id: UUID
    request_id: str
    state: JobState
    slides: List[SlideSpec]
    music_url: Optional[str] = None
    webhook_url: str
    return_inline: bool = False
    status_history: List[JobStatusHistory] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class CaptionLayer(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    lines: Tuple[str, ...]
    font_size: int
    color: str
    position: CaptionPosition


class ResolvedClip(BaseModel):
    """One slide after download and timing; owned by a single pipeline run."""

    model_config = ConfigDict(frozen=True)

    index: int
    image_path: str
    narration_path: Optional[str] = None
    caption: Optional[CaptionLayer] = None
    duration: float = Field(gt=0)


class MasterAudioTrack(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    duration: float
    has_narration: bool
    has_music: bool


class RenderSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    output_path: str
    width: int
    height: int
    fps: int
    clips: Tuple[ResolvedClip, ...]
    audio: Optional[MasterAudioTrack] = None
    transition: str = "fade"
    transition_duration: float = 0.5

    @property
    def duration(self) -> float:
        return sum(clip.duration for clip in self.clips)
