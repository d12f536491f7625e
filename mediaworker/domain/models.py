import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mediaworker.domain.errors import InvalidTransitionError, UnsupportedMediaError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "MediaKind":
        """Maps a declared content type to a media kind."""
        if mime_type:
            if mime_type.startswith("audio/"):
                return cls.AUDIO
            if mime_type.startswith("video/"):
                return cls.VIDEO
        raise UnsupportedMediaError(
            f"Unsupported file type {mime_type!r}. Only video and audio files can be processed."
        )


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class TaskKind(str, Enum):
    METADATA = "metadata"
    THUMBNAIL = "thumbnail"
    COMPRESS = "compress"
    CONVERT = "convert"


# Fixed task sequences with the progress checkpoint reached after each task.
TASK_SEQUENCES: Dict[MediaKind, Tuple[Tuple[TaskKind, int], ...]] = {
    MediaKind.AUDIO: (
        (TaskKind.METADATA, 50),
        (TaskKind.CONVERT, 100),
    ),
    MediaKind.VIDEO: (
        (TaskKind.METADATA, 33),
        (TaskKind.THUMBNAIL, 66),
        (TaskKind.COMPRESS, 100),
    ),
}

ARTIFACT_FIELDS = {
    TaskKind.THUMBNAIL: "thumbnail_path",
    TaskKind.COMPRESS: "compressed_path",
    TaskKind.CONVERT: "converted_path",
}


def generate_job_id() -> str:
    """Millisecond timestamp plus a short random suffix, e.g. 1700000000000_k3j9x0a1b."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(time.time() * 1000)}_{suffix}"


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoStreamInfo(WireModel):
    codec: str
    width: int
    height: int
    fps: float


class AudioStreamInfo(WireModel):
    codec: str
    channels: int
    sample_rate: Optional[int] = None


class MediaMetadata(WireModel):
    duration: float
    format: str
    size: Optional[int] = None
    bitrate: Optional[int] = None
    video: Optional[VideoStreamInfo] = None
    audio: Optional[AudioStreamInfo] = None


class JobArtifacts(WireModel):
    thumbnail_path: Optional[Path] = None
    compressed_path: Optional[Path] = None
    converted_path: Optional[Path] = None

    def written(self) -> Dict[str, Path]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class JobDescriptor(WireModel):
    """Queue entry: the fields known when the upload is enqueued."""

    id: str = Field(default_factory=generate_job_id)
    source_path: Path = Field(
        validation_alias=AliasChoices("sourcePath", "source_path", "filePath"),
        serialization_alias="sourcePath",
    )
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    media_kind: MediaKind
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def derive_media_kind(cls, data: Any) -> Any:
        # Producers that only send isAudio/mimeType still get a fixed kind.
        if isinstance(data, dict) and not (data.get("mediaKind") or data.get("media_kind")):
            data = dict(data)
            if "isAudio" in data:
                data["media_kind"] = MediaKind.AUDIO if data["isAudio"] else MediaKind.VIDEO
            else:
                data["media_kind"] = MediaKind.from_mime_type(data.get("mimeType") or data.get("mime_type"))
        return data

    @classmethod
    def for_file(cls, source_path: Path, mime_type: str, file_size: Optional[int] = None) -> "JobDescriptor":
        kind = MediaKind.from_mime_type(mime_type)
        job_id = generate_job_id()
        return cls(
            id=job_id,
            source_path=source_path,
            file_name=f"{job_id}_{Path(source_path).name}",
            file_size=file_size,
            mime_type=mime_type,
            media_kind=kind,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class Job(JobDescriptor):
    """Job record as kept in the store."""

    progress: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    metadata: Optional[MediaMetadata] = None
    artifacts: JobArtifacts = Field(default_factory=JobArtifacts)
    error: Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: JobDescriptor) -> "Job":
        return cls(**descriptor.model_dump())

    @property
    def tasks(self) -> Tuple[TaskKind, ...]:
        return tuple(task for task, _ in TASK_SEQUENCES[self.media_kind])

    def _transition(self, target: JobStatus):
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"Job {self.id}: cannot go from {self.status.value} to {target.value}")
        self.status = target

    def start(self, now: Optional[datetime] = None):
        self._transition(JobStatus.PROCESSING)
        if self.started_at is None:
            self.started_at = now or utcnow()
        self.progress = 0

    def advance(self, progress: int):
        progress = min(100, int(progress))
        if progress < self.progress:
            raise ValueError(f"Job {self.id}: progress cannot go back from {self.progress} to {progress}")
        self.progress = progress

    def record_metadata(self, metadata: MediaMetadata):
        if self.metadata is not None:
            raise ValueError(f"Job {self.id}: metadata already recorded")
        self.metadata = metadata

    def record_artifact(self, task: TaskKind, path: Path):
        field = ARTIFACT_FIELDS[task]
        if getattr(self.artifacts, field) is not None:
            raise ValueError(f"Job {self.id}: {task.value} artifact already recorded")
        setattr(self.artifacts, field, path)

    def _finish(self, now: Optional[datetime]):
        if self.completed_at is None:
            self.completed_at = now or utcnow()
        if self.started_at is not None:
            self.processing_time_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    def complete(self, now: Optional[datetime] = None):
        self._transition(JobStatus.COMPLETED)
        self.progress = 100
        self._finish(now)

    def fail(self, message: str, now: Optional[datetime] = None):
        self._transition(JobStatus.FAILED)
        self.error = message or "Unknown error"
        self._finish(now)
