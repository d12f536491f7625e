from typing import Literal, Optional
from pathlib import Path
from pydantic import BaseModel, Field, field_validator

class QueueConfig(BaseModel):
    backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379"
    queue_key: str = "video_jobs"
    poll_timeout: int = Field(default=5, ge=1)

class StoreConfig(BaseModel):
    key_prefix: str = "job_"
    processing_ttl: int = Field(default=3600, gt=0)

class MediaConfig(BaseModel):
    ffmpeg_path: str = "/usr/bin/ffmpeg"
    ffprobe_path: str = "/usr/bin/ffprobe"
    output_dir: Path = Path("/app/outputs")
    thumbnail_size: str = "320x240"
    thumbnail_position: float = Field(default=0.1, ge=0.0, lt=1.0)
    audio_codec: str = "libmp3lame"
    audio_bitrate: str = "128k"
    video_codec: str = "libx264"
    video_bitrate: str = "1000k"
    video_width: int = Field(default=720, gt=0)
    # When set, output is letterboxed into video_width x video_height
    video_height: Optional[int] = Field(default=None, gt=0)

    @field_validator('thumbnail_size')
    @classmethod
    def validate_size(cls, v: str) -> str:
        parts = v.lower().split("x")
        if len(parts) != 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError(f"Invalid thumbnail size {v!r}. Expected WIDTHxHEIGHT, e.g. 320x240.")
        return v.lower()

class WorkerConfig(BaseModel):
    backoff_seconds: float = Field(default=5.0, ge=0.0)
    idle_delay: float = Field(default=0.1, ge=0.0)

class AppConfig(BaseModel):
    queue: QueueConfig = Field(default_factory=QueueConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    log_dir: Path = Path("logs")
    debug: bool = False
