import pytest
from pathlib import Path
from unittest.mock import MagicMock

from mediaworker.config.models import AppConfig, MediaConfig, QueueConfig, WorkerConfig
from mediaworker.domain.models import (
    AudioStreamInfo, JobDescriptor, MediaKind, MediaMetadata, VideoStreamInfo
)
from mediaworker.infrastructure.event_bus import EventBus
from mediaworker.infrastructure.queue import MemoryJobQueue
from mediaworker.infrastructure.store import MemoryJobStore
from mediaworker.pipeline.orchestrator import Orchestrator
from mediaworker.pipeline.worker import Worker


VIDEO_METADATA = MediaMetadata(
    duration=10.0,
    format="mov,mp4,m4a,3gp,3g2,mj2",
    size=2_500_000,
    bitrate=2_000_000,
    video=VideoStreamInfo(codec="h264", width=1280, height=720, fps=30000 / 1001),
    audio=AudioStreamInfo(codec="aac", channels=2, sample_rate=48000),
)

AUDIO_METADATA = MediaMetadata(
    duration=42.5,
    format="mp3",
    size=680_000,
    bitrate=128_000,
    audio=AudioStreamInfo(codec="mp3", channels=1, sample_rate=44100),
)


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        queue=QueueConfig(backend="memory", poll_timeout=1),
        media=MediaConfig(output_dir=tmp_path / "outputs"),
        worker=WorkerConfig(backoff_seconds=0.01, idle_delay=0),
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def queue():
    return MemoryJobQueue()


@pytest.fixture
def store():
    return MemoryJobStore(keep_history=True)


@pytest.fixture
def bus():
    return EventBus()


def _write(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 16)
    return path


@pytest.fixture
def ffprobe():
    """ffprobe stub answering by file extension."""
    mock = MagicMock()

    def probe(path):
        return AUDIO_METADATA if Path(path).suffix == ".mp3" else VIDEO_METADATA

    mock.probe.side_effect = probe
    return mock


@pytest.fixture
def ffmpeg():
    """ffmpeg stub writing the same output names as the real adapter."""
    mock = MagicMock()
    mock.extract_thumbnail.side_effect = (
        lambda src, out, job_id, duration, progress=None: _write(out / f"{job_id}_thumbnail.jpg")
    )

    def transcode_video(src, out, job_id, duration, progress=None):
        if progress:
            for pct in (25.0, 50.0, 100.0):
                progress(pct)
        return _write(out / f"{job_id}_compressed.mp4")

    mock.transcode_video.side_effect = transcode_video
    mock.transcode_audio.side_effect = (
        lambda src, out, job_id, duration, progress=None: _write(out / f"{job_id}_converted.mp3")
    )
    return mock


@pytest.fixture
def orchestrator(app_config, bus, store, ffprobe, ffmpeg):
    return Orchestrator(
        config=app_config,
        event_bus=bus,
        store=store,
        ffprobe_adapter=ffprobe,
        ffmpeg_adapter=ffmpeg,
    )


@pytest.fixture
def make_worker(app_config, bus, queue, store, ffprobe, ffmpeg):
    def factory(name="worker-1", worker_queue=None, worker_store=None):
        worker_store = worker_store or store
        orch = Orchestrator(
            config=app_config,
            event_bus=bus,
            store=worker_store,
            ffprobe_adapter=ffprobe,
            ffmpeg_adapter=ffmpeg,
        )
        return Worker(
            queue=worker_queue or queue,
            store=worker_store,
            orchestrator=orch,
            event_bus=bus,
            config=app_config.worker,
            poll_timeout=0.05,
            name=name,
        )
    return factory


@pytest.fixture
def video_descriptor(tmp_path):
    src = _write(tmp_path / "uploads" / "clip_720p.mp4")
    return JobDescriptor(
        id="1700000000000_video0001",
        source_path=src,
        file_name="1700000000000_video0001_clip_720p.mp4",
        file_size=16,
        mime_type="video/mp4",
        media_kind=MediaKind.VIDEO,
    )


@pytest.fixture
def audio_descriptor(tmp_path):
    src = _write(tmp_path / "uploads" / "voice_mono.mp3")
    return JobDescriptor(
        id="1700000000000_audio0001",
        source_path=src,
        file_name="1700000000000_audio0001_voice_mono.mp3",
        file_size=16,
        mime_type="audio/mpeg",
        media_kind=MediaKind.AUDIO,
    )
