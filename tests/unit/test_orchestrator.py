import pytest
from unittest.mock import MagicMock
from mediaworker.domain.errors import ProcessExitError, StoreUnavailableError
from mediaworker.domain.events import JobCompleted, JobFailed, JobProgressUpdated, JobStarted, TaskProgress
from mediaworker.domain.models import JobStatus, TaskKind
from mediaworker.pipeline.orchestrator import Orchestrator


def collect(bus, *event_types):
    events = []
    for event_type in event_types:
        bus.subscribe(event_type, events.append)
    return events


def test_video_job_runs_three_tasks(orchestrator, store, ffprobe, ffmpeg, video_descriptor, app_config):
    job = orchestrator.process(video_descriptor)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    out = app_config.media.output_dir
    assert job.artifacts.thumbnail_path == out / f"{job.id}_thumbnail.jpg"
    assert job.artifacts.compressed_path == out / f"{job.id}_compressed.mp4"
    assert job.artifacts.converted_path is None
    assert job.metadata.video.width == 1280
    assert job.processing_time_ms is not None

    ffprobe.probe.assert_called_once_with(video_descriptor.source_path)
    assert ffmpeg.extract_thumbnail.call_args[0][3] == 10.0  # probed duration
    ffmpeg.transcode_audio.assert_not_called()

    snapshots = store.history[job.id]
    assert [(s.status, s.progress) for s in snapshots] == [
        (JobStatus.PROCESSING, 0),
        (JobStatus.PROCESSING, 33),
        (JobStatus.PROCESSING, 66),
        (JobStatus.COMPLETED, 100),
    ]
    assert store.get(job.id) == job
    assert not store.is_processing(job.id)


def test_audio_job_runs_two_tasks(orchestrator, store, ffmpeg, audio_descriptor):
    job = orchestrator.process(audio_descriptor)

    assert job.status == JobStatus.COMPLETED
    assert job.artifacts.written().keys() == {"converted_path"}
    ffmpeg.extract_thumbnail.assert_not_called()
    ffmpeg.transcode_video.assert_not_called()
    assert [(s.status, s.progress) for s in store.history[job.id]] == [
        (JobStatus.PROCESSING, 0),
        (JobStatus.PROCESSING, 50),
        (JobStatus.COMPLETED, 100),
    ]


def test_marker_set_while_processing(orchestrator, store, ffmpeg, video_descriptor):
    seen = []
    original = ffmpeg.transcode_video.side_effect

    def transcode(*args, **kwargs):
        seen.append(store.is_processing(video_descriptor.id))
        return original(*args, **kwargs)

    ffmpeg.transcode_video.side_effect = transcode
    orchestrator.process(video_descriptor)

    assert seen == [True]
    assert not store.is_processing(video_descriptor.id)


def test_first_failure_aborts_sequence(orchestrator, store, ffmpeg, video_descriptor, bus):
    failures = collect(bus, JobFailed)
    ffmpeg.extract_thumbnail.side_effect = ProcessExitError("ffmpeg", 1, "Invalid argument")

    job = orchestrator.process(video_descriptor)

    assert job.status == JobStatus.FAILED
    assert "ffmpeg exited with code 1" in job.error
    assert job.progress == 33
    assert job.completed_at is not None
    ffmpeg.transcode_video.assert_not_called()
    assert job.artifacts.written() == {}
    assert store.get(job.id).status == JobStatus.FAILED
    assert not store.is_processing(job.id)
    assert failures[0].task == TaskKind.THUMBNAIL


def test_probe_failure_leaves_no_metadata(orchestrator, ffprobe, ffmpeg, audio_descriptor):
    ffprobe.probe.side_effect = ProcessExitError("ffprobe", 1, "Invalid data found when processing input")

    job = orchestrator.process(audio_descriptor)

    assert job.status == JobStatus.FAILED
    assert job.metadata is None
    assert job.progress == 0
    ffmpeg.transcode_audio.assert_not_called()


def test_os_error_fails_job(orchestrator, ffmpeg, video_descriptor):
    ffmpeg.transcode_video.side_effect = PermissionError("Permission denied: '/app/outputs'")
    job = orchestrator.process(video_descriptor)
    assert job.status == JobStatus.FAILED
    assert "Permission denied" in job.error


def test_events_published_in_order(orchestrator, bus, video_descriptor):
    events = collect(bus, JobStarted, JobProgressUpdated, JobCompleted, TaskProgress)

    orchestrator.process(video_descriptor)

    kinds = [type(e).__name__ for e in events]
    assert kinds[0] == "JobStarted"
    assert kinds[-1] == "JobCompleted"
    assert [e.progress_percent for e in events if isinstance(e, JobProgressUpdated)] == [33, 66, 100]
    task_progress = [e.percent for e in events if isinstance(e, TaskProgress)]
    assert task_progress == [25.0, 50.0, 100.0]


def test_store_outage_propagates(app_config, bus, ffprobe, ffmpeg, video_descriptor):
    store = MagicMock()
    store.put.side_effect = StoreUnavailableError("Connection refused")
    orch = Orchestrator(app_config, bus, store, ffprobe, ffmpeg)

    with pytest.raises(StoreUnavailableError):
        orch.process(video_descriptor)
    ffprobe.probe.assert_not_called()


def test_unexpected_task_error_fails_job(orchestrator, store, ffmpeg, video_descriptor, bus):
    failures = collect(bus, JobFailed)
    ffmpeg.extract_thumbnail.side_effect = RuntimeError("boom")

    job = orchestrator.process(video_descriptor)

    assert job.status == JobStatus.FAILED
    assert job.error == "boom"
    assert store.get(job.id).status == JobStatus.FAILED
    assert not store.is_processing(job.id)
    ffmpeg.transcode_video.assert_not_called()
    assert failures[0].task == TaskKind.THUMBNAIL


def test_error_without_message_uses_type_name(orchestrator, ffprobe, audio_descriptor):
    ffprobe.probe.side_effect = KeyError()
    job = orchestrator.process(audio_descriptor)
    assert job.status == JobStatus.FAILED
    assert job.error == "KeyError"


def test_store_outage_mid_job_propagates(app_config, bus, ffprobe, ffmpeg, video_descriptor):
    store = MagicMock()
    # _begin succeeds, the first checkpoint write fails
    store.put.side_effect = [None, StoreUnavailableError("Connection reset")]
    orch = Orchestrator(app_config, bus, store, ffprobe, ffmpeg)

    with pytest.raises(StoreUnavailableError):
        orch.process(video_descriptor)
    ffmpeg.extract_thumbnail.assert_not_called()
