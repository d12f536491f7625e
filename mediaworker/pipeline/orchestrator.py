import logging
from pathlib import Path
from typing import Optional
from mediaworker.config.models import AppConfig
from mediaworker.infrastructure.event_bus import EventBus
from mediaworker.infrastructure.store import JobStore
from mediaworker.infrastructure.ffprobe import FFprobeAdapter
from mediaworker.infrastructure.ffmpeg import FFmpegAdapter
from mediaworker.domain.errors import InfrastructureError
from mediaworker.domain.models import Job, JobDescriptor, TaskKind, TASK_SEQUENCES
from mediaworker.domain.events import (
    JobStarted, TaskStarted, TaskProgress, JobProgressUpdated, JobCompleted, JobFailed
)

class Orchestrator:
    """Drives one job through the fixed task sequence of its media kind."""

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        store: JobStore,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter
    ):
        self.config = config
        self.event_bus = event_bus
        self.store = store
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.logger = logging.getLogger(__name__)

    @property
    def output_dir(self) -> Path:
        return self.config.media.output_dir

    def _begin(self, descriptor: JobDescriptor) -> Job:
        job = Job.from_descriptor(descriptor)
        job.start()
        self.store.put(job)
        self.store.mark_processing(job.id, self.config.store.processing_ttl)
        self.logger.info(f"Processing started: {job.id} {job.source_path.name} ({job.media_kind.value})")
        self.event_bus.publish(JobStarted(job=job))
        return job

    def _run_task(self, job: Job, task: TaskKind):
        """Runs one task and records what it produced on the job."""
        def report(percent: float):
            self.event_bus.publish(TaskProgress(job=job, task=task, percent=percent))

        if task == TaskKind.METADATA:
            job.record_metadata(self.ffprobe_adapter.probe(job.source_path))
            return

        duration = job.metadata.duration if job.metadata else 0.0
        if task == TaskKind.THUMBNAIL:
            path = self.ffmpeg_adapter.extract_thumbnail(job.source_path, self.output_dir, job.id, duration, report)
        elif task == TaskKind.COMPRESS:
            path = self.ffmpeg_adapter.transcode_video(job.source_path, self.output_dir, job.id, duration, report)
        elif task == TaskKind.CONVERT:
            path = self.ffmpeg_adapter.transcode_audio(job.source_path, self.output_dir, job.id, duration, report)
        else:
            raise ValueError(f"Unsupported task: {task}")
        job.record_artifact(task, path)

    def _complete(self, job: Job):
        job.complete()
        self.store.put(job)
        self.store.clear_processing(job.id)
        self.logger.info(f"Processing completed: {job.id} ({job.processing_time_ms}ms)")
        self.event_bus.publish(JobCompleted(job=job))

    def _fail(self, job: Job, message: str, task: Optional[TaskKind]):
        job.fail(message)
        self.store.put(job)
        self.store.clear_processing(job.id)
        self.logger.error(f"Processing failed: {job.id} at {task.value if task else 'start'}: {message}")
        self.event_bus.publish(JobFailed(job=job, error_message=message, task=task))

    def process(self, descriptor: JobDescriptor) -> Job:
        """Runs the job to a terminal state and returns the final record.

        The first failing task aborts the rest of the sequence; there is no
        retry and no partial success.
        """
        job = self._begin(descriptor)
        sequence = TASK_SEQUENCES[job.media_kind]
        task = None

        try:
            for task, checkpoint in sequence:
                self.logger.info(f"Job {job.id}: running {task.value}")
                self.event_bus.publish(TaskStarted(job=job, task=task))
                self._run_task(job, task)
                job.advance(checkpoint)
                if checkpoint < 100:
                    # The last checkpoint is written together with the terminal status
                    self.store.put(job)
                self.event_bus.publish(JobProgressUpdated(job=job, progress_percent=job.progress))
        except InfrastructureError:
            # Store outage: the worker backs off, the record keeps its last snapshot
            raise
        except Exception as e:
            self.logger.debug(f"Job {job.id}: {task.value if task else 'start'} raised {type(e).__name__}", exc_info=True)
            self._fail(job, str(e) or type(e).__name__, task)
            return job

        self._complete(job)
        return job
