import logging
import threading
from typing import Dict, Tuple
from mediaworker.infrastructure.event_bus import EventBus
from mediaworker.domain.events import (
    JobStarted, TaskStarted, TaskProgress, JobProgressUpdated, JobCompleted, JobFailed, WorkerBackoff
)


class ProgressLogger:
    """Subscribes to the EventBus and logs job activity.

    Intra-task ffmpeg progress is logged every `step` percent at most.
    """

    def __init__(self, bus: EventBus, step: int = 10):
        self.bus = bus
        self.step = step
        self.logger = logging.getLogger("mediaworker.progress")
        self._last: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(TaskStarted, self.on_task_started)
        self.bus.subscribe(TaskProgress, self.on_task_progress)
        self.bus.subscribe(JobProgressUpdated, self.on_job_progress)
        self.bus.subscribe(JobCompleted, self.on_job_finished)
        self.bus.subscribe(JobFailed, self.on_job_finished)
        self.bus.subscribe(WorkerBackoff, self.on_backoff)

    def on_job_started(self, event: JobStarted):
        self.logger.debug(f"{event.job.id}: tasks={[t.value for t in event.job.tasks]}")

    def on_task_started(self, event: TaskStarted):
        with self._lock:
            self._last[(event.job.id, event.task.value)] = -1

    def on_task_progress(self, event: TaskProgress):
        key = (event.job.id, event.task.value)
        bucket = int(event.percent) // self.step * self.step
        with self._lock:
            if bucket <= self._last.get(key, -1):
                return
            self._last[key] = bucket
        self.logger.info(f"{event.job.id}: {event.task.value} {bucket}%")

    def on_job_progress(self, event: JobProgressUpdated):
        self.logger.info(f"{event.job.id}: progress {event.progress_percent}%")

    def on_job_finished(self, event):
        with self._lock:
            for key in [k for k in self._last if k[0] == event.job.id]:
                del self._last[key]

    def on_backoff(self, event: WorkerBackoff):
        self.logger.debug(f"backoff {event.delay_seconds:.1f}s: {event.reason}")
