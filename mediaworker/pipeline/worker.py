import logging
import os
import socket
import threading
import time
from collections import deque
from typing import Deque, Optional
from pydantic import BaseModel
from mediaworker.config.models import WorkerConfig
from mediaworker.infrastructure.event_bus import EventBus
from mediaworker.infrastructure.queue import JobQueue
from mediaworker.infrastructure.store import JobStore
from mediaworker.pipeline.orchestrator import Orchestrator
from mediaworker.domain.errors import CorruptPayloadError, InfrastructureError
from mediaworker.domain.events import WorkerBackoff, WorkerStopped


class WorkerStats(BaseModel):
    worker: str
    queue_length: int
    active_jobs: int
    jobs_handled: int
    uptime_seconds: float


def default_worker_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Worker:
    """Single sequential consumer of the job queue.

    Each dequeued job runs to a terminal state before the next poll.
    Infrastructure failures suspend the loop for backoff_seconds and never
    touch a specific job. stop() is honoured between polls, so a job in
    flight is always finished first.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: JobStore,
        orchestrator: Orchestrator,
        event_bus: EventBus,
        config: Optional[WorkerConfig] = None,
        poll_timeout: float = 5.0,
        name: Optional[str] = None
    ):
        self.queue = queue
        self.store = store
        self.orchestrator = orchestrator
        self.event_bus = event_bus
        self.config = config or WorkerConfig()
        self.poll_timeout = poll_timeout
        self.name = name or default_worker_name()
        self.logger = logging.getLogger(__name__)

        self.jobs_handled = 0
        # Most recent job ids only
        self.handled_ids: Deque[str] = deque(maxlen=100)
        self._stop_event = threading.Event()
        self._started_at = time.monotonic()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Requests a graceful stop after the current poll or job."""
        if not self._stop_event.is_set():
            self.logger.info(f"Worker {self.name}: stop requested")
        self._stop_event.set()

    def _backoff(self, error: Exception):
        delay = self.config.backoff_seconds
        self.logger.warning(f"Worker {self.name}: {error}; retrying in {delay:.1f}s")
        self.event_bus.publish(WorkerBackoff(reason=str(error), delay_seconds=delay))
        # Interruptible sleep
        self._stop_event.wait(delay)

    def poll_once(self) -> bool:
        """One iteration of the loop. Returns True when a job was processed."""
        try:
            descriptor = self.queue.dequeue(self.poll_timeout)
        except CorruptPayloadError as e:
            # Not an outage: the entry is already gone from the queue
            self.logger.error(f"Worker {self.name}: dropped malformed queue entry: {e}")
            return False
        except InfrastructureError as e:
            self._backoff(e)
            return False

        if descriptor is None:
            return False

        self.logger.info(f"Worker {self.name}: received job {descriptor.id} ({descriptor.file_name or descriptor.source_path})")
        try:
            self.orchestrator.process(descriptor)
        except InfrastructureError as e:
            # The record keeps its last successful snapshot
            self.logger.error(f"Worker {self.name}: store failure while processing {descriptor.id}")
            self._backoff(e)
        except Exception:
            # Keep the loop alive for the entries queued behind this one
            self.logger.exception(f"Worker {self.name}: job {descriptor.id} could not be processed")
        self.jobs_handled += 1
        self.handled_ids.append(descriptor.id)
        return True

    def run(self, max_jobs: Optional[int] = None) -> int:
        """Polls until stop() is called, or until max_jobs jobs were handled."""
        self.logger.info(f"Worker {self.name} started, listening for jobs...")
        handled = 0
        while not self._stop_event.is_set():
            if self.poll_once():
                handled += 1
                if max_jobs is not None and handled >= max_jobs:
                    break
                if self.config.idle_delay:
                    self._stop_event.wait(self.config.idle_delay)

        self.logger.info(f"Worker {self.name} stopped after {handled} job(s)")
        self.event_bus.publish(WorkerStopped(jobs_handled=handled))
        return handled

    def stats(self) -> WorkerStats:
        return WorkerStats(
            worker=self.name,
            queue_length=self.queue.length(),
            active_jobs=self.store.active_count(),
            jobs_handled=self.jobs_handled,
            uptime_seconds=round(time.monotonic() - self._started_at, 1),
        )
