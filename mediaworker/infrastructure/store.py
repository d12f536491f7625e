import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import redis
from pydantic import ValidationError

from mediaworker.domain.errors import CorruptPayloadError, StoreUnavailableError
from mediaworker.domain.models import Job

PROCESSING_SUFFIX = "_processing"


def decode_job(payload) -> Job:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    try:
        return Job.model_validate_json(payload)
    except ValidationError as e:
        raise CorruptPayloadError(f"Malformed job record: {e}") from e


def newest_first(jobs: List[Job]) -> List[Job]:
    return sorted(jobs, key=lambda j: j.created_at, reverse=True)


class JobStore(ABC):
    """Keyed full-snapshot storage for job records.

    There is no versioning: writes overwrite the whole record. Only the
    worker that dequeued a job writes to its id.
    """

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def put(self, job: Job) -> None: ...

    @abstractmethod
    def list_all(self) -> List[Job]: ...

    @abstractmethod
    def mark_processing(self, job_id: str, ttl: Optional[int] = None) -> None:
        """Sets the time-bounded liveness marker for a job being processed."""

    @abstractmethod
    def clear_processing(self, job_id: str) -> None: ...

    @abstractmethod
    def is_processing(self, job_id: str) -> bool: ...

    @abstractmethod
    def active_count(self) -> int: ...


class RedisJobStore(JobStore):
    """Records live at job_{id}, markers at job_{id}_processing."""

    def __init__(self, client: redis.Redis, key_prefix: str = "job_", processing_ttl: int = 3600):
        self.client = client
        self.key_prefix = key_prefix
        self.processing_ttl = processing_ttl
        self.logger = logging.getLogger(__name__)

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    def _marker(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}{PROCESSING_SUFFIX}"

    def get(self, job_id: str) -> Optional[Job]:
        try:
            payload = self.client.get(self._key(job_id))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot read job {job_id}: {e}") from e
        return decode_job(payload) if payload is not None else None

    def put(self, job: Job) -> None:
        try:
            self.client.set(self._key(job.id), job.to_json())
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot write job {job.id}: {e}") from e

    def list_all(self) -> List[Job]:
        jobs = []
        try:
            for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
                if isinstance(key, bytes):
                    key = key.decode("utf-8")
                if key.endswith(PROCESSING_SUFFIX):
                    continue
                payload = self.client.get(key)
                if payload is None:
                    continue
                try:
                    jobs.append(decode_job(payload))
                except CorruptPayloadError as e:
                    self.logger.warning(f"Skipping {key}: {e}")
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot list jobs: {e}") from e
        return newest_first(jobs)

    def mark_processing(self, job_id: str, ttl: Optional[int] = None) -> None:
        try:
            self.client.set(self._marker(job_id), "1", ex=ttl or self.processing_ttl)
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot set liveness marker for {job_id}: {e}") from e

    def clear_processing(self, job_id: str) -> None:
        try:
            self.client.delete(self._marker(job_id))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot clear liveness marker for {job_id}: {e}") from e

    def is_processing(self, job_id: str) -> bool:
        try:
            return bool(self.client.exists(self._marker(job_id)))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot check liveness marker for {job_id}: {e}") from e

    def active_count(self) -> int:
        try:
            return sum(1 for _ in self.client.scan_iter(match=f"{self.key_prefix}*{PROCESSING_SUFFIX}"))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Cannot count active jobs: {e}") from e


class MemoryJobStore(JobStore):
    """In-process store for single-host runs and tests. Thread-safe."""

    def __init__(self, processing_ttl: int = 3600, clock: Callable[[], float] = time.monotonic,
                 keep_history: bool = False):
        self.processing_ttl = processing_ttl
        self._clock = clock
        self._records: Dict[str, str] = {}
        self._markers: Dict[str, float] = {}
        self._lock = threading.RLock()
        self.keep_history = keep_history
        # Every snapshot ever written, in order; only filled when keep_history is set
        self.history: Dict[str, List[Job]] = {}

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            payload = self._records.get(job_id)
        return decode_job(payload) if payload is not None else None

    def put(self, job: Job) -> None:
        payload = job.to_json()
        with self._lock:
            self._records[job.id] = payload
            if self.keep_history:
                self.history.setdefault(job.id, []).append(decode_job(payload))

    def list_all(self) -> List[Job]:
        with self._lock:
            payloads = list(self._records.values())
        return newest_first([decode_job(p) for p in payloads])

    def _expire(self):
        now = self._clock()
        for job_id in [k for k, exp in self._markers.items() if exp <= now]:
            del self._markers[job_id]

    def mark_processing(self, job_id: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._markers[job_id] = self._clock() + (ttl or self.processing_ttl)

    def clear_processing(self, job_id: str) -> None:
        with self._lock:
            self._markers.pop(job_id, None)

    def is_processing(self, job_id: str) -> bool:
        with self._lock:
            self._expire()
            return job_id in self._markers

    def active_count(self) -> int:
        with self._lock:
            self._expire()
            return len(self._markers)
