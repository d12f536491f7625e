import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Optional

import redis
from pydantic import ValidationError

from mediaworker.domain.errors import CorruptPayloadError, QueueUnavailableError, UnsupportedMediaError
from mediaworker.domain.models import JobDescriptor, JobStatus


def decode_descriptor(payload: str) -> JobDescriptor:
    """Parses one queue entry. Raises CorruptPayloadError on malformed JSON or fields.

    Only queued descriptors are accepted; a stored record pushed back onto the
    queue (status processing, completed or failed) is rejected.
    """
    try:
        descriptor = JobDescriptor.model_validate_json(payload)
    except (ValidationError, UnsupportedMediaError) as e:
        raise CorruptPayloadError(f"Malformed queue entry: {e}") from e
    if descriptor.status != JobStatus.QUEUED:
        raise CorruptPayloadError(
            f"Queue entry {descriptor.id} has status {descriptor.status.value}, expected queued"
        )
    return descriptor


class JobQueue(ABC):
    """FIFO channel of pending job descriptors.

    Each entry is removed atomically and delivered to exactly one consumer.
    There is no visibility timeout: an entry popped by a consumer that dies
    before writing the processing record is lost.
    """

    @abstractmethod
    def enqueue(self, descriptor: JobDescriptor) -> None: ...

    @abstractmethod
    def dequeue(self, timeout: float) -> Optional[JobDescriptor]:
        """Blocks up to timeout seconds; returns None when nothing arrived."""

    @abstractmethod
    def length(self) -> int: ...


class RedisJobQueue(JobQueue):
    """LPUSH at the tail, BRPOP from the head."""

    def __init__(self, client: redis.Redis, key: str = "video_jobs"):
        self.client = client
        self.key = key
        self.logger = logging.getLogger(__name__)

    def enqueue(self, descriptor: JobDescriptor) -> None:
        try:
            self.client.lpush(self.key, descriptor.to_json())
        except redis.RedisError as e:
            raise QueueUnavailableError(f"Cannot push to {self.key}: {e}") from e
        self.logger.debug(f"Enqueued job {descriptor.id} on {self.key}")

    def dequeue(self, timeout: float) -> Optional[JobDescriptor]:
        try:
            # BRPOP only accepts whole seconds on old servers; 0 would block forever
            item = self.client.brpop([self.key], timeout=max(1, int(timeout)))
        except redis.RedisError as e:
            raise QueueUnavailableError(f"Cannot pop from {self.key}: {e}") from e
        if item is None:
            return None
        _, payload = item
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return decode_descriptor(payload)

    def length(self) -> int:
        try:
            return int(self.client.llen(self.key))
        except redis.RedisError as e:
            raise QueueUnavailableError(f"Cannot read length of {self.key}: {e}") from e


class MemoryJobQueue(JobQueue):
    """In-process queue for single-host runs and tests. Thread-safe."""

    def __init__(self):
        self._items: Deque[str] = deque()
        self._cond = threading.Condition()

    def enqueue(self, descriptor: JobDescriptor) -> None:
        with self._cond:
            self._items.append(descriptor.to_json())
            self._cond.notify()

    def dequeue(self, timeout: float) -> Optional[JobDescriptor]:
        deadline = time.monotonic() + timeout
        with self._cond:
            while not self._items:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            payload = self._items.popleft()
        return decode_descriptor(payload)

    def length(self) -> int:
        with self._cond:
            return len(self._items)
