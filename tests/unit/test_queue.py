import json
import threading
import time
import pytest
import redis
from pathlib import Path
from unittest.mock import MagicMock
from mediaworker.domain.errors import CorruptPayloadError, QueueUnavailableError
from mediaworker.domain.models import JobDescriptor, JobStatus, MediaKind
from mediaworker.infrastructure.queue import MemoryJobQueue, RedisJobQueue


def descriptor(job_id: str) -> JobDescriptor:
    return JobDescriptor(id=job_id, source_path=Path(f"/app/uploads/{job_id}.mp4"), media_kind=MediaKind.VIDEO)


def test_memory_queue_is_fifo():
    queue = MemoryJobQueue()
    for job_id in ("a", "b", "c"):
        queue.enqueue(descriptor(job_id))

    assert queue.length() == 3
    assert [queue.dequeue(0.1).id for _ in range(3)] == ["a", "b", "c"]
    assert queue.length() == 0


def test_memory_queue_timeout_returns_none():
    queue = MemoryJobQueue()
    start = time.monotonic()
    assert queue.dequeue(0.05) is None
    assert time.monotonic() - start >= 0.04


def test_memory_queue_wakes_blocked_consumer():
    queue = MemoryJobQueue()
    result = {}

    def consume():
        result["job"] = queue.dequeue(2.0)

    t = threading.Thread(target=consume)
    t.start()
    queue.enqueue(descriptor("late"))
    t.join(timeout=2.0)

    assert result["job"].id == "late"


def test_memory_queue_delivers_each_entry_once():
    queue = MemoryJobQueue()
    for i in range(20):
        queue.enqueue(descriptor(f"job{i}"))
    received = []
    lock = threading.Lock()

    def consume():
        while True:
            item = queue.dequeue(0.05)
            if item is None:
                return
            with lock:
                received.append(item.id)

    threads = [threading.Thread(target=consume) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(received) == sorted(f"job{i}" for i in range(20))


def test_redis_queue_push_and_pop():
    client = MagicMock()
    queue = RedisJobQueue(client, key="video_jobs")

    queue.enqueue(descriptor("abc"))
    key, payload = client.lpush.call_args[0]
    assert key == "video_jobs"
    assert json.loads(payload)["id"] == "abc"

    client.brpop.return_value = ("video_jobs", payload)
    popped = queue.dequeue(5)
    assert popped.id == "abc"
    client.brpop.assert_called_with(["video_jobs"], timeout=5)


def test_redis_queue_empty_poll():
    client = MagicMock()
    client.brpop.return_value = None
    assert RedisJobQueue(client).dequeue(5) is None


def test_redis_queue_corrupt_entry():
    client = MagicMock()
    client.brpop.return_value = ("video_jobs", b"{not json")
    with pytest.raises(CorruptPayloadError):
        RedisJobQueue(client).dequeue(5)


def test_redis_queue_unsupported_kind_is_corrupt():
    client = MagicMock()
    client.brpop.return_value = ("video_jobs", json.dumps({"sourcePath": "/a.png", "mimeType": "image/png"}))
    with pytest.raises(CorruptPayloadError):
        RedisJobQueue(client).dequeue(5)


def test_redis_queue_rejects_non_queued_status():
    client = MagicMock()
    record = descriptor("stale_1").model_copy(update={"status": JobStatus.PROCESSING})
    client.brpop.return_value = ("video_jobs", record.to_json())
    with pytest.raises(CorruptPayloadError, match="expected queued"):
        RedisJobQueue(client).dequeue(5)


def test_redis_queue_connection_errors():
    client = MagicMock()
    client.brpop.side_effect = redis.ConnectionError("Connection refused")
    client.lpush.side_effect = redis.ConnectionError("Connection refused")
    client.llen.side_effect = redis.TimeoutError("timeout")
    queue = RedisJobQueue(client)

    with pytest.raises(QueueUnavailableError):
        queue.dequeue(5)
    with pytest.raises(QueueUnavailableError):
        queue.enqueue(descriptor("x"))
    with pytest.raises(QueueUnavailableError):
        queue.length()
