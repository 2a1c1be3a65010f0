"""
Pytest configuration and fixtures for conduit tests

This module provides in-memory queue and object-store fakes for unit and
integration tests, and a LocalStack container for E2E tests.
"""
import asyncio
import itertools
import json
import threading
import time
from typing import Callable, Generator, Optional

import pytest

from conduit.clients.interfaces import ReceivedMessage
from conduit.core.models import Notification, PipelineConfig, S3Bucket, S3Entity, S3Object


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that run the pipeline against in-memory collaborators"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that require Docker (LocalStack)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# MESSAGE BUILDERS
# =======================

def s3_event_record(bucket: str = "ingress", key: str = "file.txt", size: int = 5) -> dict:
    """Build one S3 event record as found in a notification body."""
    return {
        "eventVersion": "2.1",
        "eventSource": "aws:s3",
        "awsRegion": "us-east-1",
        "eventTime": "2021-10-03T05:05:03.622Z",
        "eventName": "ObjectCreated:Put",
        "s3": {
            "bucket": {"name": bucket, "arn": f"arn:aws:s3:::{bucket}"},
            "object": {
                "key": key,
                "size": size,
                "eTag": "2d21a73d66fe9a154b3e7e1442e82c1c",
                "sequencer": "0055AED6DCD90281E5",
            },
        },
    }


def s3_event_body(*records: dict) -> str:
    """Serialize records into a notification body."""
    return json.dumps({"Records": list(records)})


def make_notification(
    bucket: str = "ingress",
    key: str = "file.txt",
    receipt_handle: str = "handle-1",
    message_id: str = "msg-1",
) -> Notification:
    return Notification(
        s3=S3Entity(bucket=S3Bucket(name=bucket), object=S3Object(key=key)),
        receipt_handle=receipt_handle,
        message_id=message_id,
    )


# =======================
# IN-MEMORY COLLABORATORS
# =======================

class FakeQueue:
    """
    In-memory QueueClient.

    Each message is delivered once; deletes are recorded. Calls arrive from
    worker threads, so state is guarded by a lock.
    """

    def __init__(self, call_log: Optional[list] = None):
        self._lock = threading.Lock()
        self._messages: list[ReceivedMessage] = []
        self._ids = itertools.count(1)
        self.call_log = call_log if call_log is not None else []
        self.receive_calls: list[tuple[float, int, int]] = []
        self.deleted: list[str] = []
        self.receive_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None

    def send(self, body: str, receipt_handle: Optional[str] = None, message_id: Optional[str] = None) -> str:
        with self._lock:
            index = next(self._ids)
            handle = receipt_handle or f"handle-{index}"
            self._messages.append(ReceivedMessage(body, handle, message_id or f"msg-{index}"))
            return handle

    def receive(self, max_count: int, visibility_timeout: int) -> list[ReceivedMessage]:
        with self._lock:
            self.receive_calls.append((time.monotonic(), max_count, visibility_timeout))
            if self.receive_error is not None:
                raise self.receive_error
            batch, self._messages = self._messages[:max_count], self._messages[max_count:]
            return batch

    def delete(self, receipt_handle: str) -> None:
        with self._lock:
            if self.delete_error is not None:
                raise self.delete_error
            self.deleted.append(receipt_handle)
            self.call_log.append(("delete", receipt_handle))


class FakeObjectStore:
    """In-memory ObjectStore recording every get and put."""

    def __init__(self, call_log: Optional[list] = None):
        self._lock = threading.Lock()
        self.objects: dict[tuple[str, str], bytes] = {}
        self.call_log = call_log if call_log is not None else []
        self.gets: list[tuple[str, str]] = []
        self.puts: list[tuple[str, str, bytes]] = []
        self.put_error: Optional[Callable[[str, str], Optional[Exception]]] = None

    def add(self, bucket: str, key: str, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.objects[(bucket, key)] = data

    def get(self, bucket: str, key: str) -> bytes:
        with self._lock:
            self.gets.append((bucket, key))
            return self.objects[(bucket, key)]

    def put(self, bucket: str, key: str, data: bytes) -> None:
        with self._lock:
            if self.put_error is not None:
                error = self.put_error(bucket, key)
                if error is not None:
                    raise error
            self.puts.append((bucket, key, data))
            self.objects[(bucket, key)] = data
            self.call_log.append(("put", bucket, key, data))


@pytest.fixture
def call_log() -> list:
    """Shared log of puts and deletes, in the order they happened"""
    return []


@pytest.fixture
def fake_queue(call_log) -> FakeQueue:
    return FakeQueue(call_log)


@pytest.fixture
def fake_store(call_log) -> FakeObjectStore:
    return FakeObjectStore(call_log)


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Fast-polling configuration for pipeline tests"""
    return PipelineConfig(
        batch_size=10,
        poll_frequency=50,
        visibility_timeout=30,
        concurrency=1,
        queue_url="http://localhost:4566/000000000000/ingress-events",
        egress_bucket="egress",
        shutdown_grace=2.0,
    )


def run_pipeline_until(
    pipeline,
    until: Callable[[], bool],
    timeout: float = 5.0,
    settle: float = 0.0,
) -> None:
    """
    Run ``pipeline`` until ``until()`` holds (or ``timeout``), then stop it.

    Args:
        pipeline: StreamingPipeline to run
        until: Condition checked every 10ms
        timeout: Upper bound on the run
        settle: Extra seconds to keep running after the condition holds
    """

    async def _main():
        loop = asyncio.get_running_loop()
        task = pipeline.start()
        deadline = loop.time() + timeout
        while not until() and loop.time() < deadline:
            await asyncio.sleep(0.01)
        if settle:
            await asyncio.sleep(settle)
        pipeline.stop()
        await task

    asyncio.run(_main())


# =======================
# LOCALSTACK FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def localstack_container() -> Generator:
    """
    Start a LocalStack container with S3 and SQS for E2E tests

    Yields:
        LocalStackContainer instance
    """
    docker = pytest.importorskip("docker")
    try:
        docker.from_env().ping()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    from testcontainers.localstack import LocalStackContainer

    with LocalStackContainer(image="localstack/localstack:3.4").with_services("s3", "sqs") as localstack:
        yield localstack
