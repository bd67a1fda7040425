"""Shared test fixtures for the subscriber SDK."""
import json
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from pubsub_sdk.config import SubscriberConfig
from pubsub_sdk.locks import MemoryLock
from pubsub_sdk.middleware import Chain


QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/orders-service"
TOPIC_ARN_PREFIX = "arn:aws:sns:us-east-1:123456789012:"


def make_record(message_id: str, body: Any = None, topic: str = "orders") -> Dict[str, Any]:
    """Raw SQS record carrying an SNS notification envelope."""
    payload = body if isinstance(body, str) else json.dumps(body or {"id": message_id})
    envelope = {
        "Type": "Notification",
        "MessageId": f"sns-{message_id}",
        "TopicArn": TOPIC_ARN_PREFIX + topic,
        "Message": payload,
    }
    return {
        "MessageId": message_id,
        "ReceiptHandle": f"rh-{message_id}",
        "Body": json.dumps(envelope),
        "Attributes": {"ApproximateReceiveCount": "1"},
    }


class FakeQueueClient:
    """In-memory stand-in for io_sqs.SQSClient that records every call."""

    def __init__(self, batches: Optional[List[List[Dict[str, Any]]]] = None, queues: Optional[Dict[str, str]] = None):
        self.batches = list(batches or [])
        self.queues = queues if queues is not None else {"orders-service": QUEUE_URL}
        self.receive_calls: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.batch_deleted: List[List[Dict[str, str]]] = []
        self.visibility_changes: List[tuple] = []
        self.heartbeats: List[tuple] = []
        self.on_empty = None  # called when the scripted batches run out
        self._lock = threading.Lock()

    def get_queue_url(self, queue_name: str) -> str:
        from pubsub_sdk.errors import QueueNotFoundError
        if queue_name not in self.queues:
            raise QueueNotFoundError(queue_name)
        return self.queues[queue_name]

    def receive_messages(self, queue_url: str, max_messages: int = 10, wait_seconds: int = 20):
        self.receive_calls.append({"queue_url": queue_url, "max_messages": max_messages, "wait_seconds": wait_seconds})
        if self.batches:
            batch = self.batches.pop(0)
            if isinstance(batch, Exception):
                raise batch
            return batch
        if self.on_empty:
            self.on_empty()
        return []

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        with self._lock:
            self.deleted.append(receipt_handle)

    def delete_message_batch(self, queue_url: str, entries: List[Dict[str, str]]) -> List[str]:
        with self._lock:
            self.batch_deleted.append(list(entries))
        return []

    def change_visibility(self, queue_url: str, receipt_handle: str, visibility_timeout: int) -> None:
        with self._lock:
            self.visibility_changes.append((receipt_handle, visibility_timeout))

    @contextmanager
    def visibility_heartbeat(self, queue_url: str, receipt_handle: str, base_timeout: int):
        self.heartbeats.append((receipt_handle, base_timeout))
        yield


def client_error(code: str, operation: str = "ReceiveMessage") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def queue_client():
    return FakeQueueClient()


@pytest.fixture
def errors():
    return []


@pytest.fixture
def config(errors):
    return SubscriberConfig(
        queue_name="orders-service",
        access_key="AKIAEXAMPLE",
        secret_key="secret",
        region="us-east-1",
        lock_strategy=MemoryLock(),
        middleware=Chain(),
        error_handler=errors.append,
        log_level="ERROR",
    )
