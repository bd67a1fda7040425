"""
SQS queue operations used by the subscriber.

- SQSClient class: receive, delete (single + batch), change visibility,
  queue URL resolution, visibility heartbeat
- Retries transient failures with exponential backoff + jitter
- Lazy boto3 client, re-created after fork (boto3 clients are not fork-safe)
- Easy to test: inject a stub boto3 client, or subclass for local queues
"""

from __future__ import annotations

import os
import random
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .constants import (
    QUEUE_NOT_FOUND_CODES,
    RECEIPT_INVALID_CODES,
    RETRIABLE_ERROR_CODES,
    RETRY_ATTEMPTS,
    SQS_MAX_BATCH,
    SQS_MAX_VISIBILITY,
    SQS_MAX_WAIT_SECONDS,
)
from .errors import QueueNotFoundError
from .logging import get_logger


RawMessage = Dict[str, Any]

# Errors the subscriber treats as fatal provider/connection failures
CONNECTION_ERRORS = (ClientError, BotoCoreError)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class SQSClient:
    """
    Encapsulates the SQS operations the subscription engine needs.

    Args:
        sqs_client: boto3 SQS client (if None, one is created lazily)
        region / access_key / secret_key / endpoint_url: used for the lazy client
        max_retries: attempts for transient errors
        logger: StructuredLogger instance (if None, creates default)
    """

    def __init__(
        self,
        sqs_client=None,
        region: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_retries: int = RETRY_ATTEMPTS,
        logger=None,
    ):
        self._sqs = sqs_client
        self._owns_client = sqs_client is None
        self._pid = os.getpid()
        self._region = region
        self._access_key = access_key
        self._secret_key = secret_key
        self._endpoint_url = endpoint_url
        self.max_retries = max_retries
        self.logger = logger or get_logger("io_sqs")

    @classmethod
    def from_config(cls, config, logger=None) -> "SQSClient":
        """Build from a SubscriberConfig."""
        return cls(
            region=config.region,
            access_key=config.access_key,
            secret_key=config.secret_key,
            endpoint_url=config.endpoint_url,
            logger=logger,
        )

    @property
    def sqs(self):
        """Lazy-load SQS client with long-polling config."""
        if self._owns_client and self._sqs is not None and self._pid != os.getpid():
            self._sqs = None
        if self._sqs is None:
            self._pid = os.getpid()
            self._sqs = boto3.client(
                "sqs",
                region_name=self._region,
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                endpoint_url=self._endpoint_url,
                config=Config(
                    retries={"max_attempts": 6, "mode": "standard"},
                    read_timeout=70,     # > 20s long-poll
                    connect_timeout=3,
                ),
            )
        return self._sqs

    # ------------------------------------------------------------------------
    # RESOLUTION
    # ------------------------------------------------------------------------

    def get_queue_url(self, queue_name: str) -> str:
        """Resolve a queue name to its URL."""
        if not queue_name:
            raise QueueNotFoundError(queue_name, "Queue name is empty")
        try:
            resp = self._retry(self.sqs.get_queue_url, QueueName=queue_name)
        except ClientError as e:
            if _error_code(e) in QUEUE_NOT_FOUND_CODES:
                raise QueueNotFoundError(queue_name) from e
            raise
        return resp["QueueUrl"]

    # ------------------------------------------------------------------------
    # RECEIVING
    # ------------------------------------------------------------------------

    def receive_messages(
        self,
        queue_url: str,
        max_messages: int = SQS_MAX_BATCH,
        wait_seconds: int = SQS_MAX_WAIT_SECONDS,
        visibility_timeout: Optional[int] = None,
    ) -> List[RawMessage]:
        """Long-poll the queue and return up to max_messages (1-10). Nothing is deleted."""
        max_n = max(1, min(int(max_messages), SQS_MAX_BATCH))
        wait_s = max(0, min(int(wait_seconds), SQS_MAX_WAIT_SECONDS))
        self.logger.debug("Receiving messages", {"queue_url": queue_url, "max_messages": max_n})

        params = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": max_n,
            "WaitTimeSeconds": wait_s,
            "MessageAttributeNames": ["All"],
            "AttributeNames": ["ApproximateReceiveCount", "SentTimestamp"],
            "ReceiveRequestAttemptId": uuid.uuid4().hex,
        }
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = int(visibility_timeout)

        resp = self._retry(self.sqs.receive_message, **params)
        messages = resp.get("Messages", [])
        if messages:
            self.logger.debug(f"Received {len(messages)} message(s)", {"queue_url": queue_url})
        return messages

    # ------------------------------------------------------------------------
    # ACKNOWLEDGEMENT & VISIBILITY
    # ------------------------------------------------------------------------

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """ACK message: permanently remove from queue."""
        if not isinstance(receipt_handle, str) or not receipt_handle.strip():
            raise ValueError("delete_message: receipt_handle required")

        self._retry(
            self.sqs.delete_message,
            QueueUrl=queue_url,
            ReceiptHandle=receipt_handle,
        )

    def delete_message_batch(self, queue_url: str, entries: List[Dict[str, str]]) -> List[str]:
        """
        Delete many messages. `entries` are {"id", "receipt_handle"} dicts.
        Sent in chunks of 10. Returns ids that failed to delete.
        """
        failed: List[str] = []
        for start in range(0, len(entries), SQS_MAX_BATCH):
            chunk = entries[start:start + SQS_MAX_BATCH]
            resp = self._retry(
                self.sqs.delete_message_batch,
                QueueUrl=queue_url,
                Entries=[{"Id": e["id"], "ReceiptHandle": e["receipt_handle"]} for e in chunk],
            )
            for f in resp.get("Failed", []):
                failed.append(f.get("Id"))
                self.logger.error("Batch delete failure", {
                    "entry_id": f.get("Id"),
                    "message": f.get("Message"),
                    "code": f.get("Code"),
                })
        return failed

    def change_visibility(
        self,
        queue_url: str,
        receipt_handle: str,
        visibility_timeout: int,
    ) -> None:
        """Extend (or shorten, 0 = redeliver now) message invisibility."""
        if not isinstance(receipt_handle, str) or not receipt_handle.strip():
            raise ValueError("change_visibility: receipt_handle required")
        if not isinstance(visibility_timeout, int) or visibility_timeout < 0:
            raise ValueError("change_visibility: timeout must be non-negative int")

        visibility_timeout = min(visibility_timeout, SQS_MAX_VISIBILITY)
        self._retry(
            self.sqs.change_message_visibility,
            QueueUrl=queue_url,
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=visibility_timeout,
        )

    def extend_visibility_loop(
        self,
        queue_url: str,
        receipt_handle: str,
        base_timeout: int,
        heartbeat_every: int,
        stop: threading.Event,
    ) -> None:
        """Keep extending visibility until `stop` is set. Best-effort: never raises."""
        base_timeout = max(1, min(int(base_timeout), SQS_MAX_VISIBILITY))
        heartbeat_every = max(1, int(heartbeat_every))
        if heartbeat_every >= base_timeout:
            heartbeat_every = max(1, base_timeout // 2)

        while True:
            try:
                self.change_visibility(queue_url, receipt_handle, base_timeout)
            except ClientError as e:
                if _error_code(e) in RECEIPT_INVALID_CODES:
                    self.logger.debug("Receipt handle invalid (stopping heartbeat)")
                    return
                self.logger.warning("Visibility extension error", {"error": str(e)})
            except Exception as e:
                self.logger.warning("Visibility extension error", {"error": str(e)})

            jitter = heartbeat_every * random.uniform(-0.10, 0.10)
            if stop.wait(max(1.0, heartbeat_every + jitter)):
                return

    @contextmanager
    def visibility_heartbeat(self, queue_url: str, receipt_handle: str, base_timeout: int) -> Iterator[None]:
        """
        Maintain visibility while the block runs.

        Example:
            with client.visibility_heartbeat(url, receipt, base_timeout=60):
                handle(message)
        """
        stop = threading.Event()
        t = threading.Thread(
            target=self.extend_visibility_loop,
            args=(queue_url, receipt_handle, base_timeout, base_timeout // 2, stop),
            name="pubsub-heartbeat",
            daemon=True,
        )
        t.start()
        try:
            yield
        finally:
            stop.set()
            t.join(timeout=2)

    # ------------------------------------------------------------------------
    # INTERNAL
    # ------------------------------------------------------------------------

    def _retry(self, func: Callable, *args, **kwargs):
        """Retry a boto3 call with exponential backoff on retriable errors."""
        delay = 0.25
        for attempt in range(1, self.max_retries + 1):
            try:
                return func(*args, **kwargs)
            except ClientError as e:
                if _error_code(e) in RETRIABLE_ERROR_CODES and attempt < self.max_retries:
                    time.sleep(delay + random.uniform(0, 0.25))
                    delay = min(delay * 2, 5.0)
                    continue
                raise
            except BotoCoreError:
                if attempt < self.max_retries:
                    time.sleep(delay + random.uniform(0, 0.25))
                    delay = min(delay * 2, 5.0)
                    continue
                raise
        raise RuntimeError(f"Failed after {self.max_retries} attempts")


__all__ = ["SQSClient", "CONNECTION_ERRORS", "RawMessage"]
