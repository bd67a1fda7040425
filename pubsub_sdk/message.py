"""
Message & topic value types.

A raw SQS record delivered through an SNS subscription carries an envelope:

    {"Type": "Notification", "MessageId": ..., "TopicArn": "arn:aws:sns:...:orders",
     "Message": "<publisher payload>", ...}

Message.from_raw() unwraps it into the fields the subscriber works with.
Records that were sent straight to the queue (no envelope) keep their raw
body and an empty topic name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

RawMessage = Dict[str, Any]
AckToken = Dict[str, str]


@dataclass(frozen=True)
class Topic:
    """SNS topic identified by its ARN."""
    arn: str

    @property
    def name(self) -> str:
        return self.arn.split(":")[-1] if self.arn else ""


@dataclass(frozen=True)
class Message:
    """Normalized view over one delivery of a queue record."""
    id: str
    body: str
    receipt_handle: str
    topic: Topic
    receive_count: int = 1

    @property
    def topic_name(self) -> str:
        return self.topic.name

    def ack_token(self) -> AckToken:
        """Entry accepted by Subscriber.delete_messages()."""
        return {"id": self.id, "receipt_handle": self.receipt_handle}

    @classmethod
    def from_raw(cls, raw: RawMessage) -> "Message":
        if not isinstance(raw, dict):
            raise ValueError("Message.from_raw: expected dict")

        message_id = raw.get("MessageId")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("Message.from_raw: missing MessageId")

        receipt_handle = raw.get("ReceiptHandle")
        if not isinstance(receipt_handle, str) or not receipt_handle.strip():
            raise ValueError("Message.from_raw: missing ReceiptHandle")

        attributes = raw.get("Attributes") or {}
        receive_count = int(attributes.get("ApproximateReceiveCount", 1))

        body = raw.get("Body") or ""
        envelope = _sns_envelope(body)
        if envelope is None:
            return cls(message_id, body, receipt_handle, Topic(""), receive_count)

        inner = envelope.get("Message")
        if not isinstance(inner, str):
            inner = json.dumps(inner)
        return cls(message_id, inner, receipt_handle, Topic(envelope.get("TopicArn") or ""), receive_count)


def _sns_envelope(body: str) -> Optional[Dict[str, Any]]:
    """Return the parsed SNS envelope, or None for a plain body."""
    try:
        parsed = json.loads(body)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, dict) and "Message" in parsed and "TopicArn" in parsed:
        return parsed
    return None


__all__ = ["Topic", "Message", "RawMessage", "AckToken"]
