"""Tests for the SQS adapter, against a mocked boto3 client."""
import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import EndpointConnectionError

from pubsub_sdk import io_sqs
from pubsub_sdk.errors import QueueNotFoundError
from pubsub_sdk.io_sqs import SQSClient

from conftest import QUEUE_URL, client_error


@pytest.fixture
def boto():
    return MagicMock()


@pytest.fixture
def client(boto, monkeypatch):
    monkeypatch.setattr(io_sqs.time, "sleep", lambda s: None)
    return SQSClient(sqs_client=boto)


# ──────────────────────────────────────────────────────────────
#  Queue resolution
# ──────────────────────────────────────────────────────────────

class TestGetQueueUrl:
    def test_resolves(self, client, boto):
        boto.get_queue_url.return_value = {"QueueUrl": QUEUE_URL}
        assert client.get_queue_url("orders-service") == QUEUE_URL
        boto.get_queue_url.assert_called_once_with(QueueName="orders-service")

    def test_not_found(self, client, boto):
        boto.get_queue_url.side_effect = client_error("AWS.SimpleQueueService.NonExistentQueue", "GetQueueUrl")
        with pytest.raises(QueueNotFoundError) as exc:
            client.get_queue_url("missing")
        assert exc.value.queue_name == "missing"

    def test_empty_name(self, client, boto):
        with pytest.raises(QueueNotFoundError):
            client.get_queue_url("")
        boto.get_queue_url.assert_not_called()


# ──────────────────────────────────────────────────────────────
#  Receiving
# ──────────────────────────────────────────────────────────────

class TestReceive:
    def test_returns_messages(self, client, boto):
        boto.receive_message.return_value = {"Messages": [{"MessageId": "A"}]}
        assert client.receive_messages(QUEUE_URL, max_messages=5, wait_seconds=3) == [{"MessageId": "A"}]

        kwargs = boto.receive_message.call_args.kwargs
        assert kwargs["QueueUrl"] == QUEUE_URL
        assert kwargs["MaxNumberOfMessages"] == 5
        assert kwargs["WaitTimeSeconds"] == 3
        assert "VisibilityTimeout" not in kwargs

    def test_empty_response(self, client, boto):
        boto.receive_message.return_value = {}
        assert client.receive_messages(QUEUE_URL) == []

    @pytest.mark.parametrize("requested,wait,expected_n,expected_wait", [
        (50, 60, 10, 20),
        (0, -1, 1, 0),
    ])
    def test_limits_are_clamped(self, client, boto, requested, wait, expected_n, expected_wait):
        boto.receive_message.return_value = {}
        client.receive_messages(QUEUE_URL, max_messages=requested, wait_seconds=wait)
        kwargs = boto.receive_message.call_args.kwargs
        assert kwargs["MaxNumberOfMessages"] == expected_n
        assert kwargs["WaitTimeSeconds"] == expected_wait

    def test_retries_throttling(self, client, boto):
        boto.receive_message.side_effect = [client_error("Throttling"), {"Messages": []}]
        assert client.receive_messages(QUEUE_URL) == []
        assert boto.receive_message.call_count == 2

    def test_retries_transport_errors(self, client, boto):
        boto.receive_message.side_effect = [EndpointConnectionError(endpoint_url=QUEUE_URL), {}]
        assert client.receive_messages(QUEUE_URL) == []

    def test_gives_up_after_max_retries(self, client, boto):
        boto.receive_message.side_effect = client_error("ServiceUnavailable")
        with pytest.raises(io_sqs.ClientError):
            client.receive_messages(QUEUE_URL)
        assert boto.receive_message.call_count == client.max_retries

    def test_non_retriable_error_raises_immediately(self, client, boto):
        boto.receive_message.side_effect = client_error("AccessDenied")
        with pytest.raises(io_sqs.ClientError):
            client.receive_messages(QUEUE_URL)
        assert boto.receive_message.call_count == 1


# ──────────────────────────────────────────────────────────────
#  Acknowledgement & visibility
# ──────────────────────────────────────────────────────────────

class TestDelete:
    def test_delete_message(self, client, boto):
        client.delete_message(QUEUE_URL, "rh-A")
        boto.delete_message.assert_called_once_with(QueueUrl=QUEUE_URL, ReceiptHandle="rh-A")

    def test_delete_requires_receipt(self, client, boto):
        with pytest.raises(ValueError):
            client.delete_message(QUEUE_URL, " ")

    def test_batch_delete_chunks_by_ten(self, client, boto):
        boto.delete_message_batch.return_value = {"Successful": []}
        entries = [{"id": str(i), "receipt_handle": f"rh-{i}"} for i in range(23)]
        assert client.delete_message_batch(QUEUE_URL, entries) == []

        chunks = [c.kwargs["Entries"] for c in boto.delete_message_batch.call_args_list]
        assert [len(c) for c in chunks] == [10, 10, 3]
        assert chunks[0][0] == {"Id": "0", "ReceiptHandle": "rh-0"}

    def test_batch_delete_reports_failures(self, client, boto):
        boto.delete_message_batch.return_value = {
            "Failed": [{"Id": "B", "Code": "ReceiptHandleIsInvalid", "Message": "expired"}],
        }
        entries = [{"id": "A", "receipt_handle": "rh-A"}, {"id": "B", "receipt_handle": "rh-B"}]
        assert client.delete_message_batch(QUEUE_URL, entries) == ["B"]


class TestVisibility:
    def test_reset_to_zero(self, client, boto):
        client.change_visibility(QUEUE_URL, "rh-A", 0)
        boto.change_message_visibility.assert_called_once_with(
            QueueUrl=QUEUE_URL, ReceiptHandle="rh-A", VisibilityTimeout=0
        )

    def test_capped_at_twelve_hours(self, client, boto):
        client.change_visibility(QUEUE_URL, "rh-A", 100_000)
        assert boto.change_message_visibility.call_args.kwargs["VisibilityTimeout"] == 43_200

    @pytest.mark.parametrize("timeout", [-1, 1.5, "30"])
    def test_invalid_timeout(self, client, timeout):
        with pytest.raises(ValueError):
            client.change_visibility(QUEUE_URL, "rh-A", timeout)

    def test_heartbeat_extends_while_block_runs(self, client, boto):
        called = threading.Event()
        boto.change_message_visibility.side_effect = lambda **kw: called.set()

        with client.visibility_heartbeat(QUEUE_URL, "rh-A", base_timeout=60):
            assert called.wait(2)

        assert boto.change_message_visibility.call_args.kwargs["VisibilityTimeout"] == 60

    def test_heartbeat_stops_on_invalid_receipt(self, client, boto):
        boto.change_message_visibility.side_effect = client_error("ReceiptHandleIsInvalid")
        stop = threading.Event()
        client.extend_visibility_loop(QUEUE_URL, "rh-A", 60, 30, stop)
        assert boto.change_message_visibility.call_count == 1


# ──────────────────────────────────────────────────────────────
#  Client construction
# ──────────────────────────────────────────────────────────────

class TestLazyClient:
    def test_created_from_config(self, config, monkeypatch):
        factory = MagicMock()
        monkeypatch.setattr(io_sqs.boto3, "client", factory)
        config.endpoint_url = "http://localhost:4566"

        client = SQSClient.from_config(config)
        assert client.sqs is factory.return_value
        assert client.sqs is factory.return_value

        factory.assert_called_once()
        args, kwargs = factory.call_args
        assert args == ("sqs",)
        assert kwargs["region_name"] == "us-east-1"
        assert kwargs["aws_access_key_id"] == "AKIAEXAMPLE"
        assert kwargs["endpoint_url"] == "http://localhost:4566"

    def test_recreated_after_fork(self, monkeypatch):
        factory = MagicMock(side_effect=[MagicMock(), MagicMock()])
        monkeypatch.setattr(io_sqs.boto3, "client", factory)
        client = SQSClient(region="us-east-1")
        first = client.sqs

        client._pid = -1
        assert client.sqs is not first
        assert factory.call_count == 2

    def test_injected_client_is_kept(self, boto):
        client = SQSClient(sqs_client=boto)
        client._pid = -1
        assert client.sqs is boto
