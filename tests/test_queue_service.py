"""WorkDispatcher tests with a stubbed SQS client."""

import json
from typing import Any

from botocore.exceptions import ClientError

from settlement.core.settings import Settings
from settlement.services.queue_service import BRIDGE_TO_HUB, SWAP_PROCESS, WorkDispatcher

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/settlement.fifo"


class StubSQS:
    """Records SQS calls; optionally fails sends."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.inbox: list[dict[str, Any]] = []

    def send_message(self, **kwargs: Any) -> dict[str, Any]:
        if self.fail:
            raise ClientError({"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": "nope"}}, "SendMessage")
        self.sent.append(kwargs)
        return {"MessageId": "m-1"}

    def receive_message(self, **_kwargs: Any) -> dict[str, Any]:
        return {"Messages": self.inbox}

    def delete_message(self, **kwargs: Any) -> None:
        self.deleted.append(kwargs["ReceiptHandle"])


def queue_settings(tmp_path: Any, queue_url: str | None = QUEUE_URL) -> Settings:
    return Settings(database_url=f"sqlite:///{tmp_path / 'q.db'}", sqs_queue_url=queue_url, aws_region="us-east-1")


def test_enqueue_sends_fifo_message_with_stable_dedup_id(tmp_path: Any) -> None:
    sqs = StubSQS()
    ran: list[str] = []
    accepted = WorkDispatcher(queue_settings(tmp_path), sqs_client=sqs).enqueue(
        SWAP_PROCESS, {"job_id": "dep-1"}, job_id="swap:dep-1", fallback=lambda: ran.append("fallback")
    )
    if not accepted or ran:
        msg = "A successful send must not run the fallback"
        raise AssertionError(msg)
    message = sqs.sent[0]
    if message["MessageDeduplicationId"] != "swap:dep-1" or message["MessageGroupId"] != SWAP_PROCESS:
        msg = f"Unexpected FIFO attributes: {message}"
        raise AssertionError(msg)
    if json.loads(message["MessageBody"]) != {"kind": SWAP_PROCESS, "payload": {"job_id": "dep-1"}}:
        msg = f"Unexpected body: {message['MessageBody']}"
        raise AssertionError(msg)


def test_send_failure_runs_fallback(tmp_path: Any) -> None:
    ran: list[str] = []
    accepted = WorkDispatcher(queue_settings(tmp_path), sqs_client=StubSQS(fail=True)).enqueue(
        BRIDGE_TO_HUB, {}, job_id="bridge:dep-1", fallback=lambda: ran.append("fallback")
    )
    if accepted or ran != ["fallback"]:
        msg = f"Expected the fallback to run once, got accepted={accepted} ran={ran}"
        raise AssertionError(msg)


def test_no_queue_runs_fallback_immediately(tmp_path: Any) -> None:
    ran: list[str] = []
    dispatcher = WorkDispatcher(queue_settings(tmp_path, queue_url=None))
    dispatcher.enqueue(BRIDGE_TO_HUB, {}, job_id="bridge:dep-1", fallback=lambda: ran.append("fallback"))
    dispatcher.enqueue(SWAP_PROCESS, {}, job_id="swap:dep-1")
    if ran != ["fallback"] or dispatcher.enabled:
        msg = f"Expected inline fallback without a queue, got {ran}"
        raise AssertionError(msg)


def test_receive_parses_and_acks_malformed(tmp_path: Any) -> None:
    sqs = StubSQS()
    sqs.inbox = [
        {"MessageId": "1", "ReceiptHandle": "rh-1", "Body": json.dumps({"kind": SWAP_PROCESS, "payload": {"job_id": "x"}})},
        {"MessageId": "2", "ReceiptHandle": "rh-2", "Body": "not json"},
    ]
    messages = WorkDispatcher(queue_settings(tmp_path), sqs_client=sqs).receive()
    if [m.payload for m in messages] != [{"job_id": "x"}]:
        msg = f"Unexpected messages: {messages}"
        raise AssertionError(msg)
    if sqs.deleted != ["rh-2"]:
        msg = f"Malformed messages should be acknowledged, deleted={sqs.deleted}"
        raise AssertionError(msg)
