"""WorkDispatcher: push work onto an SQS FIFO queue, or run it inline when no queue is usable.

Messages carry a stable job id as ``MessageDeduplicationId`` so a retried
enqueue of the same job inside SQS's deduplication window is dropped by the
queue itself.
"""

import json
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from settlement.core.settings import Settings
from settlement.core.utils import get_logger

logger = get_logger("settlement.queue")

SWAP_PROCESS = "swap.process"
BRIDGE_TO_HUB = "bridge.to_hub"


class QueueMessage(BaseModel):
    """A received queue message."""

    kind: str
    payload: dict[str, Any]
    receipt_handle: str


class WorkDispatcher:
    """Dual-mode dispatcher: SQS when configured and reachable, otherwise the fallback."""

    def __init__(self, settings: Settings, sqs_client: Any = None) -> None:
        """Initialize with settings and an optional preconfigured boto3 SQS client."""
        self.queue_url = settings.sqs_queue_url
        self.region = settings.aws_region
        self.endpoint_url = settings.sqs_endpoint_url
        self._sqs = sqs_client

    @property
    def enabled(self) -> bool:
        """Return True if a queue URL is configured."""
        return bool(self.queue_url)

    @property
    def sqs(self) -> Any:
        """Lazily create the boto3 SQS client."""
        if self._sqs is None:
            self._sqs = boto3.client("sqs", region_name=self.region, endpoint_url=self.endpoint_url)
        return self._sqs

    def enqueue(
        self,
        job_kind: str,
        payload: dict[str, Any],
        job_id: str,
        fallback: Callable[[], None] | None = None,
        group_id: str | None = None,
    ) -> bool:
        """Send a job message; on any failure, or with no queue, run ``fallback`` now.

        Messages share a FIFO group per ``group_id`` (default: the job kind).
        Returns True if the message was accepted by the queue.
        """
        if not self.enabled:
            logger.info(f"No queue configured; running {job_kind} {job_id} inline")
            if fallback is not None:
                fallback()
            return False
        try:
            self.sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps({"kind": job_kind, "payload": payload}),
                MessageGroupId=group_id or job_kind,
                MessageDeduplicationId=job_id,
            )
        except (BotoCoreError, ClientError):
            logger.exception(f"Failed to enqueue {job_kind} {job_id}, falling back")
            if fallback is not None:
                fallback()
            return False
        logger.info(f"Enqueued {job_kind} {job_id}")
        return True

    def receive(self, max_messages: int = 10, wait_seconds: int = 10) -> list[QueueMessage]:
        """Long-poll the queue for job messages. Malformed bodies are logged and acknowledged."""
        if not self.enabled:
            return []
        response = self.sqs.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
        )
        messages: list[QueueMessage] = []
        for raw in response.get("Messages", []):
            try:
                body = json.loads(raw["Body"])
                messages.append(
                    QueueMessage(kind=body["kind"], payload=body["payload"], receipt_handle=raw["ReceiptHandle"])
                )
            except (KeyError, TypeError, ValueError):
                logger.exception(f"Dropping malformed queue message {raw.get('MessageId')}")
                self.ack(raw["ReceiptHandle"])
        return messages

    def ack(self, receipt_handle: str) -> None:
        """Delete a processed message."""
        self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
