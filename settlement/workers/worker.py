"""Worker process: drive pending swap jobs on an interval and consume queued work.

Run with ``python -m settlement.workers.worker``. Any number of workers may
run side by side; job leases keep them from advancing the same job twice.
"""

import threading
import time

from pydantic import ValidationError

from settlement.core.settings import get_settings
from settlement.core.utils import get_logger, setup_logging
from settlement.services.bridge_service import BridgeToHubJob
from settlement.services.container import Services
from settlement.services.queue_service import BRIDGE_TO_HUB, SWAP_PROCESS, QueueMessage

logger = get_logger("settlement.worker")


class Worker:
    """Runs the interval driver and, when a queue is configured, the queue consumer."""

    def __init__(self, services: Services) -> None:
        """Initialize the worker with the process container."""
        self.services = services
        self.settings = services.settings
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask both loops to exit after their current iteration."""
        self._stop.set()

    def run_interval_once(self) -> int:
        """One pass of the swap driver; errors are logged so the loop keeps going."""
        try:
            return self.services.runner.process_pending_jobs_once(self.settings.swap_worker_batch_size)
        except Exception:
            logger.exception("Swap driver pass failed")
            return 0

    def run_interval_loop(self) -> None:
        """Advance pending swap jobs every ``swap_worker_interval_seconds``."""
        logger.info(f"Swap driver started (every {self.settings.swap_worker_interval_seconds}s)")
        while not self._stop.is_set():
            advanced = self.run_interval_once()
            if advanced:
                logger.info(f"Advanced {advanced} swap job(s)")
            self._stop.wait(self.settings.swap_worker_interval_seconds)

    def handle_message(self, message: QueueMessage) -> bool:
        """Dispatch one queue message by job kind; return False to leave it for redelivery."""
        if message.kind == SWAP_PROCESS:
            job_id = message.payload.get("job_id")
            return self.handle_swap_message(job_id) if job_id else True
        if message.kind == BRIDGE_TO_HUB:
            self.services.bridges.process_bridge_to_hub_job(BridgeToHubJob.model_validate(message.payload))
            return True
        logger.warning(f"Unknown job kind {message.kind!r}; dropping message")
        return True

    def handle_swap_message(self, job_id: str) -> bool:
        """Advance a swap job one step.

        With the interval driver running, the message only speeds up the next
        step. Without it the queue alone drives the job: a step that moved the
        job enqueues the next one, and a step still waiting on the signer is
        left on the queue so its visibility timeout paces the next poll.
        """
        before = self.services.jobs.get(job_id)
        status = self.services.runner.process_job(job_id)
        if self.settings.swap_worker_enabled or status is None or status.is_terminal:
            return True
        if before is not None and status == before.status:
            return False
        self.services.dispatcher.enqueue(
            SWAP_PROCESS, {"job_id": job_id}, job_id=f"swap:{job_id}:{status}", group_id=job_id
        )
        return True

    def consume_once(self) -> int:
        """Receive one batch of messages, handle each and delete it; return how many were handled."""
        handled = 0
        for message in self.services.dispatcher.receive():
            try:
                if not self.handle_message(message):
                    continue
            except ValidationError:
                logger.exception(f"Malformed {message.kind} payload; dropping message")
            except Exception:
                # Leave the message for redelivery after its visibility timeout.
                logger.exception(f"Failed to handle {message.kind} message")
                continue
            self.services.dispatcher.ack(message.receipt_handle)
            handled += 1
        return handled

    def run_consumer_loop(self) -> None:
        """Long-poll the queue until stopped."""
        logger.info("Queue consumer started")
        while not self._stop.is_set():
            try:
                self.consume_once()
            except Exception:
                logger.exception("Queue receive failed")
                self._stop.wait(self.settings.swap_worker_interval_seconds)

    def run(self) -> None:
        """Run the enabled loops until interrupted."""
        threads = []
        if self.settings.swap_worker_enabled:
            threads.append(threading.Thread(target=self.run_interval_loop, name="swap-driver", daemon=True))
        if self.services.dispatcher.enabled:
            threads.append(threading.Thread(target=self.run_consumer_loop, name="queue-consumer", daemon=True))
        if not threads:
            logger.warning("Nothing to do: swap driver disabled and no queue configured")
            return
        for thread in threads:
            thread.start()
        try:
            while any(thread.is_alive() for thread in threads):
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping worker")
            self.stop()
        for thread in threads:
            thread.join(timeout=self.settings.swap_worker_interval_seconds + 15)


def main() -> None:
    """Entry point for the worker process."""
    settings = get_settings()
    setup_logging(settings.log_file)
    Worker(Services.build(settings)).run()


if __name__ == "__main__":
    main()
