"""
Webhook Notifier

Signs transaction events with the merchant's own secret and POSTs them to
the merchant's webhook URL.

Delivery Notes:
- One attempt, fixed timeout (10 s), success means a 2xx response
- No retry, no backoff, no dead-letter queue
- Failures are logged and reported as False, never raised
- Ordering between events is not guaranteed
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..models.transactions import Transaction
from .signature_service import sign

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class WebhookEvent(str, Enum):
    TRANSACTION_COMPLETED = "transaction.completed"
    TRANSACTION_FAILED = "transaction.failed"
    TRANSACTION_PROCESSING = "transaction.processing"


def event_for_status(status: str) -> Optional[WebhookEvent]:
    """Map a transaction status to the event announcing it, if any."""
    return {
        "completed": WebhookEvent.TRANSACTION_COMPLETED,
        "failed": WebhookEvent.TRANSACTION_FAILED,
        "processing": WebhookEvent.TRANSACTION_PROCESSING,
    }.get(status)


def build_payload(event: WebhookEvent, transaction: Transaction) -> Dict[str, Any]:
    """Event body delivered to the merchant."""
    return {
        "event": event.value,
        "transaction_id": transaction.id,
        "reference_id": transaction.reference_id,
        "status": transaction.status,
        "amount": float(transaction.amount),
        "currency": transaction.currency,
        "customer_email": transaction.customer_email,
        "metadata": transaction.metadata or {},
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    }


async def notify(
    webhook_url: str,
    event: WebhookEvent,
    transaction: Transaction,
    merchant_secret: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> bool:
    """
    Deliver one signed webhook.

    The body is serialized once; the signature covers exactly the bytes
    that are sent.

    Args:
        webhook_url: Merchant endpoint
        event: Event name, also sent as X-Webhook-Event
        transaction: Transaction the event is about
        merchant_secret: Plaintext merchant secret used to sign
        client: Optional shared client (tests pass one with a mock transport)
        timeout: Per-request timeout in seconds

    Returns:
        True on a 2xx response, False on any failure
    """
    try:
        body = json.dumps(build_payload(event, transaction), separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign(body, merchant_secret),
            "X-Webhook-Event": event.value,
        }

        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.post(webhook_url, content=body.encode("utf-8"), headers=headers)
        else:
            response = await client.post(webhook_url, content=body.encode("utf-8"), headers=headers, timeout=timeout)

        delivered = 200 <= response.status_code < 300
        if delivered:
            logger.info(f"Webhook {event.value} delivered for transaction {transaction.id}")
        else:
            logger.warning(
                f"Webhook {event.value} for transaction {transaction.id} rejected with HTTP {response.status_code}"
            )
        return delivered

    except Exception as e:
        # Delivery is best-effort; nothing propagates to the triggering request
        logger.warning(f"Webhook {event.value} for transaction {transaction.id} failed: {type(e).__name__}: {e}")
        return False


# ============================================================================
# Background dispatch
# ============================================================================

@dataclass
class WebhookJob:
    webhook_url: str
    event: WebhookEvent
    transaction: Transaction
    merchant_secret: str


Notifier = Callable[..., Awaitable[bool]]


class WebhookDispatcher:
    """
    Bounded worker pool for webhook delivery.

    Requests hand jobs to dispatch() and move on. A fixed number of worker
    tasks drain a bounded queue; when the queue is full the job is dropped
    with a warning rather than blocking the request.
    """

    def __init__(
        self,
        workers: int = 4,
        queue_size: int = 1000,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        notifier: Notifier = notify,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.workers = workers
        self.timeout = timeout
        self._notifier = notifier
        self._client = client
        self._owns_client = client is None
        self._queue: "asyncio.Queue[WebhookJob]" = asyncio.Queue(maxsize=queue_size)
        self._tasks: List[asyncio.Task] = []
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self.running:
            logger.warning("Webhook dispatcher already running")
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"webhook-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Webhook dispatcher started with {self.workers} workers")

    async def shutdown(self, wait: bool = True) -> None:
        """
        Stop the workers.

        Args:
            wait: Drain queued jobs before stopping
        """
        if wait and self.running:
            await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info(
            f"Webhook dispatcher stopped (delivered={self.delivered}, failed={self.failed}, dropped={self.dropped})"
        )

    def dispatch(
        self,
        webhook_url: str,
        event: WebhookEvent,
        transaction: Transaction,
        merchant_secret: str
    ) -> bool:
        """
        Queue a delivery without waiting for it.

        Returns:
            True if queued, False if the queue was full and the job dropped
        """
        try:
            self._queue.put_nowait(WebhookJob(webhook_url, event, transaction, merchant_secret))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Webhook queue full, dropped {event.value} for transaction {transaction.id}")
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has been attempted."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                ok = await self._notifier(
                    job.webhook_url,
                    job.event,
                    job.transaction,
                    job.merchant_secret,
                    client=self._client,
                    timeout=self.timeout,
                )
                if ok:
                    self.delivered += 1
                else:
                    self.failed += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"Webhook worker {index} error: {type(e).__name__}: {e}")
            finally:
                self._queue.task_done()
