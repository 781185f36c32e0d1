"""
Vote credit background worker.

Payments enqueue vote credits without waiting; a pool of consumer tasks
applies them through the vote ledger. Each credit is deduplicated by the
payment idempotency key, so redelivery never double-credits.
"""
import asyncio
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from votepay.core.exceptions import CandidateNotFound
from votepay.core.vote_ledger import VoteLedger
from votepay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VoteCreditMessage:
    """A pending vote credit for a successful payment."""

    payment_key: str
    candidate_id: str
    votes: int


class VoteCreditWorker:
    """
    In-process queue of vote credits with a consumer pool.

    ``dispatch`` never blocks and never raises into the payment path.
    ``stop`` drains pending credits within a bounded time.
    """

    def __init__(
        self,
        ledger: VoteLedger,
        concurrency: int = 2,
        max_queue_size: int = 10000,
        max_attempts: int = 3,
        retry_base_delay: float = 0.5,
    ):
        """
        Initialize vote credit worker.

        Args:
            ledger: Vote ledger applying the increments
            concurrency: Number of consumer tasks
            max_queue_size: Pending credit capacity (0 for unbounded)
            max_attempts: Attempts per credit on transient database errors
            retry_base_delay: Base delay for retry backoff (seconds)
        """
        self.ledger = ledger
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self._queue: asyncio.Queue[VoteCreditMessage] = asyncio.Queue(maxsize=max_queue_size)
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def dispatch(self, message: VoteCreditMessage) -> bool:
        """
        Enqueue a credit without waiting for it.

        Returns:
            bool: False if the credit was dropped because the queue is full
        """
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            metrics.record_vote_credit("dropped")
            logger.error(
                "vote_credit_dropped_queue_full",
                payment_key=message.payment_key,
                candidate_id=message.candidate_id,
                votes=message.votes,
            )
            return False
        metrics.set_vote_credit_queue_depth(self._queue.qsize())
        logger.info(
            "vote_credit_dispatched",
            payment_key=message.payment_key,
            candidate_id=message.candidate_id,
            votes=message.votes,
        )
        return True

    async def apply(self, message: VoteCreditMessage) -> None:
        """
        Apply one credit, retrying transient database errors.

        Failures are logged; nothing is raised.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((SQLAlchemyError, asyncio.TimeoutError)),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_base_delay, max=8),
                reraise=True,
            ):
                with attempt:
                    applied = await self.ledger.credit(
                        message.payment_key, message.candidate_id, message.votes
                    )
        except CandidateNotFound:
            metrics.record_vote_credit("not_found")
            logger.error(
                "vote_credit_candidate_not_found",
                payment_key=message.payment_key,
                candidate_id=message.candidate_id,
            )
            return
        except Exception as e:
            metrics.record_vote_credit("failed")
            logger.error(
                "vote_credit_failed",
                payment_key=message.payment_key,
                candidate_id=message.candidate_id,
                votes=message.votes,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if applied:
            metrics.record_vote_credit("applied", message.votes)
        else:
            metrics.record_vote_credit("duplicate")

    async def _consume(self, worker_id: int) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.apply(message)
            finally:
                self._queue.task_done()
                metrics.set_vote_credit_queue_depth(self._queue.qsize())

    def start(self) -> None:
        """Start the consumer tasks."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"vote-credit-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("vote_credit_worker_started", concurrency=self.concurrency)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every dispatched credit has been processed.

        Returns:
            bool: True if the queue drained within ``timeout``
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """Drain pending credits (bounded by ``drain_timeout``) and stop consumers."""
        if self._tasks:
            drained = await self.join(timeout=drain_timeout)
            if not drained:
                logger.warning("vote_credit_worker_drain_timeout", pending=self.pending)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("vote_credit_worker_stopped", pending=self.pending)
