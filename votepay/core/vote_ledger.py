"""Candidate vote counters with atomic, deduplicated increments."""
import asyncio
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import List

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from votepay.database.connection import Database
from votepay.database.models import Candidate, VoteCredit

from .exceptions import CandidateNotFound

logger = structlog.get_logger(__name__)


def votes_for_amount(amount: Decimal, price_per_vote: Decimal) -> int:
    """Votes bought by ``amount``: floor(amount / price), at least one."""
    return max(1, math.floor(Decimal(amount) / Decimal(price_per_vote)))


@dataclass(frozen=True)
class CandidateTally:
    """Read-only view of a candidate's vote count."""

    id: str
    name: str
    category: str
    votes: int


class VoteLedger:
    """
    Applies vote increments to candidates.

    Each increment is a single ``UPDATE ... SET votes = votes + n`` so
    concurrent callers never race on a read-modify-write.
    """

    def __init__(self, database: Database, timeout_seconds: float = 5.0):
        self.database = database
        self.timeout_seconds = timeout_seconds

    async def increment(self, candidate_id: str, count: int) -> None:
        """
        Atomically add ``count`` votes to a candidate.

        Raises:
            CandidateNotFound: If no candidate has this id
            ValueError: If count is not positive
        """
        if count <= 0:
            raise ValueError("Vote count must be positive")

        async def _increment() -> None:
            async with self.database.session() as db:
                await self._add_votes(db, candidate_id, count)
                await db.commit()

        await asyncio.wait_for(_increment(), timeout=self.timeout_seconds)
        logger.info("votes_incremented", candidate_id=candidate_id, votes=count)

    async def credit(self, payment_key: str, candidate_id: str, count: int) -> bool:
        """
        Credit votes for a payment exactly once.

        The dedup row and the increment commit together, so a redelivered
        credit for the same payment is a no-op.

        Returns:
            bool: True if applied, False if this payment was already credited

        Raises:
            CandidateNotFound: If no candidate has this id
        """
        if count <= 0:
            raise ValueError("Vote count must be positive")

        async def _credit() -> bool:
            async with self.database.session() as db:
                if await db.get(VoteCredit, payment_key) is not None:
                    return False
                db.add(VoteCredit(payment_key=payment_key, candidate_id=candidate_id, votes=count))
                try:
                    await db.flush()
                except IntegrityError:
                    await db.rollback()
                    return False
                await self._add_votes(db, candidate_id, count)
                await db.commit()
                return True

        applied = await asyncio.wait_for(_credit(), timeout=self.timeout_seconds)
        if applied:
            logger.info(
                "vote_credit_applied",
                payment_key=payment_key,
                candidate_id=candidate_id,
                votes=count,
            )
        else:
            logger.info("vote_credit_duplicate", payment_key=payment_key)
        return applied

    @staticmethod
    async def _add_votes(db, candidate_id: str, count: int) -> None:
        stmt = (
            update(Candidate)
            .where(Candidate.id == candidate_id)
            .values(votes=Candidate.votes + count)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise CandidateNotFound(candidate_id)

    async def get_votes(self, candidate_id: str) -> int:
        """
        Current vote count for a candidate.

        Raises:
            CandidateNotFound: If no candidate has this id
        """
        async with self.database.session() as db:
            candidate = await db.get(Candidate, candidate_id)
            if candidate is None:
                raise CandidateNotFound(candidate_id)
            return candidate.votes

    async def list_tallies(self) -> List[CandidateTally]:
        """All candidates ordered by votes, highest first."""
        async with self.database.session() as db:
            stmt = select(Candidate).order_by(Candidate.votes.desc(), Candidate.name)
            result = await db.execute(stmt)
            return [
                CandidateTally(id=c.id, name=c.name, category=c.category, votes=c.votes)
                for c in result.scalars().all()
            ]
