"""
Tests for the vote ledger and the vote credit worker.
"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from votepay.core.exceptions import CandidateNotFound
from votepay.core.vote_ledger import VoteLedger, votes_for_amount
from votepay.database.connection import Database
from votepay.workers.vote_credit_worker import VoteCreditMessage, VoteCreditWorker

from .conftest import CANDIDATE_ID, seed_candidate


class TestVotesForAmount:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("100"), 10),
            (Decimal("105"), 10),
            (Decimal("10"), 1),
            (Decimal("5"), 1),
            (Decimal("1"), 1),
            (Decimal("1000"), 100),
        ],
    )
    def test_floor_with_minimum_one(self, amount: Decimal, expected: int) -> None:
        assert votes_for_amount(amount, Decimal("10")) == expected


class TestVoteLedger:
    """Test suite for VoteLedger."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_increment(self, ledger: VoteLedger) -> None:
        await ledger.increment(CANDIDATE_ID, 3)
        await ledger.increment(CANDIDATE_ID, 2)

        assert await ledger.get_votes(CANDIDATE_ID) == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_increment_unknown_candidate(self, ledger: VoteLedger) -> None:
        with pytest.raises(CandidateNotFound):
            await ledger.increment("missing", 1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_increment_rejects_non_positive(self, ledger: VoteLedger) -> None:
        with pytest.raises(ValueError):
            await ledger.increment(CANDIDATE_ID, 0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_is_applied_once_per_payment(self, ledger: VoteLedger) -> None:
        assert await ledger.credit("key-1", CANDIDATE_ID, 10) is True
        assert await ledger.credit("key-1", CANDIDATE_ID, 10) is False

        assert await ledger.get_votes(CANDIDATE_ID) == 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_for_unknown_candidate_leaves_no_dedup_row(
        self, ledger: VoteLedger, database: Database
    ) -> None:
        with pytest.raises(CandidateNotFound):
            await ledger.credit("key-1", "missing", 10)

        await seed_candidate(database, candidate_id="missing", name="Late Entry")
        assert await ledger.credit("key-1", "missing", 10) is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_tallies_ordered_by_votes(
        self, ledger: VoteLedger, database: Database
    ) -> None:
        await seed_candidate(database, candidate_id="2", name="Brian Kamau", votes=7)
        await seed_candidate(database, candidate_id="3", name="Chao Wanjiru", votes=3)

        tallies = await ledger.list_tallies()

        assert [t.id for t in tallies] == ["2", "3", CANDIDATE_ID]
        assert tallies[0].votes == 7

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, ledger: VoteLedger) -> None:
        await asyncio.gather(*(ledger.increment(CANDIDATE_ID, 1) for _ in range(20)))

        assert await ledger.get_votes(CANDIDATE_ID) == 20


class TestVoteCreditWorker:
    """Test suite for VoteCreditWorker."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dispatch_applies_credit(
        self, vote_worker: VoteCreditWorker, ledger: VoteLedger
    ) -> None:
        assert vote_worker.dispatch(VoteCreditMessage("key-1", CANDIDATE_ID, 10))

        assert await vote_worker.join(timeout=5)
        assert await ledger.get_votes(CANDIDATE_ID) == 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redelivery_does_not_double_credit(
        self, vote_worker: VoteCreditWorker, ledger: VoteLedger
    ) -> None:
        vote_worker.dispatch(VoteCreditMessage("key-1", CANDIDATE_ID, 10))
        vote_worker.dispatch(VoteCreditMessage("key-1", CANDIDATE_ID, 10))

        assert await vote_worker.join(timeout=5)
        assert await ledger.get_votes(CANDIDATE_ID) == 10

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_candidate_is_dropped(
        self, vote_worker: VoteCreditWorker, ledger: VoteLedger
    ) -> None:
        vote_worker.dispatch(VoteCreditMessage("key-1", "missing", 10))
        vote_worker.dispatch(VoteCreditMessage("key-2", CANDIDATE_ID, 1))

        assert await vote_worker.join(timeout=5)
        assert vote_worker.running
        assert await ledger.get_votes(CANDIDATE_ID) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        ledger = AsyncMock(spec=VoteLedger)
        ledger.credit.side_effect = [
            OperationalError("UPDATE", {}, Exception("locked")),
            True,
        ]
        worker = VoteCreditWorker(ledger, max_attempts=3, retry_base_delay=0.001)

        await worker.apply(VoteCreditMessage("key-1", CANDIDATE_ID, 10))

        assert ledger.credit.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failures_never_raise(self) -> None:
        ledger = AsyncMock(spec=VoteLedger)
        ledger.credit.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        worker = VoteCreditWorker(ledger, max_attempts=2, retry_base_delay=0.001)

        await worker.apply(VoteCreditMessage("key-1", CANDIDATE_ID, 10))

        assert ledger.credit.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self) -> None:
        worker = VoteCreditWorker(AsyncMock(spec=VoteLedger), max_queue_size=1)

        assert worker.dispatch(VoteCreditMessage("key-1", CANDIDATE_ID, 1))
        assert not worker.dispatch(VoteCreditMessage("key-2", CANDIDATE_ID, 1))
        assert worker.pending == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_drains_pending_credits(self, ledger: VoteLedger) -> None:
        worker = VoteCreditWorker(ledger, concurrency=2)
        worker.start()
        for i in range(5):
            worker.dispatch(VoteCreditMessage(f"key-{i}", CANDIDATE_ID, 2))

        await worker.stop(drain_timeout=5)

        assert not worker.running
        assert await ledger.get_votes(CANDIDATE_ID) == 10
