"""
Payment orchestrator.

Orchestrates the complete payment flow:
1. Validate input
2. Normalise the phone number
3. Resolve the payment method
4. Assign the idempotency key
5. Call the gateway once
6. Persist the outcome (best-effort)
7. Dispatch the vote credit (fire-and-forget)
8. Return the result
"""
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Type,
    TypeVar,
)

import pydantic
import structlog

from votepay.database.models import PaymentRequest
from votepay.integrations.gateway_client import (
    ContributionRequest,
    GatewayClient,
    GatewayError,
    GatewayErrorType,
    GatewayResponse,
)
from votepay.monitoring.metrics import metrics
from votepay.workers.vote_credit_worker import VoteCreditMessage, VoteCreditWorker

from .exceptions import (
    GatewayBusinessFailure,
    GatewayUnreachable,
    InternalError,
    PersistenceError,
    ValidationError,
    VotePayError,
)
from .payment_store import PaymentRecordStore
from .phone import mask_phone, normalize_phone
from .schemas import PaymentInput, PaymentResult, VoteInput, format_validation_errors
from .types import PaymentStatus, resolve_payment_method
from .vote_ledger import votes_for_amount

logger = structlog.get_logger(__name__)

REPLAYABLE_STATUSES = (PaymentStatus.PROCESSING.value, PaymentStatus.COMPLETED.value)

InputT = TypeVar("InputT", PaymentInput, VoteInput)
PaymentHandler = Callable[[Any, Optional[str]], Awaitable[PaymentResult]]


class KeyedLocks:
    """Per-key asyncio locks, released from memory once uncontended."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class PaymentOrchestrator:
    """
    Main payment processing orchestrator.

    Every call to ``process_payment`` or ``process_vote`` returns exactly one
    PaymentResult; no exception escapes it.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        store: PaymentRecordStore,
        vote_worker: VoteCreditWorker,
        price_per_vote: Decimal = Decimal("10"),
        minimum_amount: Decimal = Decimal("1"),
        channel_codes: Optional[List[int]] = None,
        debug: bool = False,
    ):
        """
        Initialize payment orchestrator.

        Args:
            gateway: Payment gateway client
            store: Payment record store
            vote_worker: Background vote credit worker
            price_per_vote: Amount per vote
            minimum_amount: Smallest accepted amount
            channel_codes: Optional allow-list of channel codes
            debug: Include diagnostic detail in internal error messages
        """
        self.gateway = gateway
        self.store = store
        self.vote_worker = vote_worker
        self.price_per_vote = price_per_vote
        self.minimum_amount = minimum_amount
        self.channel_codes = channel_codes or []
        self.debug = debug
        self._key_locks = KeyedLocks()
        self._inflight: Set["asyncio.Future[PaymentResult]"] = set()

        logger.info(
            "payment_orchestrator_initialized",
            price_per_vote=str(price_per_vote),
            minimum_amount=str(minimum_amount),
        )

    async def process_payment(
        self, raw_request: Any, callback_url: Optional[str] = None
    ) -> PaymentResult:
        """
        Process a payment request end to end.

        Args:
            raw_request: Untrusted request mapping
            callback_url: Where the gateway should report the final status

        Returns:
            PaymentResult: Success with gateway references, or a structured failure
        """
        return await self._run_guarded(self._process, raw_request, callback_url)

    async def process_vote(
        self, raw_request: Any, callback_url: Optional[str] = None
    ) -> PaymentResult:
        """
        Process a vote purchase expressed as ``votes`` instead of ``amount``.

        The amount charged is ``votes * price_per_vote``; everything else is
        identical to ``process_payment``.
        """
        return await self._run_guarded(self._process_vote, raw_request, callback_url)

    async def drain(self, timeout: float) -> bool:
        """
        Wait for settlements whose callers went away.

        Returns:
            True if nothing is left in flight
        """
        pending = set(self._inflight)
        if not pending:
            return True
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("payment_settlement_drain_timeout", pending=len(not_done))
        return not not_done

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def _run_guarded(
        self, handler: PaymentHandler, raw_request: Any, callback_url: Optional[str]
    ) -> PaymentResult:
        start_time = time.monotonic()
        try:
            result = await handler(raw_request, callback_url)
        except Exception as e:
            result = self._internal_failure(e)

        outcome = "replayed" if result.replayed else result.error_code or "success"
        metrics.record_payment_request(outcome)
        metrics.record_payment_duration(time.monotonic() - start_time)
        return result

    def _internal_failure(
        self, error: Exception, idempotency_key: Optional[str] = None
    ) -> PaymentResult:
        logger.exception(
            "payment_unexpected_error",
            error=str(error),
            error_type=type(error).__name__,
        )
        message = f"{InternalError.default_user_message}: {error}" if self.debug else None
        return PaymentResult.failure(
            InternalError(str(error), user_message=message),
            idempotency_key=idempotency_key,
        )

    async def _process_vote(self, raw_request: Any, callback_url: Optional[str]) -> PaymentResult:
        try:
            vote = self._validate(VoteInput, raw_request)
        except ValidationError as e:
            logger.warning("vote_validation_failed", errors=e.errors)
            return PaymentResult.failure(e)
        return await self._process(vote.to_payment_data(self.price_per_vote), callback_url)

    async def _process(self, raw_request: Any, callback_url: Optional[str]) -> PaymentResult:
        # Steps 1-3: validate, normalise, resolve method
        try:
            payment = self.validate(raw_request)
            phone = normalize_phone(payment.phone_number)
            method = resolve_payment_method(payment.channel_code, payment.payment_method)
        except ValidationError as e:
            logger.warning(
                "payment_validation_failed",
                errors=e.errors,
                attempted_phone=mask_phone(getattr(e, "attempted", "") or ""),
            )
            return PaymentResult.failure(e)
        except ValueError as e:
            error = ValidationError(str(e), errors={"channelCode": [str(e)]})
            logger.warning("payment_validation_failed", errors=error.errors)
            return PaymentResult.failure(error)

        metrics.record_payment_amount(float(payment.amount))

        # Step 4: idempotency key
        idempotency_key = payment.idempotency_key or str(uuid.uuid4())
        contribution = ContributionRequest(
            amount=payment.amount,
            candidate_id=payment.candidate_id,
            phone_number=phone,
            channel_code=payment.channel_code,
            auth_code=payment.auth_code,
            payment_method=method,
            show_names=payment.show_names,
            show_number=payment.show_number,
            first_name=payment.first_name,
            second_name=payment.second_name,
            callback_url=callback_url,
        )

        logger.info(
            "payment_started",
            idempotency_key=idempotency_key,
            candidate_id=payment.candidate_id,
            amount=str(payment.amount),
            channel_code=payment.channel_code,
            payment_method=method.value,
            phone_number=mask_phone(phone),
            client_supplied_key=payment.idempotency_key is not None,
        )

        with structlog.contextvars.bound_contextvars(idempotency_key=idempotency_key):
            # Steps 5-7 run as their own task: a caller that goes away after
            # the gateway call is issued must not stop the outcome being recorded.
            settlement = asyncio.ensure_future(self._settle(contribution, idempotency_key))
            self._inflight.add(settlement)
            settlement.add_done_callback(self._inflight.discard)
            try:
                return await asyncio.shield(settlement)
            except Exception as e:
                return self._internal_failure(e, idempotency_key)

    async def _settle(
        self, contribution: ContributionRequest, idempotency_key: str
    ) -> PaymentResult:
        async with self._key_locks.hold(idempotency_key):
            replay = await self._replay_if_recorded(idempotency_key)
            if replay is not None:
                return replay
            return await self._execute(contribution, idempotency_key)

    def validate(self, raw_request: Any) -> PaymentInput:
        """
        Structural validation of a raw payment request.

        Raises:
            ValidationError: With field-level detail
        """
        return self._validate(PaymentInput, raw_request)

    def _validate(self, model: Type[InputT], raw_request: Any) -> InputT:
        if not isinstance(raw_request, dict):
            raise ValidationError(
                "Payment request must be a JSON object",
                errors={"__root__": ["Payment request must be a JSON object"]},
                user_message="Invalid payment data",
            )
        try:
            return model.model_validate(
                raw_request,
                context={
                    "minimum_amount": self.minimum_amount,
                    "channel_codes": self.channel_codes,
                },
            )
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Payment request failed validation",
                errors=format_validation_errors(e, model),
            ) from e

    async def _replay_if_recorded(self, idempotency_key: str) -> Optional[PaymentResult]:
        try:
            record = await self.store.find_by_key(idempotency_key)
        except PersistenceError as e:
            metrics.record_persistence_failure("find_by_key")
            logger.warning("payment_idempotency_lookup_failed", error=str(e))
            return None

        if record is None or record.status not in REPLAYABLE_STATUSES:
            return None

        logger.info(
            "payment_idempotent_replay",
            status=record.status,
            transaction_id=record.transaction_id,
        )
        return PaymentResult.success(
            message=record.response_message or "Payment already initiated",
            idempotency_key=idempotency_key,
            transaction_id=record.transaction_id,
            checkout_url=record.checkout_url,
            replayed=True,
        )

    async def _execute(
        self, contribution: ContributionRequest, idempotency_key: str
    ) -> PaymentResult:
        # Step 5: single gateway call
        try:
            response = await self.gateway.contribute(contribution, idempotency_key)
        except GatewayError as e:
            error = self._map_gateway_error(e)
            # Step 6 (failure branch)
            await self._persist(
                contribution, idempotency_key, PaymentStatus.FAILED, e.message, None
            )
            return PaymentResult.failure(error, idempotency_key=idempotency_key)

        # Step 8 result is built first so nothing after the charge can fail it
        result = PaymentResult.success(
            message=response.message,
            idempotency_key=idempotency_key,
            transaction_id=response.transaction_id,
            checkout_url=response.checkout_url,
        )

        # Step 6: persist outcome
        await self._persist(
            contribution, idempotency_key, PaymentStatus.PROCESSING, response.message, response
        )

        # Step 7: schedule vote credit
        self._schedule_vote_credit(contribution, idempotency_key)

        logger.info(
            "payment_initiated",
            transaction_id=response.transaction_id,
            has_checkout_url=response.checkout_url is not None,
        )
        return result

    @staticmethod
    def _map_gateway_error(error: GatewayError) -> VotePayError:
        if error.error_type == GatewayErrorType.BUSINESS:
            logger.warning(
                "payment_declined_by_gateway",
                gateway_message=error.message,
                status_code=error.status_code,
            )
            return GatewayBusinessFailure(error.message, status_code=error.status_code)

        logger.error(
            "payment_gateway_unreachable",
            error=error.message,
            timed_out=error.timed_out,
            original_error=str(error.original_error) if error.original_error else None,
        )
        return GatewayUnreachable(
            error.message, user_message=error.message, timed_out=error.timed_out
        )

    async def _persist(
        self,
        contribution: ContributionRequest,
        idempotency_key: str,
        status: PaymentStatus,
        message: str,
        response: Optional[GatewayResponse],
    ) -> Optional[PaymentRequest]:
        fields: Dict[str, Any] = {
            "amount": contribution.amount,
            "candidate_id": contribution.candidate_id,
            "channel_code": contribution.channel_code,
            "phone_number": contribution.phone_number,
            "payment_method": (
                contribution.payment_method.value if contribution.payment_method else None
            ),
            "first_name": contribution.first_name,
            "second_name": contribution.second_name,
            "show_names": contribution.show_names,
            "show_number": contribution.show_number,
            "status": status,
            "response_message": message,
            "transaction_id": response.transaction_id if response else None,
            "checkout_url": response.checkout_url if response else None,
        }
        try:
            return await self.store.upsert(idempotency_key, fields, new_attempt=True)
        except PersistenceError as e:
            # The gateway call already happened; keep the outcome in the logs.
            metrics.record_persistence_failure("upsert")
            logger.error(
                "payment_persistence_failed",
                error=str(e),
                status=status.value,
                candidate_id=contribution.candidate_id,
                amount=str(contribution.amount),
                transaction_id=fields["transaction_id"],
                checkout_url=fields["checkout_url"],
            )
            return None

    def _schedule_vote_credit(
        self, contribution: ContributionRequest, idempotency_key: str
    ) -> None:
        try:
            votes = votes_for_amount(contribution.amount, self.price_per_vote)
            self.vote_worker.dispatch(
                VoteCreditMessage(
                    payment_key=idempotency_key,
                    candidate_id=contribution.candidate_id,
                    votes=votes,
                )
            )
        except Exception as e:
            logger.error("vote_credit_schedule_failed", error=str(e))

