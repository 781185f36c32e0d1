"""
Durable PaymentRequest persistence keyed by idempotency key.

Writes are best-effort relative to the payment result: every failure is
raised as PersistenceError for the caller to log and swallow.
"""
import asyncio
from typing import Any, Awaitable, Dict, Optional, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from votepay.database.connection import Database
from votepay.database.models import PaymentRequest

from .exceptions import PersistenceError
from .types import PaymentStatus, can_transition

logger = structlog.get_logger(__name__)

T = TypeVar("T")

REQUIRED_CREATE_FIELDS = (
    "amount",
    "candidate_id",
    "channel_code",
    "phone_number",
    "payment_method",
    "status",
)

CREATE_FIELDS = REQUIRED_CREATE_FIELDS + (
    "first_name",
    "second_name",
    "show_names",
    "show_number",
    "response_message",
    "transaction_id",
    "checkout_url",
)


class PaymentRecordStore:
    """
    Upsert-by-idempotency-key store for PaymentRequest records.

    Updates never move status backwards and never clear a transaction id
    or checkout URL that is already recorded.
    """

    def __init__(self, database: Database, timeout_seconds: float = 5.0):
        """
        Initialize payment record store.

        Args:
            database: Database handle
            timeout_seconds: Upper bound for each store operation
        """
        self.database = database
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Store operation {operation} timed out after {self.timeout_seconds}s"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Store operation {operation} failed: {e}") from e

    async def upsert(
        self,
        idempotency_key: str,
        fields: Dict[str, Any],
        new_attempt: bool = False,
    ) -> PaymentRequest:
        """
        Create the record if absent, else update it in place.

        Args:
            idempotency_key: Record identity
            fields: Column values; creation needs amount, candidate_id,
                channel_code, phone_number, payment_method and status
            new_attempt: The write follows a fresh gateway call under this key,
                which may supersede a previously failed attempt

        Returns:
            PaymentRequest: The stored record

        Raises:
            PersistenceError: On any store failure or timeout
        """
        return await self._bounded(
            "upsert", self._upsert(idempotency_key, fields, new_attempt)
        )

    async def _upsert(
        self, idempotency_key: str, fields: Dict[str, Any], new_attempt: bool
    ) -> PaymentRequest:
        try:
            return await self._write(idempotency_key, fields, new_attempt)
        except IntegrityError:
            # A concurrent writer created the row first; apply as an update.
            logger.info("payment_upsert_conflict_retry", idempotency_key=idempotency_key)
            return await self._write(idempotency_key, fields, new_attempt)

    async def _write(
        self, idempotency_key: str, fields: Dict[str, Any], new_attempt: bool
    ) -> PaymentRequest:
        async with self.database.session() as db:
            record = await db.get(PaymentRequest, idempotency_key)
            if record is None:
                record = self._build(idempotency_key, fields)
                db.add(record)
                created = True
            else:
                self._apply_update(record, fields, new_attempt)
                created = False
            await db.commit()

        logger.info(
            "payment_record_created" if created else "payment_record_updated",
            idempotency_key=idempotency_key,
            status=record.status,
            transaction_id=record.transaction_id,
        )
        return record

    @staticmethod
    def _build(idempotency_key: str, fields: Dict[str, Any]) -> PaymentRequest:
        missing = [name for name in REQUIRED_CREATE_FIELDS if fields.get(name) is None]
        if missing:
            raise PersistenceError(
                f"Cannot create payment record {idempotency_key}: missing {', '.join(missing)}"
            )
        values = {name: fields[name] for name in CREATE_FIELDS if fields.get(name) is not None}
        values["status"] = PaymentStatus(values["status"]).value
        return PaymentRequest(id=idempotency_key, **values)

    @staticmethod
    def _apply_update(
        record: PaymentRequest, fields: Dict[str, Any], new_attempt: bool
    ) -> None:
        if new_attempt:
            record.attempts += 1

        new_status = fields.get("status")
        if new_status is not None:
            current = PaymentStatus(record.status)
            target = PaymentStatus(new_status)
            if can_transition(current, target, new_attempt=new_attempt):
                record.status = target.value
                if fields.get("response_message") is not None:
                    record.response_message = fields["response_message"]
            else:
                logger.warning(
                    "payment_status_transition_rejected",
                    idempotency_key=record.id,
                    current_status=current.value,
                    requested_status=target.value,
                )
        elif fields.get("response_message") is not None:
            record.response_message = fields["response_message"]

        transaction_id = fields.get("transaction_id")
        if transaction_id:
            if record.transaction_id and record.transaction_id != transaction_id:
                logger.warning(
                    "payment_transaction_id_conflict",
                    idempotency_key=record.id,
                    recorded=record.transaction_id,
                    received=transaction_id,
                )
            elif not record.transaction_id:
                record.transaction_id = transaction_id

        if fields.get("checkout_url"):
            record.checkout_url = fields["checkout_url"]

    async def find_by_key(self, idempotency_key: str) -> Optional[PaymentRequest]:
        """
        Get a record by idempotency key.

        Raises:
            PersistenceError: On store failure or timeout
        """

        async def _find() -> Optional[PaymentRequest]:
            async with self.database.session() as db:
                return await db.get(PaymentRequest, idempotency_key)

        return await self._bounded("find_by_key", _find())

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[PaymentRequest]:
        """
        Get a record by gateway transaction id.

        Raises:
            PersistenceError: On store failure or timeout
        """

        async def _find() -> Optional[PaymentRequest]:
            async with self.database.session() as db:
                stmt = select(PaymentRequest).where(
                    PaymentRequest.transaction_id == transaction_id
                )
                result = await db.execute(stmt)
                return result.scalar_one_or_none()

        return await self._bounded("find_by_transaction_id", _find())
