"""
Gateway callback reconciliation.

The gateway confirms or denies payments out-of-band. Callbacks are matched
to PaymentRequest records by transaction id, falling back to the
idempotency key, and applied through the store's monotonic upsert.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from votepay.monitoring.metrics import metrics

from .exceptions import PersistenceError, ValidationError
from .payment_store import PaymentRecordStore
from .types import PaymentStatus

logger = structlog.get_logger(__name__)

COMPLETED_STATUSES = {"completed", "complete", "success", "successful", "succeeded", "paid"}
FAILED_STATUSES = {"failed", "failure", "cancelled", "canceled", "declined", "rejected"}


def map_gateway_status(raw_status: Any) -> PaymentStatus:
    """Map a gateway-reported status to a PaymentStatus."""
    if isinstance(raw_status, bool):
        return PaymentStatus.COMPLETED if raw_status else PaymentStatus.FAILED
    value = str(raw_status or "").strip().lower()
    if value in COMPLETED_STATUSES:
        return PaymentStatus.COMPLETED
    if value in FAILED_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PROCESSING


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of applying a gateway callback."""

    matched: bool
    message: str
    idempotency_key: Optional[str] = None
    status: Optional[str] = None


class PaymentReconciler:
    """Applies gateway callbacks to stored payment records."""

    def __init__(self, store: PaymentRecordStore):
        self.store = store

    async def handle_callback(self, payload: Dict[str, Any]) -> CallbackOutcome:
        """
        Reconcile a callback payload.

        Args:
            payload: Callback body with ``transaction_id`` and optionally
                ``payment_id`` (our idempotency key), ``payment_status`` or
                ``status``, and ``message``

        Returns:
            CallbackOutcome: Whether a record was matched and its resulting status

        Raises:
            ValidationError: If the payload has no transaction id
            PersistenceError: If the store is unavailable
        """
        transaction_id = payload.get("transaction_id") if isinstance(payload, dict) else None
        if not transaction_id:
            metrics.record_callback("invalid")
            raise ValidationError(
                "Callback payload has no transaction_id",
                errors={"transaction_id": ["Field required"]},
                user_message="Invalid callback data",
            )
        transaction_id = str(transaction_id)

        raw_status = payload.get("payment_status")
        if raw_status is None:
            raw_status = payload.get("status")
        status = map_gateway_status(raw_status)
        message = payload.get("message") or "Callback received"

        logger.info(
            "payment_callback_received",
            transaction_id=transaction_id,
            payment_id=payload.get("payment_id"),
            gateway_status=raw_status,
            mapped_status=status.value,
        )

        record = await self.store.find_by_transaction_id(transaction_id)
        if record is None and payload.get("payment_id"):
            record = await self.store.find_by_key(str(payload["payment_id"]))

        if record is None:
            metrics.record_callback("unknown")
            logger.warning("payment_callback_unknown_transaction", transaction_id=transaction_id)
            return CallbackOutcome(matched=False, message="Unknown transaction")

        updated = await self.store.upsert(
            record.id,
            {
                "status": status,
                "response_message": str(message),
                "transaction_id": transaction_id,
            },
        )

        applied = updated.status == status.value
        metrics.record_callback("updated" if applied else "rejected")
        logger.info(
            "payment_callback_processed",
            idempotency_key=updated.id,
            transaction_id=transaction_id,
            status=updated.status,
            applied=applied,
        )
        return CallbackOutcome(
            matched=True,
            message="Callback processed" if applied else "Callback ignored; payment already final",
            idempotency_key=updated.id,
            status=updated.status,
        )


__all__ = ["CallbackOutcome", "PaymentReconciler", "PersistenceError", "map_gateway_status"]
