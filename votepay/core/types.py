"""Payment channel, method and status enumerations."""
from enum import Enum, IntEnum
from typing import Dict, Optional


class ChannelCode(IntEnum):
    """Gateway-defined payment rail identifiers."""

    MPESA = 63902
    AIRTEL = 63903
    CARD = 55


class PaymentMethod(str, Enum):
    """Named payment methods, one per channel."""

    MPESA = "mpesa"
    AIRTEL = "airtel"
    CARD = "card"


CHANNEL_PAYMENT_METHODS: Dict[ChannelCode, PaymentMethod] = {
    ChannelCode.MPESA: PaymentMethod.MPESA,
    ChannelCode.AIRTEL: PaymentMethod.AIRTEL,
    ChannelCode.CARD: PaymentMethod.CARD,
}


class PaymentStatus(str, Enum):
    """Lifecycle of a PaymentRequest record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


_STATUS_RANK = {
    PaymentStatus.PENDING: 0,
    PaymentStatus.PROCESSING: 1,
    PaymentStatus.COMPLETED: 2,
    PaymentStatus.FAILED: 2,
}


def can_transition(
    current: PaymentStatus, new: PaymentStatus, new_attempt: bool = False
) -> bool:
    """
    Check whether a status change is allowed.

    Transitions only move forward: pending -> processing -> completed|failed.
    Re-applying the current status is allowed. A new gateway attempt under the
    same idempotency key may supersede a failed attempt.
    """
    if current == new:
        return True
    if current == PaymentStatus.FAILED and new_attempt:
        return new in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED)
    if current.is_terminal:
        return False
    return _STATUS_RANK[new] > _STATUS_RANK[current]


def resolve_payment_method(
    channel_code: int, explicit: Optional[PaymentMethod] = None
) -> PaymentMethod:
    """
    Derive the payment method from a channel code unless one was supplied.

    Raises:
        ValueError: If the channel code is unknown and no method was supplied
    """
    if explicit is not None:
        return explicit
    try:
        return CHANNEL_PAYMENT_METHODS[ChannelCode(channel_code)]
    except ValueError:
        raise ValueError(f"Unknown channel code {channel_code}") from None
