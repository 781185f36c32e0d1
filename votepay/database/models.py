"""SQLAlchemy database models for payment orchestration."""
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PaymentRequest(Base):
    """
    Payment requests table.

    One row per idempotency key. Rows are created by the orchestrator,
    updated by the orchestrator and the gateway callback reconciler, and
    never deleted.
    """

    __tablename__ = "payment_requests"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    candidate_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channel_code: Mapped[int] = mapped_column(Integer, nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    second_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    show_names: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_number: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="valid_status",
        ),
        Index("idx_payment_requests_candidate_status", "candidate_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of PaymentRequest."""
        return (
            f"<PaymentRequest(id={self.id}, candidate_id={self.candidate_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Candidate(Base):
    """
    Candidates table.

    The vote counter only ever grows, through atomic increments.
    """

    __tablename__ = "candidates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    votes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (CheckConstraint("votes >= 0", name="non_negative_votes"),)

    def __repr__(self) -> str:
        """String representation of Candidate."""
        return f"<Candidate(id={self.id}, name={self.name}, votes={self.votes})>"


class VoteCredit(Base):
    """
    Applied vote credits, one per payment idempotency key.

    Makes redelivered credits a no-op.
    """

    __tablename__ = "vote_credits"

    payment_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    candidate_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    votes: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (CheckConstraint("votes > 0", name="positive_votes"),)

    def __repr__(self) -> str:
        """String representation of VoteCredit."""
        return (
            f"<VoteCredit(payment_key={self.payment_key}, "
            f"candidate_id={self.candidate_id}, votes={self.votes})>"
        )
