"""Database package for VotePay."""
from .connection import Database
from .models import Base, Candidate, PaymentRequest, VoteCredit

__all__ = [
    "Base",
    "Candidate",
    "Database",
    "PaymentRequest",
    "VoteCredit",
]
