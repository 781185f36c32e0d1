"""Core payment orchestration for VotePay."""
from .exceptions import (
    CandidateNotFound,
    GatewayBusinessFailure,
    GatewayUnreachable,
    InternalError,
    PersistenceError,
    PhoneValidationError,
    RateLimited,
    ValidationError,
    VotePayError,
)
from .types import ChannelCode, PaymentMethod, PaymentStatus

__all__ = [
    "CandidateNotFound",
    "ChannelCode",
    "GatewayBusinessFailure",
    "GatewayUnreachable",
    "InternalError",
    "PaymentMethod",
    "PaymentStatus",
    "PersistenceError",
    "PhoneValidationError",
    "RateLimited",
    "ValidationError",
    "VotePayError",
]
