"""
Pydantic schemas for API response models.

Payment request bodies are validated by the orchestrator itself, so only
responses are declared here.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentResultDataResponse(BaseModel):
    """Gateway references on a successful payment."""

    transactionId: Optional[str] = Field(default=None, description="Gateway transaction ID")
    checkoutUrl: Optional[str] = Field(default=None, description="Checkout URL for card payments")


class PaymentResponse(BaseModel):
    """Response schema for contribute, vote and direct payment endpoints."""

    status: bool = Field(..., description="Whether the payment was initiated")
    message: str = Field(..., description="Caller-facing message")
    data: Optional[PaymentResultDataResponse] = Field(default=None, description="Gateway references")
    errors: Optional[Dict[str, List[str]]] = Field(
        default=None, description="Field-level validation errors"
    )
    idempotencyKey: Optional[str] = Field(
        default=None, description="Key to reuse when retrying this payment"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": True,
                    "message": "Payment initiated successfully",
                    "data": {"transactionId": "TXN123", "checkoutUrl": None},
                    "idempotencyKey": "2f1c7a0e-4b8e-4a55-9f57-3f6a1cf0f0d2",
                },
                {
                    "status": False,
                    "message": "Validation error",
                    "errors": {"phoneNumber": ["Invalid phone number format; expected 2547XXXXXXXX"]},
                },
            ]
        }
    }


class CandidateResponse(BaseModel):
    """Candidate with current tally."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Candidate ID")
    name: str = Field(..., description="Candidate name")
    category: str = Field(..., description="Award category")
    votes: int = Field(..., description="Votes credited so far")


class CandidateListResponse(BaseModel):
    """Response schema for the candidate tally listing."""

    candidates: List[CandidateResponse] = Field(..., description="Candidates ordered by votes")
    total_votes: int = Field(..., description="Sum of all candidate votes")


class CallbackResponse(BaseModel):
    """Response schema for gateway callbacks."""

    status: bool = Field(..., description="Whether a payment record was matched")
    message: str = Field(..., description="Processing message")
    idempotencyKey: Optional[str] = Field(default=None, description="Matched payment key")
    paymentStatus: Optional[str] = Field(default=None, description="Resulting payment status")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
    uptime_seconds: Optional[float] = Field(default=None, description="Process uptime")
