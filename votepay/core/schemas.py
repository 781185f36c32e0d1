"""
Payment input and result models.

Inputs are validated once at the boundary; failures become a structured
field -> messages mapping instead of propagating as exceptions.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import pydantic
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    StrictInt,
    StrictStr,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import VotePayError
from .types import ChannelCode, PaymentMethod

KNOWN_CHANNEL_CODES = [code.value for code in ChannelCode]


class _InputModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class _ContributionFields(_InputModel):
    candidate_id: Union[StrictInt, StrictStr]
    phone_number: str = Field(..., min_length=1)
    channel_code: int
    auth_code: str = Field(..., min_length=1)
    first_name: Optional[str] = Field(default=None, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    show_names: bool = False
    show_number: bool = True
    payment_method: Optional[PaymentMethod] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)

    @field_validator("candidate_id")
    @classmethod
    def validate_candidate_id(cls, v: Union[int, str]) -> str:
        """Accept a non-empty string or a positive integer."""
        if isinstance(v, int):
            if v <= 0:
                raise ValueError("Candidate id must be a positive integer")
            return str(v)
        if not v:
            raise ValueError("Candidate id is required")
        return v

    @field_validator("channel_code")
    @classmethod
    def validate_channel_code(cls, v: int, info: ValidationInfo) -> int:
        """Restrict to known codes, narrowed by the configured allow-list."""
        allowed = (info.context or {}).get("channel_codes") or KNOWN_CHANNEL_CODES
        allowed = [code for code in allowed if code in KNOWN_CHANNEL_CODES]
        if v not in allowed:
            raise ValueError(
                "Channel code must be one of: " + ", ".join(str(code) for code in allowed)
            )
        return v

    @field_validator("idempotency_key")
    @classmethod
    def blank_key_is_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class PaymentInput(_ContributionFields):
    """Raw payment request as accepted by the orchestrator."""

    amount: Decimal = Field(..., gt=0)

    @field_validator("amount")
    @classmethod
    def validate_minimum_amount(cls, v: Decimal, info: ValidationInfo) -> Decimal:
        minimum = (info.context or {}).get("minimum_amount")
        if minimum is not None and v < Decimal(minimum):
            raise ValueError(f"Amount must be at least {minimum}")
        return v


class VoteInput(_ContributionFields):
    """Vote purchase expressed as a vote count instead of an amount."""

    votes: PositiveInt

    def to_payment_data(self, price_per_vote: Decimal) -> Dict[str, Any]:
        """Convert to a PaymentInput-compatible mapping priced per vote."""
        data = self.model_dump(exclude={"votes"}, exclude_none=True)
        data["amount"] = Decimal(self.votes) * Decimal(price_per_vote)
        return data


def format_validation_errors(
    error: pydantic.ValidationError, model: type[BaseModel]
) -> Dict[str, List[str]]:
    """Flatten pydantic errors into ``{field: [messages]}`` keyed by camelCase name."""
    aliases = {name: field.alias or name for name, field in model.model_fields.items()}
    errors: Dict[str, List[str]] = {}
    for item in error.errors():
        loc = item.get("loc") or ("__root__",)
        field = str(loc[0])
        field = aliases.get(field, field)
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, []).append(message)
    return errors


class PaymentResultData(BaseModel):
    """Gateway references returned on success."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transaction_id: Optional[str] = None
    checkout_url: Optional[str] = None


class PaymentResult(BaseModel):
    """
    Outcome of a payment request.

    ``error_code``, ``http_status``, ``retry_after`` and ``replayed`` drive the
    HTTP layer and metrics and are not part of the serialised body.
    """

    status: bool
    message: str
    data: Optional[PaymentResultData] = None
    errors: Optional[Dict[str, List[str]]] = None
    idempotency_key: Optional[str] = Field(default=None, serialization_alias="idempotencyKey")
    error_code: Optional[str] = Field(default=None, exclude=True)
    http_status: int = Field(default=200, exclude=True)
    retry_after: Optional[int] = Field(default=None, exclude=True)
    replayed: bool = Field(default=False, exclude=True)

    @classmethod
    def success(
        cls,
        message: str,
        idempotency_key: str,
        transaction_id: Optional[str],
        checkout_url: Optional[str],
        replayed: bool = False,
    ) -> "PaymentResult":
        return cls(
            status=True,
            message=message,
            data=PaymentResultData(transaction_id=transaction_id, checkout_url=checkout_url),
            idempotency_key=idempotency_key,
            replayed=replayed,
        )

    @classmethod
    def failure(
        cls, error: VotePayError, idempotency_key: Optional[str] = None
    ) -> "PaymentResult":
        errors = getattr(error, "errors", None) or None
        return cls(
            status=False,
            message=error.user_message,
            errors=errors,
            idempotency_key=idempotency_key,
            error_code=error.error_code,
            http_status=error.http_status,
            retry_after=getattr(error, "retry_after", None),
        )

    def to_response(self) -> Dict[str, Any]:
        """Serialise to the public response body."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
