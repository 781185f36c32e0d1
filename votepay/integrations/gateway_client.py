"""
Payment gateway client.

Implements:
- Idempotent contribution requests (Idempotency-Key header)
- Bounded request timeout, no automatic retries
- Business vs transport error classification
- Circuit breaker pattern for transport failures
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

from votepay.config import Settings
from votepay.core.phone import mask_phone
from votepay.core.types import PaymentMethod
from votepay.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "The payment request timed out. Please try again."
CONNECT_MESSAGE = "Failed to connect to payment server"
INVALID_RESPONSE_MESSAGE = "Invalid response from payment server"
CIRCUIT_OPEN_MESSAGE = "Payment server is temporarily unavailable. Please try again shortly."


class GatewayErrorType(Enum):
    """Classification of gateway errors."""

    BUSINESS = "business"  # Gateway declined; terminal
    TRANSPORT = "transport"  # Timeout, connection or malformed response; indeterminate


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
        timed_out: bool = False,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Caller-safe error message
            error_type: Classification of error
            status_code: HTTP status returned by the gateway, if any
            timed_out: Whether the request exceeded its timeout
            original_error: Underlying exception
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.timed_out = timed_out
        self.original_error = original_error


@dataclass(frozen=True)
class ContributionRequest:
    """Normalised contribution sent to the gateway."""

    amount: Decimal
    candidate_id: str
    phone_number: str
    channel_code: int
    auth_code: str
    payment_method: Optional[PaymentMethod] = None
    show_names: bool = False
    show_number: bool = True
    first_name: Optional[str] = None
    second_name: Optional[str] = None
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class GatewayResponse:
    """Successful gateway acknowledgement."""

    message: str
    transaction_id: Optional[str] = None
    checkout_url: Optional[str] = None


class CircuitBreaker:
    """
    Circuit breaker for gateway calls.

    Opens after consecutive transport failures and fails fast until the
    cool-down elapses, then lets probe calls through.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 1,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def allow_request(self) -> bool:
        """Check whether a call may proceed."""
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
            else:
                return False
        return True

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.info("circuit_breaker_state_changed", previous=self.state, state=state)
        self.state = state
        metrics.set_circuit_breaker_state(state)


class GatewayClient:
    """
    Client for the external payment gateway.

    Each contribution is a single POST carrying the idempotency key. Failures
    are never retried here; a client retry with the same key is the recovery
    path.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize gateway client.

        Args:
            settings: Application settings
            http_client: Optional pre-configured httpx client
            circuit_breaker: Optional circuit breaker
        """
        self.settings = settings
        self.url = settings.gateway_contribute_url
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.gateway_timeout_seconds)
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout_seconds,
        )

        logger.info(
            "gateway_client_initialized",
            url=self.url,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    @staticmethod
    def build_payload(request: ContributionRequest) -> Dict[str, Any]:
        """Build the JSON body for a contribution."""
        amount = request.amount
        payload: Dict[str, Any] = {
            "amount": int(amount) if amount == amount.to_integral_value() else float(amount),
            "kitty_id": request.candidate_id,
            "phone_number": request.phone_number,
            "channel_code": request.channel_code,
            "auth_code": request.auth_code,
            "show_number": request.show_number,
        }
        if request.payment_method is not None:
            payload["payment_method"] = request.payment_method.value
        if request.show_names:
            payload["show_names"] = True
            payload["first_name"] = request.first_name or "Customer"
            payload["second_name"] = request.second_name or "Name"
        if request.callback_url:
            payload["callback_url"] = request.callback_url
        return payload

    def _headers(self, request: ContributionRequest, idempotency_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.gateway_user_agent,
            "Authorization": f"Bearer {request.auth_code}",
            "Idempotency-Key": idempotency_key,
        }

    async def contribute(
        self, request: ContributionRequest, idempotency_key: str
    ) -> GatewayResponse:
        """
        Submit a contribution to the gateway.

        Args:
            request: Normalised contribution
            idempotency_key: Key the gateway uses to deduplicate retries

        Returns:
            GatewayResponse: Acknowledgement with optional transaction id and checkout URL

        Raises:
            GatewayError: BUSINESS when the gateway declines, TRANSPORT otherwise
        """
        channel = str(request.channel_code)

        if not self.circuit_breaker.allow_request():
            logger.warning("gateway_circuit_open", idempotency_key=idempotency_key)
            metrics.record_gateway_call(channel, "unreachable", 0.0)
            raise GatewayError(CIRCUIT_OPEN_MESSAGE, GatewayErrorType.TRANSPORT)

        payload = self.build_payload(request)
        logger.info(
            "gateway_call_started",
            idempotency_key=idempotency_key,
            channel_code=request.channel_code,
            amount=payload["amount"],
            phone_number=mask_phone(request.phone_number),
        )

        start_time = time.monotonic()
        try:
            response = await self.http_client.post(
                self.url,
                json=payload,
                headers=self._headers(request, idempotency_key),
                timeout=self.settings.gateway_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            self._transport_failure(channel, start_time, idempotency_key, "timeout", e)
            raise GatewayError(
                TIMEOUT_MESSAGE, GatewayErrorType.TRANSPORT, timed_out=True, original_error=e
            ) from e
        except httpx.TransportError as e:
            self._transport_failure(channel, start_time, idempotency_key, "connection", e)
            raise GatewayError(CONNECT_MESSAGE, GatewayErrorType.TRANSPORT, original_error=e) from e

        try:
            body = response.json()
        except ValueError as e:
            self._transport_failure(channel, start_time, idempotency_key, "invalid_body", e)
            raise GatewayError(
                INVALID_RESPONSE_MESSAGE,
                GatewayErrorType.TRANSPORT,
                status_code=response.status_code,
                original_error=e,
            ) from e

        if not isinstance(body, dict):
            self._transport_failure(channel, start_time, idempotency_key, "invalid_body", None)
            raise GatewayError(
                INVALID_RESPONSE_MESSAGE,
                GatewayErrorType.TRANSPORT,
                status_code=response.status_code,
            )

        message = body.get("message")
        data = body.get("data")
        if not isinstance(message, (str, type(None))) or not isinstance(data, (dict, type(None))):
            self._transport_failure(channel, start_time, idempotency_key, "invalid_body", None)
            raise GatewayError(
                INVALID_RESPONSE_MESSAGE,
                GatewayErrorType.TRANSPORT,
                status_code=response.status_code,
            )

        # The gateway answered coherently; it is reachable.
        self.circuit_breaker.on_success()
        duration = time.monotonic() - start_time
        message = message or ""

        if response.is_error or not body.get("status"):
            metrics.record_gateway_call(channel, "declined", duration)
            logger.warning(
                "gateway_payment_declined",
                idempotency_key=idempotency_key,
                status_code=response.status_code,
                gateway_message=message,
                duration_seconds=duration,
            )
            raise GatewayError(
                message or "Payment failed",
                GatewayErrorType.BUSINESS,
                status_code=response.status_code,
            )

        data = data or {}
        result = GatewayResponse(
            message=message or "Payment initiated successfully",
            transaction_id=_optional_str(data.get("transaction_id")),
            checkout_url=_optional_str(data.get("checkout_url")),
        )

        metrics.record_gateway_call(channel, "success", duration)
        logger.info(
            "gateway_call_succeeded",
            idempotency_key=idempotency_key,
            transaction_id=result.transaction_id,
            duration_seconds=duration,
        )
        return result

    def _transport_failure(
        self,
        channel: str,
        start_time: float,
        idempotency_key: str,
        reason: str,
        error: Optional[Exception],
    ) -> None:
        duration = time.monotonic() - start_time
        self.circuit_breaker.on_failure()
        metrics.record_gateway_call(channel, "unreachable", duration)
        logger.error(
            "gateway_transport_failed",
            idempotency_key=idempotency_key,
            reason=reason,
            error=str(error) if error else None,
            duration_seconds=duration,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.http_client.aclose()


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
