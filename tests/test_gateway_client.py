"""
Unit tests for the gateway client.
"""
from decimal import Decimal

import httpx
import pytest

from votepay.core.types import PaymentMethod
from votepay.integrations.gateway_client import (
    CIRCUIT_OPEN_MESSAGE,
    CONNECT_MESSAGE,
    INVALID_RESPONSE_MESSAGE,
    TIMEOUT_MESSAGE,
    CircuitBreaker,
    ContributionRequest,
    GatewayClient,
    GatewayError,
    GatewayErrorType,
)

from .conftest import GatewayStub, gateway_success


def make_request(**overrides) -> ContributionRequest:
    fields = dict(
        amount=Decimal("100"),
        candidate_id="1",
        phone_number="254712345678",
        channel_code=63902,
        auth_code="client-auth-code",
        payment_method=PaymentMethod.MPESA,
    )
    fields.update(overrides)
    return ContributionRequest(**fields)


class TestBuildPayload:
    @pytest.mark.unit
    def test_names_omitted_unless_shown(self) -> None:
        payload = GatewayClient.build_payload(make_request(first_name="Jane"))

        assert payload == {
            "amount": 100,
            "kitty_id": "1",
            "phone_number": "254712345678",
            "channel_code": 63902,
            "auth_code": "client-auth-code",
            "show_number": True,
            "payment_method": "mpesa",
        }

    @pytest.mark.unit
    def test_names_default_when_shown(self) -> None:
        payload = GatewayClient.build_payload(make_request(show_names=True, first_name="Jane"))

        assert payload["show_names"] is True
        assert payload["first_name"] == "Jane"
        assert payload["second_name"] == "Name"

    @pytest.mark.unit
    def test_fractional_amount_kept(self) -> None:
        payload = GatewayClient.build_payload(make_request(amount=Decimal("99.50")))
        assert payload["amount"] == 99.5

    @pytest.mark.unit
    def test_callback_url_included_when_known(self) -> None:
        payload = GatewayClient.build_payload(
            make_request(callback_url="https://votes.test/api/contribute/callback")
        )

        assert payload["callback_url"] == "https://votes.test/api/contribute/callback"


class TestGatewayClient:
    """Test suite for GatewayClient.contribute."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, gateway_client: GatewayClient, gateway_stub: GatewayStub) -> None:
        gateway_stub.responder = lambda request: gateway_success(
            "TXN-42", "https://pay.test/checkout/42"
        )

        response = await gateway_client.contribute(make_request(), "key-1")

        assert response.transaction_id == "TXN-42"
        assert response.checkout_url == "https://pay.test/checkout/42"
        assert response.message == "Payment initiated successfully"

        sent = gateway_stub.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://gateway.test/kitty/api/contribute/"
        assert sent.headers["Idempotency-Key"] == "key-1"
        assert sent.headers["Authorization"] == "Bearer client-auth-code"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_false_is_business_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        gateway_stub.responder = lambda request: httpx.Response(
            200, json={"status": False, "message": "Insufficient funds"}
        )

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        assert exc_info.value.error_type == GatewayErrorType.BUSINESS
        assert exc_info.value.message == "Insufficient funds"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_status_with_json_body_is_business_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        gateway_stub.responder = lambda request: httpx.Response(400, json={"status": False})

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        assert exc_info.value.error_type == GatewayErrorType.BUSINESS
        assert exc_info.value.message == "Payment failed"
        assert exc_info.value.status_code == 400

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_is_transport_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway_stub.responder = timeout

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        error = exc_info.value
        assert error.error_type == GatewayErrorType.TRANSPORT
        assert error.timed_out
        assert error.message == TIMEOUT_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connection_error_is_transport_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway_stub.responder = refused

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        assert exc_info.value.error_type == GatewayErrorType.TRANSPORT
        assert exc_info.value.message == CONNECT_MESSAGE
        assert not exc_info.value.timed_out

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_body_is_transport_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        gateway_stub.responder = lambda request: httpx.Response(502, text="<html>Bad gateway</html>")

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        assert exc_info.value.error_type == GatewayErrorType.TRANSPORT
        assert exc_info.value.message == INVALID_RESPONSE_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"status": True, "message": 42, "data": {"transaction_id": "TXN-9"}},
            {"status": True, "message": "ok", "data": ["TXN-9"]},
            {"status": True, "message": {"text": "ok"}},
        ],
    )
    async def test_mistyped_fields_are_transport_failure(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub, body: dict
    ) -> None:
        gateway_stub.responder = lambda request: httpx.Response(200, json=body)

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-1")

        assert exc_info.value.error_type == GatewayErrorType.TRANSPORT
        assert exc_info.value.message == INVALID_RESPONSE_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_automatic_retry(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway_stub.responder = refused

        with pytest.raises(GatewayError):
            await gateway_client.contribute(make_request(), "key-1")

        assert gateway_stub.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(
        self, gateway_client: GatewayClient, gateway_stub: GatewayStub
    ) -> None:
        gateway_client.circuit_breaker = CircuitBreaker(failure_threshold=1, timeout=60)
        gateway_stub.responder = lambda request: httpx.Response(500, text="oops")

        with pytest.raises(GatewayError):
            await gateway_client.contribute(make_request(), "key-1")
        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.contribute(make_request(), "key-2")

        assert exc_info.value.message == CIRCUIT_OPEN_MESSAGE
        assert exc_info.value.error_type == GatewayErrorType.TRANSPORT
        assert gateway_stub.calls == 1


class TestCircuitBreaker:
    @pytest.mark.unit
    def test_half_open_after_timeout(self) -> None:
        breaker = CircuitBreaker(failure_threshold=2, timeout=0.5)
        breaker.on_failure()
        breaker.on_failure()
        assert not breaker.allow_request()
        breaker.last_failure_time -= 1
        assert breaker.state == "open"

        assert breaker.allow_request()
        assert breaker.state == "half_open"

        breaker.on_success()
        assert breaker.state == "closed"
