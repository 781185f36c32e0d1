"""
API routes for vote payments.
"""
import math
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from votepay.core.admission import AdmissionControl
from votepay.core.exceptions import PersistenceError, RateLimited, ValidationError
from votepay.core.rate_limiter import RateLimitDecision
from votepay.core.schemas import PaymentResult

from .dependencies import ServiceContainer, callback_url_for, client_key, get_services
from .schemas import (
    CallbackResponse,
    CandidateListResponse,
    CandidateResponse,
    HealthCheckResponse,
    PaymentResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/api", tags=["payments"])
candidate_router = APIRouter(prefix="/api", tags=["candidates"])
monitoring_router = APIRouter(tags=["monitoring"])

INVALID_FORMAT_MESSAGE = "Invalid request format"


def rate_limit_headers(limit: int, decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_time)),
    }


def rate_limited_response(error: RateLimited) -> JSONResponse:
    """429 response carrying the retry hint and quota headers."""
    headers = {
        "Retry-After": str(error.retry_after),
        "X-RateLimit-Limit": str(error.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(math.ceil(error.reset_time)),
    }
    result = PaymentResult.failure(error)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=result.to_response(),
        headers=headers,
    )


def payment_response(
    result: PaymentResult, headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=result.http_status,
        content=result.to_response(),
        headers=headers,
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


async def _handle_payment(
    request: Request,
    services: ServiceContainer,
    admission: AdmissionControl,
    handler: Callable[..., Awaitable[PaymentResult]],
    endpoint: str,
) -> JSONResponse:
    try:
        decision = admission.admit(client_key(request))
    except RateLimited as e:
        return rate_limited_response(e)
    headers = rate_limit_headers(admission.limiter.limit, decision)

    body = await _read_json(request)
    if body is None:
        logger.warning("api_invalid_request_format", endpoint=endpoint)
        error = ValidationError(
            "Request body is not valid JSON",
            errors={"__root__": [INVALID_FORMAT_MESSAGE]},
            user_message=INVALID_FORMAT_MESSAGE,
        )
        return payment_response(PaymentResult.failure(error), headers)

    result = await handler(body, callback_url=callback_url_for(request, services.settings))
    logger.info(
        "api_payment_completed",
        endpoint=endpoint,
        status=result.status,
        error_code=result.error_code,
        http_status=result.http_status,
    )
    return payment_response(result, headers)


@payment_router.post(
    "/contribute",
    response_model=PaymentResponse,
    summary="Contribute to a candidate",
    description="Initiate a payment; votes are credited once the gateway accepts it",
)
async def contribute(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """
    Initiate a contribution.

    Idempotent per ``idempotencyKey``: a retry with the same key never
    charges twice.
    """
    return await _handle_payment(
        request,
        services,
        services.vote_admission,
        services.orchestrator.process_payment,
        "contribute",
    )


@payment_router.post(
    "/vote",
    response_model=PaymentResponse,
    summary="Buy votes",
    description="Initiate a payment for a number of votes at the configured price",
)
async def vote(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Initiate a vote purchase priced at votes x price per vote."""
    return await _handle_payment(
        request,
        services,
        services.vote_admission,
        services.orchestrator.process_vote,
        "vote",
    )


@payment_router.post(
    "/payments/direct",
    response_model=PaymentResponse,
    summary="Direct payment",
    description="Initiate a payment under the general API rate limit",
)
async def direct_payment(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Initiate a payment outside the voting flow."""
    return await _handle_payment(
        request,
        services,
        services.api_admission,
        services.orchestrator.process_payment,
        "payments_direct",
    )


@payment_router.post(
    "/contribute/callback",
    response_model=CallbackResponse,
    summary="Gateway callback",
    description="Reconcile a payment when the gateway confirms or denies it",
)
async def payment_callback(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    """Apply an out-of-band gateway status update."""
    payload = await _read_json(request)
    if not isinstance(payload, dict):
        logger.warning("api_callback_invalid_payload")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": False, "message": "Invalid callback data"},
        )

    try:
        outcome = await services.reconciler.handle_callback(payload)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": False, "message": e.user_message},
        )
    except PersistenceError as e:
        logger.error("api_callback_persistence_error", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": False, "message": "Internal server error"},
        )

    content = CallbackResponse(
        status=outcome.matched,
        message=outcome.message,
        idempotencyKey=outcome.idempotency_key,
        paymentStatus=outcome.status,
    ).model_dump(exclude_none=True)
    return JSONResponse(
        status_code=status.HTTP_200_OK if outcome.matched else status.HTTP_404_NOT_FOUND,
        content=content,
    )


@payment_router.get(
    "/contribute/callback",
    summary="Callback probe",
    description="Confirm the callback endpoint is reachable",
)
async def payment_callback_probe() -> Dict[str, Any]:
    return {"status": True, "message": "Payment callback endpoint"}


@candidate_router.get(
    "/candidates",
    response_model=CandidateListResponse,
    summary="Candidate tallies",
    description="List candidates with their vote counts, highest first",
)
async def list_candidates(
    request: Request,
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """List candidate tallies for the dashboard."""
    try:
        decision = services.api_admission.admit(client_key(request))
    except RateLimited as e:
        return rate_limited_response(e)
    response.headers.update(rate_limit_headers(services.api_limiter.limit, decision))

    try:
        tallies = await services.list_tallies()
    except Exception as e:
        logger.error("api_list_candidates_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load candidates",
        )

    candidates = [CandidateResponse.model_validate(tally) for tally in tallies]
    return {
        "candidates": candidates,
        "total_votes": sum(candidate.votes for candidate in candidates),
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    result = await services.health.check_all()
    if result["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
