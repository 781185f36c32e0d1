"""
Service wiring for the HTTP layer.

Every long-lived service is built once from Settings in the application
lifespan and handed to route handlers through FastAPI dependencies.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx
import structlog
from fastapi import Request

from votepay.config import Settings
from votepay.core.admission import AdmissionControl
from votepay.core.cache import CacheTTL, ResponseCache
from votepay.core.orchestrator import PaymentOrchestrator
from votepay.core.payment_store import PaymentRecordStore
from votepay.core.rate_limiter import RateLimiter
from votepay.core.reconciliation import PaymentReconciler
from votepay.core.vote_ledger import CandidateTally, VoteLedger
from votepay.database.connection import Database
from votepay.integrations.gateway_client import GatewayClient
from votepay.monitoring.health import HealthCheck
from votepay.workers.vote_credit_worker import VoteCreditWorker

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Process-wide services, constructed at startup and closed on shutdown."""

    settings: Settings
    database: Database
    cache: ResponseCache
    api_limiter: RateLimiter
    vote_limiter: RateLimiter
    api_admission: AdmissionControl
    vote_admission: AdmissionControl
    gateway: GatewayClient
    store: PaymentRecordStore
    ledger: VoteLedger
    vote_worker: VoteCreditWorker
    orchestrator: PaymentOrchestrator
    reconciler: PaymentReconciler
    health: HealthCheck
    list_tallies: Callable[[], Awaitable[List[CandidateTally]]]

    @classmethod
    def build(
        cls,
        settings: Settings,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceContainer":
        """
        Construct every service from settings.

        Args:
            settings: Application settings
            http_transport: Optional transport for the gateway HTTP client
                (tests pass an ``httpx.MockTransport``)
        """
        database = Database(settings)
        cache = ResponseCache(
            default_ttl=CacheTTL.MEDIUM,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
        )

        api_limiter = RateLimiter(
            "api",
            limit=settings.api_rate_limit,
            window_seconds=settings.api_rate_window_seconds,
            burst_limit=settings.api_rate_burst,
            burst_window_extension_seconds=settings.rate_limit_burst_extension_seconds,
        )
        vote_limiter = RateLimiter(
            "vote",
            limit=settings.vote_rate_limit,
            window_seconds=settings.vote_rate_window_seconds,
            burst_limit=settings.vote_rate_burst,
            burst_window_extension_seconds=settings.rate_limit_burst_extension_seconds,
        )

        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.gateway_timeout_seconds),
            transport=http_transport,
        )
        gateway = GatewayClient(settings, http_client=http_client)

        store = PaymentRecordStore(database, timeout_seconds=settings.store_timeout_seconds)
        ledger = VoteLedger(database, timeout_seconds=settings.store_timeout_seconds)
        vote_worker = VoteCreditWorker(
            ledger,
            concurrency=settings.vote_credit_workers,
            max_queue_size=settings.vote_credit_queue_size,
            max_attempts=settings.vote_credit_max_attempts,
        )
        orchestrator = PaymentOrchestrator(
            gateway=gateway,
            store=store,
            vote_worker=vote_worker,
            price_per_vote=settings.price_per_vote,
            minimum_amount=settings.minimum_amount,
            channel_codes=settings.get_channel_codes_list(),
            debug=settings.debug,
        )

        return cls(
            settings=settings,
            database=database,
            cache=cache,
            api_limiter=api_limiter,
            vote_limiter=vote_limiter,
            api_admission=AdmissionControl(
                api_limiter, cache, cache_ttl_seconds=settings.rate_limit_cache_ttl_seconds
            ),
            vote_admission=AdmissionControl(
                vote_limiter, cache, cache_ttl_seconds=settings.rate_limit_cache_ttl_seconds
            ),
            gateway=gateway,
            store=store,
            ledger=ledger,
            vote_worker=vote_worker,
            orchestrator=orchestrator,
            reconciler=PaymentReconciler(store),
            health=HealthCheck(database, vote_worker, gateway.circuit_breaker),
            list_tallies=cache.memoize(ttl=settings.candidates_cache_ttl_seconds)(
                ledger.list_tallies
            ),
        )

    async def start(self) -> None:
        """Create tables and launch background tasks."""
        await self.database.create_all()
        self.cache.start()
        self.api_limiter.start()
        self.vote_limiter.start()
        self.vote_worker.start()
        logger.info("services_started")

    async def stop(self) -> None:
        """Finish in-flight payments, drain vote credits, then close connections."""
        await self.orchestrator.drain(timeout=self.settings.shutdown_drain_timeout_seconds)
        await self.vote_worker.stop(drain_timeout=self.settings.shutdown_drain_timeout_seconds)
        await self.api_limiter.stop()
        await self.vote_limiter.stop()
        await self.cache.stop()
        await self.gateway.close()
        await self.database.close()
        logger.info("services_stopped")


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services


def client_key(request: Request) -> str:
    """Identify the caller for rate limiting."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def callback_url_for(request: Request, settings: Settings) -> str:
    """
    URL the gateway should post status updates to.

    The configured ``gateway_callback_url`` wins; otherwise it is built from
    the forwarded scheme and host the caller reached us on.
    """
    if settings.gateway_callback_url:
        return settings.gateway_callback_url
    scheme = request.headers.get("x-forwarded-proto", "").split(",")[0].strip()
    host = request.headers.get("x-forwarded-host", "").split(",")[0].strip()
    scheme = scheme or request.url.scheme
    host = host or request.headers.get("host") or request.url.netloc
    path = request.app.url_path_for("payment_callback")
    return f"{scheme}://{host}{path}"
