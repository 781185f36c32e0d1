"""
Pytest configuration and fixtures.
"""
import json
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, List

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from votepay.api.main import create_app
from votepay.config import Settings
from votepay.core.orchestrator import PaymentOrchestrator
from votepay.core.payment_store import PaymentRecordStore
from votepay.core.vote_ledger import VoteLedger
from votepay.database.connection import Database
from votepay.database.models import Candidate
from votepay.integrations.gateway_client import GatewayClient
from votepay.workers.vote_credit_worker import VoteCreditWorker

CANDIDATE_ID = "1"


def gateway_success(transaction_id: str = "TXN-1", checkout_url: Any = None) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "status": True,
            "message": "Payment initiated successfully",
            "data": {"transaction_id": transaction_id, "checkout_url": checkout_url},
        },
    )


class GatewayStub:
    """Records outbound gateway requests and answers with a configurable responder."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = (
            lambda request: gateway_success(f"TXN-{len(self.requests)}")
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


async def seed_candidate(
    database: Database,
    candidate_id: str = CANDIDATE_ID,
    name: str = "Amina Otieno",
    category: str = "Best Artist",
    votes: int = 0,
) -> None:
    async with database.session() as db:
        db.add(Candidate(id=candidate_id, name=name, category=category, votes=votes))
        await db.commit()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a per-test SQLite file."""
    return Settings(
        _env_file=None,
        gateway_base_url="https://gateway.test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'votepay.db'}",
        app_name="votepay-test",
        app_env="test",
        log_level="DEBUG",
        debug=False,
        vote_credit_workers=1,
        candidates_cache_ttl_seconds=0,
        allowed_origins="http://test",
    )


@pytest.fixture
def sample_payment_data() -> Dict[str, Any]:
    """Sample contribution request as the browser sends it."""
    return {
        "amount": 100,
        "candidateId": 1,
        "phoneNumber": "0712345678",
        "channelCode": 63902,
        "authCode": "client-auth-code",
    }


@pytest.fixture
def gateway_stub() -> GatewayStub:
    return GatewayStub()


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """Database with tables and one seeded candidate."""
    db = Database(test_settings)
    await db.create_all()
    await seed_candidate(db)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def gateway_client(
    test_settings: Settings, gateway_stub: GatewayStub
) -> AsyncGenerator[GatewayClient, Any]:
    client = GatewayClient(
        test_settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(gateway_stub)),
    )
    yield client
    await client.close()


@pytest.fixture
def store(database: Database) -> PaymentRecordStore:
    return PaymentRecordStore(database, timeout_seconds=5.0)


@pytest.fixture
def ledger(database: Database) -> VoteLedger:
    return VoteLedger(database, timeout_seconds=5.0)


@pytest_asyncio.fixture
async def vote_worker(ledger: VoteLedger) -> AsyncGenerator[VoteCreditWorker, Any]:
    worker = VoteCreditWorker(ledger, concurrency=1, retry_base_delay=0.01)
    worker.start()
    yield worker
    await worker.stop(drain_timeout=1.0)


@pytest.fixture
def orchestrator(
    gateway_client: GatewayClient,
    store: PaymentRecordStore,
    vote_worker: VoteCreditWorker,
) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        gateway=gateway_client,
        store=store,
        vote_worker=vote_worker,
    )


@pytest.fixture
def app(test_settings: Settings, gateway_stub: GatewayStub) -> FastAPI:
    return create_app(test_settings, http_transport=httpx.MockTransport(gateway_stub))


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client running the application lifespan."""
    async with app.router.lifespan_context(app):
        await seed_candidate(app.state.services.database)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
