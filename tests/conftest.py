"""Shared test fixtures: stub portal API, wired components, manual clock."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from claimgate.schemas.schemas import Credentials
from claimgate.services.audit_service import AuditService, InMemoryAuditSink
from claimgate.services.claim_workflow import ClaimWorkflow
from claimgate.services.portal_client import PortalClient
from claimgate.services.session_store import SessionStore
from claimgate.services.token_storage import MemoryTokenStorage
from stub_backend import StubBackend

BASE_URL = "http://portal-api.test"
PASSWORD = "Secret123!"
FARMER_MOBILE = "9876543210"


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend() -> StubBackend:
    stub = StubBackend()
    stub.add_user("F1", "FARMER", mobile=FARMER_MOBILE)
    stub.add_user("A1", "ADMIN")
    stub.add_user("S1", "SUPER_ADMIN")
    stub.add_user("SP1", "SERVICE_PROVIDER")
    stub.add_user("SP2", "SERVICE_PROVIDER", status="pending_approval")
    stub.add_user("I1", "INSURER")
    return stub


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(audit_sink: InMemoryAuditSink) -> AuditService:
    return AuditService(audit_sink, retry_delay=0)


@pytest.fixture
def storage() -> MemoryTokenStorage:
    return MemoryTokenStorage()


@pytest_asyncio.fixture
async def portal_client(backend: StubBackend) -> AsyncGenerator[PortalClient, None]:
    client = PortalClient(BASE_URL, transport=backend.transport())
    yield client
    await client.aclose()


@pytest.fixture
def store(portal_client: PortalClient, storage: MemoryTokenStorage, audit: AuditService) -> SessionStore:
    return SessionStore(portal_client, storage, audit)


@pytest.fixture
def workflow(portal_client: PortalClient, store: SessionStore, audit: AuditService) -> ClaimWorkflow:
    return ClaimWorkflow(portal_client, store, audit)


async def login_as(store: SessionStore, user_id: str):
    """Password login for one of the seeded users."""
    return await store.acquire(Credentials(email=f"{user_id}@example.com", password=PASSWORD))
