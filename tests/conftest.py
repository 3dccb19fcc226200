"""
Test configuration and fixtures for EduFund backend tests.
"""
import pytest
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from httpx import AsyncClient, ASGITransport

from edufund.core.database import Base, build_engine, build_session_factory, create_tables, get_db
from edufund.core.locks import LocalLockManager
from edufund.modules.agreements.services import LifecycleService
from edufund.modules.loan_requests.schemas import LoanRequestCreate
from edufund.modules.loan_requests.services import LoanRequestService
from edufund.modules.offers.schemas import OfferCreate
from edufund.modules.offers.services import OfferService
from fakes import (
    COMPANY, PAST_INSTALLMENTS, SCHOOL, FakeLedgerGateway, FakePublisher, offer_payload, request_payload
)
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# File-backed SQLite so every session gets its own connection
@pytest.fixture
async def test_engine(tmp_path):
    """Create a fresh test database per test"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'edufund.db'}")
    await create_tables(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return build_session_factory(test_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================
# Capability Fixtures
# ============================================================

@pytest.fixture
def gateway() -> FakeLedgerGateway:
    return FakeLedgerGateway()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def locks() -> LocalLockManager:
    return LocalLockManager(default_timeout=2)


@pytest.fixture
def lifecycle(db_session, gateway, publisher, locks) -> LifecycleService:
    return LifecycleService(db_session, gateway, locks, publisher)


@pytest.fixture
async def client(db_session, gateway, publisher, locks) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and capability overrides"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.ledger_gateway = gateway
    app.state.metadata_publisher = publisher
    app.state.lock_manager = locks

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# Marketplace Fixtures
# ============================================================

@pytest.fixture
def make_request(db_session, locks):
    async def factory(**overrides):
        data = LoanRequestCreate.model_validate(request_payload(**overrides))
        return await LoanRequestService(db_session, locks).create_request(data)
    return factory


@pytest.fixture
def make_offer(db_session, locks):
    async def factory(request_id: int, rate: str = "0.02", company: str = COMPANY):
        data = OfferCreate.model_validate(offer_payload(rate, company))
        return await OfferService(db_session, locks).create_offer(request_id, data)
    return factory


@pytest.fixture
def accepted_agreement(make_request, make_offer, lifecycle):
    """AWAITING_FUNDING agreement for a 4,000,000 request at 2%"""
    async def factory(**overrides):
        request = await make_request(**overrides)
        offer = await make_offer(request.id)
        agreement, _ = await lifecycle.accept_offer(request.id, offer.id)
        return agreement
    return factory


@pytest.fixture
def funded_agreement(accepted_agreement, lifecycle):
    async def factory(**overrides):
        agreement = await accepted_agreement(**overrides)
        await lifecycle.record_asset_minted(agreement.id, "NFT0001")
        await lifecycle.record_transfer_offer(agreement.id, "OFFER0001")
        return await lifecycle.record_funded(agreement.id, "NFT0001")
    return factory


@pytest.fixture
def locked_agreement(funded_agreement, lifecycle, gateway):
    """FUNDED agreement whose installments are escrowed and mature at ``finish_after``"""
    async def factory(finish_after: int = 100, **overrides):
        overrides.setdefault("installments", PAST_INSTALLMENTS)
        agreement = await funded_agreement(**overrides)
        for item in agreement.installments:
            index = f"ESCROW{item.position}"
            sequence = 10 + item.position
            gateway.add_escrow(index, sequence, COMPANY, SCHOOL, item.amount, finish_after)
            await lifecycle.record_installment_lock(agreement.id, item.position, index, sequence)
        return await lifecycle.get_agreement(agreement.id)
    return factory

