from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from edufund.core.database import get_db
from edufund.core.locks import LockManager
from edufund.modules.agreements.services import LifecycleService
from edufund.modules.ledger.gateway import LedgerGateway
from edufund.modules.loan_requests.services import LoanRequestService
from edufund.modules.metadata.publisher import MetadataPublisher
from edufund.modules.offers.services import OfferService


# Process-wide capabilities are built once in the app lifespan
def get_ledger_gateway(request: Request) -> LedgerGateway:
    return request.app.state.ledger_gateway


def get_metadata_publisher(request: Request) -> MetadataPublisher:
    return request.app.state.metadata_publisher


def get_lock_manager(request: Request) -> LockManager:
    return request.app.state.lock_manager


def get_loan_request_service(
    db: AsyncSession = Depends(get_db),
    locks: LockManager = Depends(get_lock_manager),
) -> LoanRequestService:
    return LoanRequestService(db, locks)


def get_offer_service(
    db: AsyncSession = Depends(get_db),
    locks: LockManager = Depends(get_lock_manager),
) -> OfferService:
    return OfferService(db, locks)


def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    gateway: LedgerGateway = Depends(get_ledger_gateway),
    publisher: MetadataPublisher = Depends(get_metadata_publisher),
    locks: LockManager = Depends(get_lock_manager),
) -> LifecycleService:
    return LifecycleService(db, gateway, locks, publisher)
