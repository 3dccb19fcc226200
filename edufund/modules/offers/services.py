from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
import logging

from edufund.core.exceptions import ValidationFailed, ResourceNotFound
from edufund.core.locks import LockManager, LocalLockManager, request_key
from edufund.modules.loan_requests.models import LoanRequest, LoanRequestStatus
from edufund.modules.offers.models import Offer, OfferStatus
from edufund.modules.offers.schemas import OfferCreate, OfferStatusEnum

logger = logging.getLogger(__name__)

NEGOTIABLE_STATUSES = (LoanRequestStatus.OPEN, LoanRequestStatus.UNDER_NEGOTIATION)


class OfferService:
    """Company offers against open requests"""

    def __init__(self, db: AsyncSession, locks: Optional[LockManager] = None):
        self.db = db
        # Shared with acceptance so offers never change under an accept
        self.locks = locks or LocalLockManager()

    async def get_offer(self, offer_id: int) -> Offer:
        result = await self.db.execute(
            select(Offer).where(Offer.id == offer_id).execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            raise ResourceNotFound(f"Offer {offer_id} not found", reason="offer_not_found")
        return offer

    async def _get_request(self, request_id: int) -> LoanRequest:
        result = await self.db.execute(
            select(LoanRequest).where(LoanRequest.id == request_id).execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFound(f"Loan request {request_id} not found", reason="request_not_found")
        return request

    async def create_offer(self, request_id: int, data: OfferCreate) -> Offer:
        """Create a PENDING offer and move the request into negotiation"""
        async with self.locks.hold(request_key(request_id)):
            request = await self._get_request(request_id)
            if request.status not in NEGOTIABLE_STATUSES:
                raise ValidationFailed(
                    f"Loan request {request_id} is {request.status.value} and not open for offers",
                    reason="request_not_open",
                )

            offer = Offer(
                request_id=request.id,
                company_address=data.company_address,
                interest_rate=data.interest_rate,
                work_obligation_years=data.work_obligation_years,
                terms_uri=data.terms_uri,
                status=OfferStatus.PENDING,
            )
            self.db.add(offer)
            if request.status == LoanRequestStatus.OPEN:
                request.status = LoanRequestStatus.UNDER_NEGOTIATION
            await self.db.commit()
            logger.info("Offer %s created for request %s by %s", offer.id, request.id, offer.company_address)
            return offer

    async def list_pending_offers(self, request_id: int) -> List[Offer]:
        await self._get_request(request_id)
        result = await self.db.execute(
            select(Offer)
            .where(Offer.request_id == request_id, Offer.status == OfferStatus.PENDING)
            .order_by(Offer.created_at, Offer.id)
        )
        return list(result.scalars().all())

    async def list_company_offers(self, company_address: str,
                                  status: Optional[OfferStatusEnum] = None) -> List[Offer]:
        """Offers made by a company, newest first"""
        query = select(Offer).where(Offer.company_address == company_address)
        if status is not None:
            query = query.where(Offer.status == OfferStatus(status.value))
        result = await self.db.execute(query.order_by(Offer.created_at.desc(), Offer.id.desc()))
        return list(result.scalars().all())

    async def reject_offer(self, offer_id: int) -> Offer:
        """Student declines an offer"""
        return await self._close_pending(offer_id, OfferStatus.REJECTED)

    async def cancel_offer(self, offer_id: int) -> Offer:
        """Company withdraws its offer"""
        return await self._close_pending(offer_id, OfferStatus.CANCELLED)

    async def _close_pending(self, offer_id: int, target: OfferStatus) -> Offer:
        offer = await self.get_offer(offer_id)
        async with self.locks.hold(request_key(offer.request_id)):
            offer = await self.get_offer(offer_id)
            if offer.status != OfferStatus.PENDING:
                raise ValidationFailed(
                    f"Offer {offer_id} is {offer.status.value}; only PENDING offers can be {target.value.lower()}",
                    reason="offer_not_pending",
                )
            offer.status = target
            await self.db.commit()
            logger.info("Offer %s %s", offer.id, target.value.lower())
            return offer
