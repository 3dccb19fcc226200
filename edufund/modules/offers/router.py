from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from edufund.core.dependencies import get_offer_service
from edufund.modules.offers.schemas import OfferResponse, OfferStatusEnum
from edufund.modules.offers.services import OfferService

router = APIRouter(prefix="/api/offers", tags=["offers"])


@router.get("", response_model=List[OfferResponse])
async def list_company_offers(
    company_address: str = Query(..., alias="companyAddress", max_length=64),
    offer_status: Optional[OfferStatusEnum] = Query(None, alias="status"),
    service: OfferService = Depends(get_offer_service),
):
    return await service.list_company_offers(company_address, offer_status)


@router.get("/{offer_id}", response_model=OfferResponse)
async def read_offer(
    offer_id: int,
    service: OfferService = Depends(get_offer_service),
):
    return await service.get_offer(offer_id)


@router.post("/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(
    offer_id: int,
    service: OfferService = Depends(get_offer_service),
):
    return await service.reject_offer(offer_id)


@router.post("/{offer_id}/cancel", response_model=OfferResponse)
async def cancel_offer(
    offer_id: int,
    service: OfferService = Depends(get_offer_service),
):
    return await service.cancel_offer(offer_id)
