"""
Loan Request Router

Student-side request management, plus the offer and acceptance endpoints
nested under a request.
"""
from fastapi import APIRouter, Depends, Query, Response, status
from typing import List, Optional

from edufund.core.dependencies import (
    get_lifecycle_service, get_loan_request_service, get_offer_service
)
from edufund.modules.agreements.schemas import AcceptOfferRequest, AcceptOfferResponse
from edufund.modules.agreements.services import LifecycleService
from edufund.modules.loan_requests.schemas import (
    LoanRequestCreate, LoanRequestCreated, LoanRequestResponse, LoanRequestUpdate
)
from edufund.modules.loan_requests.services import LoanRequestService
from edufund.modules.offers.schemas import OfferCreate, OfferCreated, OfferResponse
from edufund.modules.offers.services import OfferService

router = APIRouter(prefix="/api/loan-requests", tags=["loan-requests"])


@router.post("", response_model=LoanRequestCreated, status_code=status.HTTP_201_CREATED)
async def create_loan_request(
    data: LoanRequestCreate,
    service: LoanRequestService = Depends(get_loan_request_service),
):
    """Create a request as DRAFT, or OPEN when every field is filled in"""
    request = await service.create_request(data)
    return LoanRequestCreated(request_id=request.id)


@router.get("", response_model=List[LoanRequestResponse])
async def list_loan_requests(
    industry: Optional[str] = None,
    student_address: Optional[str] = Query(None, alias="studentAddress", max_length=64),
    service: LoanRequestService = Depends(get_loan_request_service),
):
    """OPEN requests for companies, or all of one student's requests"""
    if student_address:
        return await service.list_student_requests(student_address)
    return await service.list_open_requests(industry)


@router.get("/{request_id}", response_model=LoanRequestResponse)
async def read_loan_request(
    request_id: int,
    service: LoanRequestService = Depends(get_loan_request_service),
):
    return await service.get_request(request_id)


@router.put("/{request_id}", response_model=LoanRequestResponse)
async def update_loan_request(
    request_id: int,
    data: LoanRequestUpdate,
    service: LoanRequestService = Depends(get_loan_request_service),
):
    return await service.update_request(request_id, data)


@router.post("/{request_id}/submit", response_model=LoanRequestResponse)
async def submit_loan_request(
    request_id: int,
    service: LoanRequestService = Depends(get_loan_request_service),
):
    return await service.submit_request(request_id)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_loan_request(
    request_id: int,
    service: LoanRequestService = Depends(get_loan_request_service),
):
    await service.delete_request(request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================
# Offers on a request
# ============================================================

@router.post("/{request_id}/offers", response_model=OfferCreated, status_code=status.HTTP_201_CREATED)
async def create_offer(
    request_id: int,
    data: OfferCreate,
    service: OfferService = Depends(get_offer_service),
):
    offer = await service.create_offer(request_id, data)
    return OfferCreated(offer_id=offer.id)


@router.get("/{request_id}/offers", response_model=List[OfferResponse])
async def list_pending_offers(
    request_id: int,
    service: OfferService = Depends(get_offer_service),
):
    return await service.list_pending_offers(request_id)


@router.post("/{request_id}/accept-offer", response_model=AcceptOfferResponse)
async def accept_offer(
    request_id: int,
    data: AcceptOfferRequest,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    """
    Accept an offer: creates the agreement and returns the unsigned debt NFT
    mint for the student's wallet. Safe to retry if metadata publishing failed.
    """
    agreement, instruction = await service.accept_offer(request_id, data.offer_id)
    return AcceptOfferResponse(agreement_id=agreement.id, mint_instruction=instruction)
