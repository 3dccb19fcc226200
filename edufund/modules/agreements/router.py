"""
Loan Agreement Router

Settlement steps of an agreement. ``prepare-*`` endpoints return unsigned
transactions for a party's wallet and change nothing; ``record-*`` endpoints
store what that wallet confirmed on the ledger.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from edufund.core.dependencies import get_lifecycle_service
from edufund.core.schemas import OkResponse
from edufund.modules.agreements.schemas import (
    AgreementEventOut, BurnInstructionResponse, InstructionResponse,
    LoanAgreementResponse, LockInstruction, LockInstructionsResponse,
    RecordAsset, RecordBurn, RecordEscrow, RecordTransferOffer
)
from edufund.modules.agreements.services import LifecycleService

router = APIRouter(prefix="/api/loan-agreements", tags=["loan-agreements"])


@router.get("", response_model=List[LoanAgreementResponse])
async def list_agreements(
    student_address: Optional[str] = Query(None, alias="studentAddress", max_length=64),
    company_address: Optional[str] = Query(None, alias="companyAddress", max_length=64),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    """Agreements where the given address is the student or the funding company"""
    return await service.list_agreements(student_address, company_address)


@router.get("/{agreement_id}", response_model=LoanAgreementResponse)
async def read_agreement(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.get_agreement(agreement_id)


@router.get("/{agreement_id}/events", response_model=List[AgreementEventOut])
async def read_agreement_events(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.list_events(agreement_id)


# ============================================================
# Funding
# ============================================================

@router.get("/{agreement_id}/prepare-mint", response_model=InstructionResponse)
async def prepare_mint(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return InstructionResponse(instruction=await service.prepare_mint(agreement_id))


@router.post("/{agreement_id}/record-mint", response_model=OkResponse)
async def record_mint(
    agreement_id: int,
    data: RecordAsset,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    await service.record_asset_minted(agreement_id, data.asset_id)
    return OkResponse()


@router.get("/{agreement_id}/prepare-transfer-offer", response_model=InstructionResponse)
async def prepare_transfer_offer(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return InstructionResponse(instruction=await service.prepare_transfer_offer(agreement_id))


@router.post("/{agreement_id}/record-transfer-offer", response_model=OkResponse)
async def record_transfer_offer(
    agreement_id: int,
    data: RecordTransferOffer,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    await service.record_transfer_offer(agreement_id, data.transfer_offer_ref)
    return OkResponse()


@router.get("/{agreement_id}/prepare-accept-transfer", response_model=InstructionResponse)
async def prepare_accept_transfer(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return InstructionResponse(instruction=await service.prepare_accept_transfer(agreement_id))


@router.post("/{agreement_id}/record-accepted", response_model=OkResponse)
async def record_accepted(
    agreement_id: int,
    data: RecordAsset,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    """The company accepted the transfer; the agreement is FUNDED"""
    await service.record_funded(agreement_id, data.asset_id)
    return OkResponse()


# ============================================================
# Escrows
# ============================================================

@router.get("/{agreement_id}/prepare-escrows", response_model=LockInstructionsResponse)
async def prepare_escrows(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    prepared = await service.prepare_installment_locks(agreement_id)
    return LockInstructionsResponse(lock_instructions=[
        LockInstruction(installment_index=index, instruction=instruction)
        for index, instruction in prepared
    ])


@router.post("/{agreement_id}/record-escrow", response_model=OkResponse)
async def record_escrow(
    agreement_id: int,
    data: RecordEscrow,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    await service.record_installment_lock(
        agreement_id, data.installment_index, data.lock_ref, data.lock_sequence
    )
    return OkResponse()


# ============================================================
# Closing
# ============================================================

@router.get("/{agreement_id}/prepare-burn", response_model=BurnInstructionResponse)
async def prepare_burn(
    agreement_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return BurnInstructionResponse(burn_instruction=await service.prepare_burn(agreement_id))


@router.post("/{agreement_id}/record-burn", response_model=OkResponse)
async def record_burn(
    agreement_id: int,
    data: Optional[RecordBurn] = None,
    service: LifecycleService = Depends(get_lifecycle_service),
):
    await service.record_closed(agreement_id, tx_hash=data.tx_hash if data else None)
    return OkResponse()
