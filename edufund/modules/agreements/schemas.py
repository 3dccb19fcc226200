from pydantic import Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from edufund.core.schemas import CamelModel, MinorUnitStr, RateStr


class AgreementStatusEnum(str, Enum):
    AWAITING_FUNDING = "AWAITING_FUNDING"
    FUNDED = "FUNDED"
    REPAYING = "REPAYING"
    REPAID = "REPAID"
    CLOSED = "CLOSED"


# ============================================================
# Requests
# ============================================================

class AcceptOfferRequest(CamelModel):
    offer_id: int = Field(..., gt=0)


class RecordAsset(CamelModel):
    asset_id: str = Field(..., min_length=1, max_length=64)


class RecordTransferOffer(CamelModel):
    transfer_offer_ref: str = Field(..., min_length=1, max_length=64)


class RecordEscrow(CamelModel):
    installment_index: int = Field(..., ge=0)
    lock_ref: str = Field(..., min_length=1, max_length=64)
    lock_sequence: int = Field(..., ge=0)


class RecordBurn(CamelModel):
    tx_hash: Optional[str] = Field(None, max_length=64)


# ============================================================
# Responses
# ============================================================

class AgreementInstallmentOut(CamelModel):
    position: int
    amount: MinorUnitStr
    due_date: date
    lock_ref: Optional[str] = None
    lock_sequence: Optional[int] = None
    released: bool
    released_at: Optional[datetime] = None


class LoanAgreementResponse(CamelModel):
    id: int
    request_id: int
    offer_id: int
    student_address: str
    company_address: str
    school_address: str
    interest_rate: RateStr
    principal: MinorUnitStr
    total_owed: MinorUnitStr
    amount_paid: MinorUnitStr
    metadata_uri: Optional[str] = None
    asset_id: Optional[str] = None
    transfer_offer_ref: Optional[str] = None
    status: AgreementStatusEnum
    version: int
    installments: List[AgreementInstallmentOut] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


class AgreementEventOut(CamelModel):
    id: int
    name: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class AcceptOfferResponse(CamelModel):
    agreement_id: int
    mint_instruction: Dict[str, Any]


class InstructionResponse(CamelModel):
    instruction: Dict[str, Any]


class LockInstruction(CamelModel):
    installment_index: int
    instruction: Dict[str, Any]


class LockInstructionsResponse(CamelModel):
    lock_instructions: List[LockInstruction]


class BurnInstructionResponse(CamelModel):
    burn_instruction: Dict[str, Any]
