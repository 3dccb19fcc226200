from pydantic import Field
from datetime import datetime
from typing import Optional
from enum import Enum

from edufund.core.schemas import CamelModel, RateStr


class OfferStatusEnum(str, Enum):
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"


class OfferCreate(CamelModel):
    company_address: str = Field(..., min_length=1, max_length=64)
    interest_rate: RateStr
    work_obligation_years: int = Field(0, ge=0, le=50)
    terms_uri: str = Field(..., min_length=1, max_length=500)


class OfferResponse(CamelModel):
    id: int
    request_id: int
    company_address: str
    interest_rate: RateStr
    work_obligation_years: int
    terms_uri: str
    status: OfferStatusEnum
    created_at: datetime
    updated_at: Optional[datetime] = None


class OfferCreated(CamelModel):
    offer_id: int
