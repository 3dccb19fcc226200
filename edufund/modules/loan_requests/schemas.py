from pydantic import Field, model_validator
from datetime import date, datetime
from typing import Optional, List
from enum import Enum

from edufund.core.schemas import CamelModel, MinorUnitStr


class CurrencyEnum(str, Enum):
    XRP = "XRP"


class LoanRequestStatusEnum(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    UNDER_NEGOTIATION = "UNDER_NEGOTIATION"
    ACCEPTED = "ACCEPTED"
    CLOSED = "CLOSED"


# Fields that must be present once a request leaves DRAFT
REQUIRED_WHEN_SUBMITTED = (
    "student_address", "student_name", "school_address", "program",
    "total_amount", "installments", "graduation_date", "industry",
)


class InstallmentIn(CamelModel):
    amount: MinorUnitStr
    due_date: date

    @model_validator(mode="after")
    def amount_positive(self):
        if self.amount <= 0:
            raise ValueError("installment amount must be positive")
        return self


class InstallmentOut(CamelModel):
    position: int
    amount: MinorUnitStr
    due_date: date


def missing_submission_fields(values: dict) -> List[str]:
    """Names of required fields that are empty"""
    missing = []
    for name in REQUIRED_WHEN_SUBMITTED:
        value = values.get(name)
        if value is None or value == "" or value == []:
            missing.append(name)
    return missing


def schedule_mismatch(total_amount: Optional[int], installments: Optional[list]) -> Optional[str]:
    if total_amount is None or not installments:
        return None
    scheduled = sum(item.amount for item in installments)
    if scheduled != total_amount:
        return f"installments sum to {scheduled} but total amount is {total_amount}"
    return None


class LoanRequestFields(CamelModel):
    student_address: Optional[str] = Field(None, max_length=64)
    student_name: Optional[str] = Field(None, max_length=200)
    school_address: Optional[str] = Field(None, max_length=64)
    program: Optional[str] = Field(None, max_length=200)
    total_amount: Optional[MinorUnitStr] = None
    installments: Optional[List[InstallmentIn]] = None
    graduation_date: Optional[date] = None
    industry: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None


class LoanRequestCreate(LoanRequestFields):
    """Create a request; only DRAFT may leave fields empty"""
    status: LoanRequestStatusEnum = LoanRequestStatusEnum.OPEN

    @model_validator(mode="after")
    def check_status_fields(self):
        if self.status not in (LoanRequestStatusEnum.DRAFT, LoanRequestStatusEnum.OPEN):
            raise ValueError("a new request must be DRAFT or OPEN")
        if self.status == LoanRequestStatusEnum.OPEN:
            missing = missing_submission_fields(self.__dict__)
            if missing:
                raise ValueError(f"missing required fields: {', '.join(missing)}")
            mismatch = schedule_mismatch(self.total_amount, self.installments)
            if mismatch:
                raise ValueError(mismatch)
        return self


class LoanRequestUpdate(LoanRequestFields):
    """Partial update; merged with stored values and re-validated by the service"""
    pass


class LoanRequestResponse(CamelModel):
    id: int
    student_address: Optional[str] = None
    student_name: Optional[str] = None
    school_address: Optional[str] = None
    program: Optional[str] = None
    total_amount: Optional[MinorUnitStr] = None
    currency: CurrencyEnum
    installments: List[InstallmentOut] = []
    graduation_date: Optional[date] = None
    industry: Optional[str] = None
    description: Optional[str] = None
    status: LoanRequestStatusEnum
    created_at: datetime
    updated_at: Optional[datetime] = None


class LoanRequestCreated(CamelModel):
    request_id: int
