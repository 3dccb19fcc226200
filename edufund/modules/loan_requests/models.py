from sqlalchemy import Column, Integer, String, Date, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from edufund.core.database import Base
from edufund.core.money import utc_now
from edufund.core.types import MinorUnits
import enum


class LoanRequestStatus(str, enum.Enum):
    """Status of a student's funding request"""
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    UNDER_NEGOTIATION = "UNDER_NEGOTIATION"
    ACCEPTED = "ACCEPTED"
    CLOSED = "CLOSED"


class Currency(str, enum.Enum):
    XRP = "XRP"


class LoanRequest(Base):
    """
    A student's request for tuition funding.
    Everything except status and description may be empty while DRAFT.
    """
    __tablename__ = "loan_requests"

    id = Column(Integer, primary_key=True, index=True)

    # Parties (ledger account addresses)
    student_address = Column(String(64), nullable=True, index=True)
    student_name = Column(String(200), nullable=True)
    school_address = Column(String(64), nullable=True)

    program = Column(String(200), nullable=True)
    total_amount = Column(MinorUnits, nullable=True)  # drops
    currency = Column(SQLEnum(Currency), default=Currency.XRP, nullable=False)
    graduation_date = Column(Date, nullable=True)
    industry = Column(String(100), nullable=True, index=True)
    description = Column(Text, nullable=True)

    status = Column(SQLEnum(LoanRequestStatus), default=LoanRequestStatus.OPEN, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utc_now, nullable=True)

    installments = relationship(
        "RequestInstallment",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestInstallment.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<LoanRequest(id={self.id}, status={self.status})>"


class RequestInstallment(Base):
    """One tuition installment in a request's fee schedule"""
    __tablename__ = "request_installments"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("loan_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    amount = Column(MinorUnits, nullable=False)
    due_date = Column(Date, nullable=False)

    request = relationship("LoanRequest", back_populates="installments")
