from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from edufund.core.database import Base
from edufund.core.money import utc_now
from edufund.core.types import ExactDecimal
import enum


class OfferStatus(str, enum.Enum):
    """Status of a company's sponsorship offer"""
    PENDING = "PENDING"
    REJECTED = "REJECTED"      # declined by the student, or a sibling was accepted
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"    # withdrawn by the company


class Offer(Base):
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("loan_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    company_address = Column(String(64), nullable=False, index=True)

    interest_rate = Column(ExactDecimal, nullable=False)  # fraction, e.g. 0.035
    work_obligation_years = Column(Integer, default=0, nullable=False)
    terms_uri = Column(String(500), nullable=False)

    status = Column(SQLEnum(OfferStatus), default=OfferStatus.PENDING, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utc_now, nullable=True)

    request = relationship("LoanRequest", lazy="selectin")

    def __repr__(self):
        return f"<Offer(id={self.id}, request_id={self.request_id}, status={self.status})>"
