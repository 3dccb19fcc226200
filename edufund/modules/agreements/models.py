from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, ForeignKey, JSON,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from edufund.core.database import Base
from edufund.core.money import utc_now
from edufund.core.types import MinorUnits, ExactDecimal
import enum


class AgreementStatus(str, enum.Enum):
    """Settlement status; only ever moves one step forward"""
    AWAITING_FUNDING = "AWAITING_FUNDING"
    FUNDED = "FUNDED"
    REPAYING = "REPAYING"
    REPAID = "REPAID"
    CLOSED = "CLOSED"


STATUS_ORDER = [
    AgreementStatus.AWAITING_FUNDING,
    AgreementStatus.FUNDED,
    AgreementStatus.REPAYING,
    AgreementStatus.REPAID,
    AgreementStatus.CLOSED,
]


class LoanAgreement(Base):
    """
    The settlement record created when a student accepts an offer.
    Mutated step by step as ledger events are confirmed; never deleted.
    """
    __tablename__ = "loan_agreements"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("loan_requests.id"), nullable=False, unique=True, index=True)
    offer_id = Column(Integer, ForeignKey("offers.id"), nullable=False, index=True)

    # Parties (ledger account addresses)
    student_address = Column(String(64), nullable=False, index=True)
    company_address = Column(String(64), nullable=False, index=True)
    school_address = Column(String(64), nullable=False)

    # Terms (drops)
    interest_rate = Column(ExactDecimal, nullable=False)
    principal = Column(MinorUnits, nullable=False)
    total_owed = Column(MinorUnits, nullable=False)
    amount_paid = Column(MinorUnits, nullable=False, default=0)

    # Ledger references
    metadata_uri = Column(String(255), nullable=True)
    asset_id = Column(String(64), nullable=True, index=True)            # NFTokenID
    transfer_offer_ref = Column(String(64), nullable=True)              # NFTokenOffer index

    status = Column(SQLEnum(AgreementStatus), default=AgreementStatus.AWAITING_FUNDING, nullable=False, index=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    installments = relationship(
        "AgreementInstallment",
        back_populates="agreement",
        cascade="all, delete-orphan",
        order_by="AgreementInstallment.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def all_released(self) -> bool:
        return bool(self.installments) and all(item.released for item in self.installments)

    @property
    def outstanding(self) -> int:
        return max(self.total_owed - self.amount_paid, 0)

    def __repr__(self):
        return f"<LoanAgreement(id={self.id}, status={self.status}, version={self.version})>"


class AgreementInstallment(Base):
    """One escrowed tuition installment of an agreement"""
    __tablename__ = "agreement_installments"
    __table_args__ = (
        UniqueConstraint("agreement_id", "position", name="uq_agreement_installments_position"),
    )

    id = Column(Integer, primary_key=True, index=True)
    agreement_id = Column(Integer, ForeignKey("loan_agreements.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    amount = Column(MinorUnits, nullable=False)
    due_date = Column(Date, nullable=False)

    lock_ref = Column(String(64), nullable=True)        # escrow ledger object index
    lock_sequence = Column(Integer, nullable=True)      # EscrowCreate sequence, needed to finish
    released = Column(Boolean, default=False, nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    agreement = relationship("LoanAgreement", back_populates="installments")


class AgreementEvent(Base):
    """Append-only lifecycle audit trail"""
    __tablename__ = "agreement_events"

    id = Column(Integer, primary_key=True, index=True)
    agreement_id = Column(Integer, ForeignKey("loan_agreements.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ProcessedPayment(Base):
    """Ledger payments already credited, keyed by transaction hash"""
    __tablename__ = "processed_payments"

    id = Column(Integer, primary_key=True, index=True)
    tx_hash = Column(String(64), nullable=False, unique=True, index=True)
    agreement_id = Column(Integer, ForeignKey("loan_agreements.id"), nullable=False, index=True)
    amount = Column(MinorUnits, nullable=False)
    credited = Column(MinorUnits, nullable=False)
    excess = Column(MinorUnits, nullable=False, default=0)
    ledger_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ListenerCheckpoint(Base):
    """Last validated ledger index seen per watched account"""
    __tablename__ = "listener_checkpoints"

    account = Column(String(64), primary_key=True)
    last_ledger_index = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)
