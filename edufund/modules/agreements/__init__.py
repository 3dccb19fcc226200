# Loan agreements module
from edufund.modules.agreements.models import (
    LoanAgreement, AgreementInstallment, AgreementEvent, ProcessedPayment,
    ListenerCheckpoint, AgreementStatus
)

__all__ = [
    "LoanAgreement", "AgreementInstallment", "AgreementEvent", "ProcessedPayment",
    "ListenerCheckpoint", "AgreementStatus"
]
