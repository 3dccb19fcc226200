# Loan requests module
from edufund.modules.loan_requests.models import (
    LoanRequest, RequestInstallment, LoanRequestStatus, Currency
)

__all__ = ["LoanRequest", "RequestInstallment", "LoanRequestStatus", "Currency"]
