# Ledger module
from edufund.modules.ledger.events import PaymentEvent, LockObject, REPAYMENT_MEMO_TYPE
from edufund.modules.ledger.gateway import LedgerGateway, XRPLGateway

__all__ = ["PaymentEvent", "LockObject", "REPAYMENT_MEMO_TYPE", "LedgerGateway", "XRPLGateway"]
