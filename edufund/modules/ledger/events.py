"""
Normalised views of ledger data consumed by the settlement engine.

Stream messages and ``account_tx`` entries differ between API versions
(``transaction`` vs ``tx_json``, ``Amount`` vs ``DeliverMax``); everything is
reduced to :class:`PaymentEvent` here so the rest of the code never sees raw
ledger JSON.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from xrpl.utils import hex_to_str

REPAYMENT_MEMO_TYPE = "LoanRepayment"


@dataclass
class PaymentEvent:
    tx_hash: str
    account: str
    destination: str
    amount: Optional[int]              # drops; None for issued-currency payments
    memos: List[Tuple[str, str]] = field(default_factory=list)
    ledger_index: Optional[int] = None
    validated: bool = True

    def repayment_agreement_id(self) -> Optional[int]:
        """Agreement id from a LoanRepayment memo, if the payment carries one"""
        for memo_type, memo_data in self.memos:
            if memo_type != REPAYMENT_MEMO_TYPE:
                continue
            try:
                return int(memo_data.strip())
            except ValueError:
                return None
        return None


@dataclass
class LockObject:
    """An escrow still present on the ledger"""
    index: str
    owner: str
    destination: str
    amount: Optional[int]
    finish_after: Optional[int]        # Ripple epoch seconds


def _decode_hex(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return hex_to_str(value)
    except (ValueError, UnicodeDecodeError):
        return ""


def _drops(value: Any) -> Optional[int]:
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


def decode_memos(tx: Dict[str, Any]) -> List[Tuple[str, str]]:
    memos = []
    for wrapper in tx.get("Memos") or []:
        memo = wrapper.get("Memo") or {}
        memos.append((_decode_hex(memo.get("MemoType")), _decode_hex(memo.get("MemoData"))))
    return memos


def payment_event_from(message: Dict[str, Any]) -> Optional[PaymentEvent]:
    """Build a PaymentEvent from a stream message or account_tx entry"""
    tx = message.get("transaction") or message.get("tx_json") or message.get("tx")
    if not tx or tx.get("TransactionType") != "Payment":
        return None

    meta = message.get("meta") or message.get("metaData") or {}
    if isinstance(meta, dict) and meta.get("TransactionResult") not in (None, "tesSUCCESS"):
        return None

    delivered = meta.get("delivered_amount") if isinstance(meta, dict) else None
    if delivered is None or delivered == "unavailable":
        delivered = tx.get("DeliverMax", tx.get("Amount"))

    ledger_index = message.get("ledger_index", tx.get("ledger_index"))
    return PaymentEvent(
        tx_hash=message.get("hash") or tx.get("hash", ""),
        account=tx.get("Account", ""),
        destination=tx.get("Destination", ""),
        amount=_drops(delivered),
        memos=decode_memos(tx),
        ledger_index=int(ledger_index) if ledger_index is not None else None,
        validated=bool(message.get("validated", False)),
    )


def lock_object_from(entry: Dict[str, Any]) -> LockObject:
    finish_after = entry.get("FinishAfter")
    return LockObject(
        index=entry.get("index", ""),
        owner=entry.get("Account", ""),
        destination=entry.get("Destination", ""),
        amount=_drops(entry.get("Amount")),
        finish_after=int(finish_after) if finish_after is not None else None,
    )
