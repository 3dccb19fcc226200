"""
Unit tests for ledger message normalisation
"""
import pytest
from xrpl.utils import str_to_hex

from edufund.modules.ledger.events import (
    REPAYMENT_MEMO_TYPE, lock_object_from, payment_event_from
)


def memo(memo_type: str, data: str) -> dict:
    return {"Memo": {"MemoType": str_to_hex(memo_type), "MemoData": str_to_hex(data)}}


def stream_message(**tx_overrides) -> dict:
    tx = {
        "TransactionType": "Payment",
        "Account": "rStudent",
        "Destination": "rCompany",
        "Amount": "500000",
        "Memos": [memo(REPAYMENT_MEMO_TYPE, "7")],
    }
    tx.update(tx_overrides)
    return {
        "type": "transaction",
        "transaction": tx,
        "meta": {"TransactionResult": "tesSUCCESS", "delivered_amount": "500000"},
        "hash": "ABC123",
        "ledger_index": 42,
        "validated": True,
    }


class TestPaymentEvents:

    @pytest.mark.unit
    def test_stream_payment_with_repayment_memo(self):
        event = payment_event_from(stream_message())

        assert event.tx_hash == "ABC123"
        assert event.account == "rStudent"
        assert event.destination == "rCompany"
        assert event.amount == 500_000
        assert event.ledger_index == 42
        assert event.validated is True
        assert event.repayment_agreement_id() == 7

    @pytest.mark.unit
    def test_delivered_amount_wins_over_amount(self):
        message = stream_message(Amount="900000")
        message["meta"]["delivered_amount"] = "400000"
        assert payment_event_from(message).amount == 400_000

    @pytest.mark.unit
    def test_account_tx_entry_with_tx_json_and_deliver_max(self):
        entry = {
            "tx_json": {
                "TransactionType": "Payment",
                "Account": "rStudent",
                "Destination": "rCompany",
                "DeliverMax": "250000",
            },
            "meta": {"TransactionResult": "tesSUCCESS"},
            "hash": "DEF456",
            "ledger_index": 50,
            "validated": True,
        }
        event = payment_event_from(entry)
        assert event.amount == 250_000
        assert event.repayment_agreement_id() is None

    @pytest.mark.unit
    def test_issued_currency_amount_is_not_native(self):
        message = stream_message(Amount={"currency": "USD", "issuer": "rIssuer", "value": "10"})
        message["meta"]["delivered_amount"] = {"currency": "USD", "issuer": "rIssuer", "value": "10"}
        assert payment_event_from(message).amount is None

    @pytest.mark.unit
    def test_failed_and_non_payment_transactions_are_skipped(self):
        failed = stream_message()
        failed["meta"]["TransactionResult"] = "tecUNFUNDED_PAYMENT"
        assert payment_event_from(failed) is None
        assert payment_event_from(stream_message(TransactionType="EscrowFinish")) is None

    @pytest.mark.unit
    def test_memo_with_other_type_or_bad_id(self):
        other = payment_event_from(stream_message(Memos=[memo("Invoice", "7")]))
        assert other.repayment_agreement_id() is None
        garbled = payment_event_from(stream_message(Memos=[memo(REPAYMENT_MEMO_TYPE, "seven")]))
        assert garbled.repayment_agreement_id() is None


class TestLockObjects:

    @pytest.mark.unit
    def test_escrow_entry(self):
        lock = lock_object_from({
            "index": "E1",
            "Account": "rCompany",
            "Destination": "rSchool",
            "Amount": "2000000",
            "FinishAfter": 800000000,
        })
        assert lock.index == "E1"
        assert lock.amount == 2_000_000
        assert lock.finish_after == 800000000

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", ["١٢٣", "1.5", {"currency": "USD", "value": "1"}])
    def test_non_drop_amount_is_none(self, amount):
        lock = lock_object_from({"index": "E2", "Account": "rCompany", "Destination": "rSchool", "Amount": amount})
        assert lock.amount is None
        assert lock.finish_after is None
