"""
Tests for repayment application and the repayment listener
"""
import asyncio

import pytest
from sqlalchemy import select

from edufund.core.money import ripple_to_unix
from edufund.modules.agreements.models import AgreementStatus, ListenerCheckpoint, ProcessedPayment
from edufund.modules.agreements.repayments import RepaymentListener
from edufund.modules.agreements.services import LifecycleService, PaymentOutcome
from fakes import COMPANY, PAST_INSTALLMENTS, SCHOOL, STUDENT, repayment


@pytest.fixture
def repaying_agreement(locked_agreement, lifecycle):
    """REPAYING agreement owing 4,080,000"""
    async def factory(**overrides):
        agreement = await locked_agreement(finish_after=100, **overrides)
        await lifecycle.reconcile_locks(agreement.id, now=ripple_to_unix(100) + 1)
        return await lifecycle.get_agreement(agreement.id)
    return factory


@pytest.fixture
def listener(session_factory, gateway, locks):
    return RepaymentListener(session_factory, gateway, locks, refresh_interval=0.05, reconnect_delay=0.01)


async def eventually(condition, attempts: int = 150):
    for _ in range(attempts):
        if await condition():
            return True
        await asyncio.sleep(0.02)
    return False


class TestApplyRepayment:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_repayment_marks_repaid(self, repaying_agreement, lifecycle):
        agreement = await repaying_agreement()
        assert agreement.status == AgreementStatus.REPAYING
        assert agreement.total_owed == 4_080_000

        outcome = await lifecycle.apply_repayment(repayment("TX1", agreement.id, 4_080_000, STUDENT, COMPANY))

        assert outcome == PaymentOutcome.APPLIED
        reloaded = await lifecycle.get_agreement(agreement.id)
        assert reloaded.amount_paid == 4_080_000
        assert reloaded.status == AgreementStatus.REPAID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_delivery_credits_once(self, repaying_agreement, lifecycle):
        agreement = await repaying_agreement()
        event = repayment("TX1", agreement.id, 1_000_000, STUDENT, COMPANY)

        assert await lifecycle.apply_repayment(event) == PaymentOutcome.APPLIED
        assert await lifecycle.apply_repayment(event) == PaymentOutcome.DUPLICATE

        reloaded = await lifecycle.get_agreement(agreement.id)
        assert reloaded.amount_paid == 1_000_000
        assert reloaded.status == AgreementStatus.REPAYING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_payments_accumulate(self, repaying_agreement, lifecycle):
        agreement = await repaying_agreement()
        paid = []
        for n, amount in enumerate([1_000_000, 2_000_000, 1_080_000]):
            await lifecycle.apply_repayment(repayment(f"TX{n}", agreement.id, amount, STUDENT, COMPANY))
            paid.append((await lifecycle.get_agreement(agreement.id)).amount_paid)

        assert paid == [1_000_000, 3_000_000, 4_080_000]
        assert (await lifecycle.get_agreement(agreement.id)).status == AgreementStatus.REPAID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overpayment_is_capped(self, db_session, repaying_agreement, lifecycle):
        agreement = await repaying_agreement()

        await lifecycle.apply_repayment(repayment("TX1", agreement.id, 5_000_000, STUDENT, COMPANY))

        reloaded = await lifecycle.get_agreement(agreement.id)
        assert reloaded.amount_paid == 4_080_000
        processed = (await db_session.execute(select(ProcessedPayment))).scalar_one()
        assert (processed.amount, processed.credited, processed.excess) == (5_000_000, 4_080_000, 920_000)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("account,destination", [("rSomeoneElse", COMPANY), (STUDENT, "rSomeoneElse")])
    async def test_mismatched_parties_are_ignored(self, repaying_agreement, lifecycle, account, destination):
        agreement = await repaying_agreement()

        outcome = await lifecycle.apply_repayment(repayment("TX1", agreement.id, 1_000, account, destination))

        assert outcome == PaymentOutcome.IGNORED
        assert (await lifecycle.get_agreement(agreement.id)).amount_paid == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unusable_events_are_ignored(self, repaying_agreement, lifecycle):
        agreement = await repaying_agreement()

        assert await lifecycle.apply_repayment(
            repayment("TX1", agreement.id, 1_000, STUDENT, COMPANY, validated=False)
        ) == PaymentOutcome.IGNORED
        assert await lifecycle.apply_repayment(
            repayment("TX2", agreement.id, None, STUDENT, COMPANY)
        ) == PaymentOutcome.IGNORED
        assert await lifecycle.apply_repayment(
            repayment("TX3", 999, 1_000, STUDENT, COMPANY)
        ) == PaymentOutcome.IGNORED
        assert (await lifecycle.get_agreement(agreement.id)).amount_paid == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_outside_repaying_is_ignored(self, funded_agreement, repaying_agreement, lifecycle):
        funded = await funded_agreement()
        outcome = await lifecycle.apply_repayment(repayment("TX1", funded.id, 1_000, STUDENT, COMPANY))
        assert outcome == PaymentOutcome.IGNORED
        assert (await lifecycle.get_agreement(funded.id)).amount_paid == 0

        repaid = await repaying_agreement()
        await lifecycle.apply_repayment(repayment("TX2", repaid.id, 4_080_000, STUDENT, COMPANY))
        late = await lifecycle.apply_repayment(repayment("TX3", repaid.id, 1_000, STUDENT, COMPANY))
        assert late == PaymentOutcome.IGNORED
        assert (await lifecycle.get_agreement(repaid.id)).amount_paid == 4_080_000


class TestScenario:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_four_million_at_two_percent_to_closed(self, accepted_agreement, lifecycle, gateway):
        agreement = await accepted_agreement(installments=PAST_INSTALLMENTS)
        assert agreement.total_owed == 4_080_000

        await lifecycle.record_asset_minted(agreement.id, "NFT0001")
        await lifecycle.record_transfer_offer(agreement.id, "OFFER0001")
        await lifecycle.record_funded(agreement.id, "NFT0001")
        for index, _ in await lifecycle.prepare_installment_locks(agreement.id):
            gateway.add_escrow(f"ESCROW{index}", 10 + index, COMPANY, SCHOOL, 2_000_000, 100)
            await lifecycle.record_installment_lock(agreement.id, index, f"ESCROW{index}", 10 + index)

        outcome = await lifecycle.reconcile_locks(agreement.id, now=ripple_to_unix(100) + 1)
        assert outcome.advanced
        assert (await lifecycle.get_agreement(agreement.id)).status == AgreementStatus.REPAYING

        await lifecycle.apply_repayment(repayment("TXFULL", agreement.id, 4_080_000, STUDENT, COMPANY))
        assert (await lifecycle.get_agreement(agreement.id)).status == AgreementStatus.REPAID

        burn = await lifecycle.prepare_burn(agreement.id)
        assert (burn["TransactionType"], burn["Account"], burn["NFTokenID"]) == ("NFTokenBurn", COMPANY, "NFT0001")
        closed = await lifecycle.record_closed(agreement.id)
        assert closed.status == AgreementStatus.CLOSED

        names = [event.name for event in await lifecycle.list_events(agreement.id)]
        assert names[-4:] == ["repaying", "payment_applied", "repaid", "closed"]


class TestRepaymentListener:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_watch_set_is_repaying_students(self, listener, funded_agreement, repaying_agreement):
        await funded_agreement()
        assert await listener.watch_set() == []
        await repaying_agreement()
        assert await listener.watch_set() == [STUDENT]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handle_payment_advances_checkpoint(self, listener, repaying_agreement, session_factory):
        agreement = await repaying_agreement()
        listener.watched = [STUDENT]

        outcome = await listener.handle_payment(
            repayment("TX1", agreement.id, 1_000, STUDENT, COMPANY, ledger_index=120)
        )

        assert outcome == PaymentOutcome.APPLIED
        async with session_factory() as session:
            checkpoint = await session.get(ListenerCheckpoint, STUDENT)
            assert checkpoint.last_ledger_index == 120

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_catch_up_replays_missed_payments_once(self, listener, repaying_agreement, gateway, lifecycle):
        agreement = await repaying_agreement()
        listener.watched = [STUDENT]
        seen = repayment("TX1", agreement.id, 1_000_000, STUDENT, COMPANY, ledger_index=120)
        missed = repayment("TX2", agreement.id, 500_000, STUDENT, COMPANY, ledger_index=125)
        await listener.handle_payment(seen)
        gateway.history = [seen, missed]

        replayed = await listener.catch_up([STUDENT])
        await listener.catch_up([STUDENT])

        assert replayed == 2
        reloaded = await lifecycle.get_agreement(agreement.id)
        assert reloaded.amount_paid == 1_500_000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_catch_up_without_checkpoint_does_nothing(self, listener, repaying_agreement, gateway):
        agreement = await repaying_agreement()
        gateway.history = [repayment("TX1", agreement.id, 1_000, STUDENT, COMPANY)]
        assert await listener.catch_up([STUDENT]) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stream_payments_are_applied(self, listener, repaying_agreement, gateway, session_factory, locks):
        agreement = await repaying_agreement()

        async def repaid():
            async with session_factory() as session:
                current = await LifecycleService(session, gateway, locks).get_agreement(agreement.id)
                return current.status == AgreementStatus.REPAID

        async def subscribed():
            return bool(gateway.subscriptions)

        listener.start()
        try:
            assert await eventually(subscribed)
            assert gateway.subscriptions[0] == [STUDENT]
            await gateway.stream.put(repayment("TX1", agreement.id, 4_080_000, STUDENT, COMPANY))
            assert await eventually(repaid)
        finally:
            await listener.stop()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_resubscribes_when_watch_set_changes(self, listener, locked_agreement, lifecycle, gateway):
        agreement = await locked_agreement(finish_after=100)

        async def subscribed():
            return bool(gateway.subscriptions)

        listener.start()
        try:
            assert not await eventually(subscribed, attempts=5)
            await lifecycle.reconcile_locks(agreement.id, now=ripple_to_unix(100) + 1)
            listener.notify_watchlist_changed()
            assert await eventually(subscribed)
            assert gateway.subscriptions[-1] == [STUDENT]
        finally:
            await listener.stop()
