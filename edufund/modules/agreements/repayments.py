"""
Repayment Listener

Subscribes to payments of every student with a REPAYING agreement and applies
LoanRepayment payments. Subscriptions drop and reconnect, so after each
(re)subscribe and on every refresh tick the listener replays validated history
newer than each account's checkpoint; the processed-payment table makes replay
safe.
"""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from edufund.core.config import settings
from edufund.core.exceptions import EduFundError
from edufund.core.locks import LockManager
from edufund.modules.agreements.models import ListenerCheckpoint
from edufund.modules.agreements.services import LifecycleService, PaymentOutcome
from edufund.modules.ledger.events import PaymentEvent
from edufund.modules.ledger.gateway import LedgerGateway

logger = logging.getLogger(__name__)


class RepaymentListener:
    """Background service; ``start()`` in the app lifespan, ``stop()`` on shutdown"""

    def __init__(self, session_factory: async_sessionmaker, gateway: LedgerGateway, locks: LockManager,
                 refresh_interval: float = None, reconnect_delay: float = None):
        self.session_factory = session_factory
        self.gateway = gateway
        self.locks = locks
        self.refresh_interval = refresh_interval or settings.LISTENER_REFRESH_SECONDS
        self.reconnect_delay = reconnect_delay or settings.LISTENER_RECONNECT_DELAY_SECONDS
        self.watched: List[str] = []
        self._task: Optional[asyncio.Task] = None
        self._changed = asyncio.Event()
        self._handling = asyncio.Lock()

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="repayment-listener")
        logger.info("Repayment listener started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Repayment listener stopped")

    def notify_watchlist_changed(self) -> None:
        """Called when an agreement enters or leaves REPAYING"""
        self._changed.set()

    # ============================================================
    # Subscription loop
    # ============================================================

    async def _run(self) -> None:
        while True:
            try:
                self.watched = await self.watch_set()
                if not self.watched:
                    await self._wait_for_change()
                    continue
                await self._listen(self.watched)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Repayment listener failed; reconnecting in %ss", self.reconnect_delay)
                await asyncio.sleep(self.reconnect_delay)

    async def _listen(self, accounts: List[str]) -> None:
        stream = asyncio.create_task(self._consume(accounts))
        watcher = asyncio.create_task(self._watch_for_new_accounts(accounts))
        try:
            await self.catch_up(accounts)
            done, _ = await asyncio.wait({stream, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (stream, watcher):
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

        if stream in done:
            error = stream.exception()
            if error is not None:
                logger.error("Payment subscription dropped: %s", error)
            else:
                logger.warning("Payment subscription closed by server")
            await asyncio.sleep(self.reconnect_delay)

    async def _consume(self, accounts: List[str]) -> None:
        async for event in self.gateway.subscribe_to_payments(accounts):
            await self.handle_payment(event)

    async def _wait_for_change(self) -> None:
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=self.refresh_interval)
        except asyncio.TimeoutError:
            pass
        self._changed.clear()

    async def _watch_for_new_accounts(self, accounts: List[str]) -> None:
        """Returns once the watch set differs from ``accounts``"""
        while True:
            await self._wait_for_change()
            current = await self.watch_set()
            if current != accounts:
                logger.info("Repayment watch set changed: %d -> %d account(s)", len(accounts), len(current))
                return
            await self.catch_up(accounts)

    async def watch_set(self) -> List[str]:
        async with self.session_factory() as session:
            return await LifecycleService(session, self.gateway, self.locks).repaying_student_addresses()

    # ============================================================
    # Event handling
    # ============================================================

    async def catch_up(self, accounts: List[str]) -> int:
        """Replay validated payments newer than each account's checkpoint"""
        replayed = 0
        for account in accounts:
            checkpoint = await self._checkpoint(account)
            if checkpoint is None:
                continue
            try:
                # The checkpoint ledger itself is replayed; a crash may have stopped mid-ledger
                events = await self.gateway.fetch_account_payments(account, checkpoint - 1)
            except EduFundError as e:
                logger.error("Catch-up for %s failed: %s", account, e)
                continue
            for event in events:
                await self.handle_payment(event)
                replayed += 1
        if replayed:
            logger.info("Replayed %d payment(s) from ledger history", replayed)
        return replayed

    async def handle_payment(self, event: PaymentEvent) -> str:
        if not event.validated:
            return PaymentOutcome.IGNORED
        async with self._handling:
            if event.repayment_agreement_id() is None:
                outcome = PaymentOutcome.IGNORED
            else:
                async with self.session_factory() as session:
                    outcome = await LifecycleService(session, self.gateway, self.locks).apply_repayment(event)
            await self._advance_checkpoint(event)
        if outcome == PaymentOutcome.DUPLICATE:
            logger.info("Payment %s already applied", event.tx_hash)
        return outcome

    async def _checkpoint(self, account: str) -> Optional[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ListenerCheckpoint.last_ledger_index).where(ListenerCheckpoint.account == account)
            )
            return result.scalar_one_or_none()

    async def _advance_checkpoint(self, event: PaymentEvent) -> None:
        if event.ledger_index is None:
            return
        accounts = {event.account, event.destination} & set(self.watched)
        if not accounts:
            return
        async with self.session_factory() as session:
            for account in accounts:
                checkpoint = await session.get(ListenerCheckpoint, account)
                if checkpoint is None:
                    session.add(ListenerCheckpoint(account=account, last_ledger_index=event.ledger_index))
                elif event.ledger_index > checkpoint.last_ledger_index:
                    checkpoint.last_ledger_index = event.ledger_index
            await session.commit()
