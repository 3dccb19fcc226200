"""
Escrow Reconciliation Loop

Periodically releases matured installment escrows of FUNDED agreements and
moves an agreement to REPAYING once every installment is released.
"""
import asyncio
import logging
import time
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edufund.core.config import settings
from edufund.core.locks import LockManager
from edufund.modules.agreements.services import LifecycleService, ReconcileOutcome
from edufund.modules.ledger.gateway import LedgerGateway

logger = logging.getLogger(__name__)


class EscrowReconciler:
    """Background service; ``start()`` in the app lifespan, ``stop()`` on shutdown"""

    def __init__(self, session_factory: async_sessionmaker, gateway: LedgerGateway, locks: LockManager,
                 on_repaying: Optional[Callable[[], None]] = None,
                 interval: float = None, agreement_timeout: float = None):
        self.session_factory = session_factory
        self.gateway = gateway
        self.locks = locks
        self.on_repaying = on_repaying
        self.interval = interval or settings.RECONCILE_INTERVAL_SECONDS
        self.agreement_timeout = agreement_timeout or settings.RECONCILE_AGREEMENT_TIMEOUT_SECONDS
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="escrow-reconciler")
        logger.info("Escrow reconciler started (interval %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Escrow reconciler stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Escrow reconciliation pass failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    async def run_once(self, now: Optional[int] = None) -> List[ReconcileOutcome]:
        """One pass over every FUNDED agreement with unreleased escrows"""
        now = int(time.time()) if now is None else now
        async with self.session_factory() as session:
            agreement_ids = await self._service(session).agreements_pending_release()

        if agreement_ids:
            logger.info("Reconciling escrows of %d agreement(s)", len(agreement_ids))

        outcomes = []
        for agreement_id in agreement_ids:
            try:
                outcome = await asyncio.wait_for(
                    self._reconcile(agreement_id, now), timeout=self.agreement_timeout
                )
            except asyncio.TimeoutError:
                logger.error("Reconciling agreement %s timed out", agreement_id)
                continue
            except Exception:
                logger.exception("Reconciling agreement %s failed", agreement_id)
                continue
            outcomes.append(outcome)
            if outcome.failed:
                logger.warning("Agreement %s: releases failed for installments %s; retrying next pass",
                               agreement_id, outcome.failed)
            if outcome.advanced and self.on_repaying is not None:
                self.on_repaying()
        return outcomes

    async def _reconcile(self, agreement_id: int, now: int) -> ReconcileOutcome:
        async with self.session_factory() as session:
            return await self._service(session).reconcile_locks(agreement_id, now=now)

    def _service(self, session: AsyncSession) -> LifecycleService:
        return LifecycleService(session, self.gateway, self.locks)
