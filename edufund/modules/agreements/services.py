"""
Lifecycle Orchestrator - Service Layer

Drives every loan agreement transition:

    AWAITING_FUNDING -> FUNDED -> REPAYING -> REPAID -> CLOSED

Prepare operations build unsigned ledger instructions and never change state.
Record operations store outcomes confirmed on the ledger. Every mutation runs
under the agreement's lock and reloads the row before validating, and the
row's version column turns any write that slipped past the lock into a
conflict instead of an overwrite.
"""
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from edufund.core.config import settings
from edufund.core.exceptions import (
    ConflictDetected, EduFundError, ResourceNotFound, ValidationFailed
)
from edufund.core.locks import LockManager, agreement_key, request_key
from edufund.core.money import (
    maturity_epoch, ripple_to_unix, total_owed_for, unix_to_ripple, utc_now
)
from edufund.modules.agreements.models import (
    AgreementEvent, AgreementInstallment, AgreementStatus, LoanAgreement,
    ProcessedPayment, STATUS_ORDER
)
from edufund.modules.ledger.events import PaymentEvent
from edufund.modules.ledger.gateway import Instruction, LedgerGateway
from edufund.modules.loan_requests.models import LoanRequest, LoanRequestStatus
from edufund.modules.metadata.publisher import MetadataPublisher
from edufund.modules.offers.models import Offer, OfferStatus

logger = logging.getLogger(__name__)

ACCEPTABLE_REQUEST_STATUSES = (LoanRequestStatus.OPEN, LoanRequestStatus.UNDER_NEGOTIATION)


@dataclass
class ReconcileOutcome:
    agreement_id: int
    released: List[int]
    failed: List[int]
    advanced: bool


class PaymentOutcome:
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class LifecycleService:
    """Single writer of loan agreement state"""

    def __init__(self, db: AsyncSession, gateway: LedgerGateway,
                 locks: LockManager, publisher: Optional[MetadataPublisher] = None):
        self.db = db
        self.gateway = gateway
        self.locks = locks
        self.publisher = publisher

    # ============================================================
    # Loading and bookkeeping
    # ============================================================

    async def get_agreement(self, agreement_id: int) -> LoanAgreement:
        result = await self.db.execute(
            select(LoanAgreement)
            .where(LoanAgreement.id == agreement_id)
            .execution_options(populate_existing=True)
        )
        agreement = result.scalar_one_or_none()
        if agreement is None:
            raise ResourceNotFound(f"Loan agreement {agreement_id} not found", reason="agreement_not_found")
        return agreement

    async def list_events(self, agreement_id: int) -> List[AgreementEvent]:
        await self.get_agreement(agreement_id)
        result = await self.db.execute(
            select(AgreementEvent)
            .where(AgreementEvent.agreement_id == agreement_id)
            .order_by(AgreementEvent.id)
        )
        return list(result.scalars().all())

    async def list_agreements(self, student_address: Optional[str] = None,
                              company_address: Optional[str] = None) -> List[LoanAgreement]:
        """Agreements of a student or a company, newest first"""
        if not student_address and not company_address:
            raise ValidationFailed(
                "Give a student or company address to list agreements",
                reason="party_required",
            )
        query = select(LoanAgreement)
        if student_address:
            query = query.where(LoanAgreement.student_address == student_address)
        if company_address:
            query = query.where(LoanAgreement.company_address == company_address)
        result = await self.db.execute(query.order_by(LoanAgreement.created_at.desc(), LoanAgreement.id.desc()))
        return list(result.scalars().all())

    @asynccontextmanager
    async def _locked(self, agreement_id: int):
        """Hold the agreement lock and yield a freshly loaded row"""
        async with self.locks.hold(agreement_key(agreement_id)):
            yield await self.get_agreement(agreement_id)

    def _record_event(self, agreement: LoanAgreement, name: str, **details: Any) -> None:
        self.db.add(AgreementEvent(agreement_id=agreement.id, name=name, details=details or None))

    def _touch(self, agreement: LoanAgreement) -> None:
        # Forces an UPDATE of the agreement row so its version moves
        agreement.updated_at = utc_now()

    def _advance(self, agreement: LoanAgreement, target: AgreementStatus, **details: Any) -> None:
        current = STATUS_ORDER.index(agreement.status)
        if STATUS_ORDER.index(target) != current + 1:
            raise ValidationFailed(
                f"Agreement {agreement.id} cannot move from {agreement.status.value} to {target.value}",
                reason="invalid_transition",
            )
        previous = agreement.status
        agreement.status = target
        self._touch(agreement)
        self._record_event(agreement, target.value.lower(), previous=previous.value, **details)
        logger.info("Agreement %s: %s -> %s", agreement.id, previous.value, target.value)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConflictDetected(
                "Agreement was modified concurrently; retry the operation",
                reason="concurrent_modification",
                retryable=True,
            )

    @staticmethod
    def _require_status(agreement: LoanAgreement, expected: AgreementStatus, action: str) -> None:
        if agreement.status != expected:
            raise ValidationFailed(
                f"Cannot {action}: agreement {agreement.id} is {agreement.status.value}, expected {expected.value}",
                reason="invalid_status",
                details={"status": agreement.status.value, "expected": expected.value},
            )

    # ============================================================
    # Offer acceptance
    # ============================================================

    async def accept_offer(self, request_id: int, offer_id: int) -> Tuple[LoanAgreement, Instruction]:
        """
        Create the agreement for an offer and return the unsigned mint.

        Retrying after a failed metadata publish resumes the same agreement.
        """
        async with self.locks.hold(request_key(request_id)):
            request = await self._load_request(request_id)
            offer = await self._load_offer(offer_id)

            existing = await self._agreement_for_request(request_id)
            if existing is not None:
                if existing.offer_id == offer_id and existing.metadata_uri is None:
                    logger.info("Resuming acceptance of offer %s for request %s", offer_id, request_id)
                    return await self._publish_and_prepare_mint(existing.id, request, offer)
                raise ValidationFailed(
                    f"Loan request {request_id} has already accepted an offer",
                    reason="request_already_accepted",
                )

            if request.status == LoanRequestStatus.ACCEPTED:
                raise ValidationFailed(
                    f"Loan request {request_id} has already accepted an offer",
                    reason="request_already_accepted",
                )
            if request.status not in ACCEPTABLE_REQUEST_STATUSES:
                raise ValidationFailed(
                    f"Loan request {request_id} is {request.status.value} and cannot accept offers",
                    reason="request_not_open",
                )
            if offer.request_id != request.id:
                raise ValidationFailed(
                    f"Offer {offer_id} does not belong to request {request_id}",
                    reason="offer_request_mismatch",
                )
            if offer.status != OfferStatus.PENDING:
                raise ValidationFailed(
                    f"Offer {offer_id} is {offer.status.value}, expected PENDING",
                    reason="offer_not_pending",
                )
            if not request.installments or request.total_amount is None:
                raise ValidationFailed(
                    f"Loan request {request_id} has no funding schedule",
                    reason="request_incomplete",
                )

            agreement = LoanAgreement(
                request_id=request.id,
                offer_id=offer.id,
                student_address=request.student_address,
                company_address=offer.company_address,
                school_address=request.school_address,
                interest_rate=offer.interest_rate,
                principal=request.total_amount,
                total_owed=total_owed_for(request.total_amount, offer.interest_rate),
                amount_paid=0,
                status=AgreementStatus.AWAITING_FUNDING,
            )
            agreement.installments = [
                AgreementInstallment(position=item.position, amount=item.amount, due_date=item.due_date)
                for item in request.installments
            ]
            self.db.add(agreement)
            await self.db.flush()
            self._record_event(agreement, "created", offer_id=offer.id, total_owed=str(agreement.total_owed))

            offer.status = OfferStatus.ACCEPTED
            siblings = await self.db.execute(
                select(Offer).where(
                    Offer.request_id == request.id,
                    Offer.id != offer.id,
                    Offer.status == OfferStatus.PENDING,
                )
            )
            rejected = []
            for sibling in siblings.scalars().all():
                sibling.status = OfferStatus.REJECTED
                rejected.append(sibling.id)
            request.status = LoanRequestStatus.ACCEPTED

            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise ConflictDetected(
                    f"Loan request {request_id} was accepted concurrently",
                    reason="request_already_accepted",
                    retryable=False,
                )
            logger.info(
                "Offer %s accepted for request %s: agreement %s, total owed %s, rejected offers %s",
                offer.id, request.id, agreement.id, agreement.total_owed, rejected,
            )
            return await self._publish_and_prepare_mint(agreement.id, request, offer)

    async def _publish_and_prepare_mint(self, agreement_id: int, request: LoanRequest,
                                        offer: Offer) -> Tuple[LoanAgreement, Instruction]:
        agreement = await self.get_agreement(agreement_id)
        if self.publisher is None:
            raise ValidationFailed("No metadata publisher configured", reason="publisher_not_configured")
        uri = await self.publisher.publish(self._metadata_document(agreement, request, offer))

        async with self._locked(agreement_id) as agreement:
            if agreement.metadata_uri is None:
                agreement.metadata_uri = uri
                self._touch(agreement)
                self._record_event(agreement, "metadata_published", uri=uri)
                await self._commit()

        instruction = await self.gateway.create_asset(agreement.student_address, agreement.metadata_uri)
        return agreement, instruction

    @staticmethod
    def _metadata_document(agreement: LoanAgreement, request: LoanRequest, offer: Offer) -> Dict[str, Any]:
        return {
            "agreementId": agreement.id,
            "requestId": request.id,
            "student": request.student_name,
            "studentAddress": agreement.student_address,
            "companyAddress": agreement.company_address,
            "schoolAddress": agreement.school_address,
            "program": request.program,
            "principal": str(agreement.principal),
            "interestRate": str(agreement.interest_rate),
            "totalOwed": str(agreement.total_owed),
            "installments": [
                {"amount": str(item.amount), "dueDate": item.due_date.isoformat()}
                for item in agreement.installments
            ],
            "workObligationYears": offer.work_obligation_years,
            "termsUri": offer.terms_uri,
            "createdAt": agreement.created_at.isoformat(),
        }

    async def _load_request(self, request_id: int) -> LoanRequest:
        result = await self.db.execute(
            select(LoanRequest).where(LoanRequest.id == request_id).execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFound(f"Loan request {request_id} not found", reason="request_not_found")
        return request

    async def _load_offer(self, offer_id: int) -> Offer:
        result = await self.db.execute(
            select(Offer).where(Offer.id == offer_id).execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            raise ResourceNotFound(f"Offer {offer_id} not found", reason="offer_not_found")
        return offer

    async def _agreement_for_request(self, request_id: int) -> Optional[LoanAgreement]:
        result = await self.db.execute(
            select(LoanAgreement)
            .where(LoanAgreement.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ============================================================
    # Minting and transfer (AWAITING_FUNDING -> FUNDED)
    # ============================================================

    async def prepare_mint(self, agreement_id: int) -> Instruction:
        agreement = await self.get_agreement(agreement_id)
        self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "prepare mint")
        if agreement.metadata_uri is None:
            raise ValidationFailed(
                "Agreement metadata has not been published; retry accepting the offer",
                reason="metadata_not_published",
            )
        if agreement.asset_id is not None:
            raise ValidationFailed("Debt NFT has already been minted", reason="asset_already_minted")
        return await self.gateway.create_asset(agreement.student_address, agreement.metadata_uri)

    async def record_asset_minted(self, agreement_id: int, asset_id: str) -> LoanAgreement:
        async with self._locked(agreement_id) as agreement:
            if agreement.asset_id == asset_id:
                return agreement
            if agreement.asset_id is not None:
                raise ConflictDetected(
                    f"Agreement {agreement_id} already records asset {agreement.asset_id}",
                    reason="asset_mismatch",
                )
            self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "record mint")
            agreement.asset_id = asset_id
            self._touch(agreement)
            self._record_event(agreement, "asset_minted", asset_id=asset_id)
            await self._commit()
            logger.info("Agreement %s: debt NFT %s minted", agreement_id, asset_id)
            return agreement

    async def prepare_transfer_offer(self, agreement_id: int) -> Instruction:
        agreement = await self.get_agreement(agreement_id)
        self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "prepare transfer offer")
        if agreement.asset_id is None:
            raise ValidationFailed("Debt NFT has not been minted yet", reason="asset_missing")
        return await self.gateway.create_transfer_offer(
            agreement.student_address, agreement.asset_id, agreement.company_address
        )

    async def record_transfer_offer(self, agreement_id: int, offer_ref: str) -> LoanAgreement:
        async with self._locked(agreement_id) as agreement:
            if agreement.transfer_offer_ref == offer_ref:
                return agreement
            self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "record transfer offer")
            if agreement.transfer_offer_ref is not None:
                raise ConflictDetected(
                    f"Agreement {agreement_id} already records transfer offer {agreement.transfer_offer_ref}",
                    reason="transfer_offer_mismatch",
                )
            agreement.transfer_offer_ref = offer_ref
            self._touch(agreement)
            self._record_event(agreement, "transfer_offer_created", offer_ref=offer_ref)
            await self._commit()
            return agreement

    async def prepare_accept_transfer(self, agreement_id: int) -> Instruction:
        agreement = await self.get_agreement(agreement_id)
        self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "prepare transfer acceptance")
        if agreement.transfer_offer_ref is None:
            raise ValidationFailed("No transfer offer recorded yet", reason="transfer_offer_missing")
        return await self.gateway.accept_transfer_offer(agreement.company_address, agreement.transfer_offer_ref)

    async def record_funded(self, agreement_id: int, asset_id: str) -> LoanAgreement:
        async with self._locked(agreement_id) as agreement:
            if agreement.asset_id is not None and agreement.asset_id != asset_id:
                raise ConflictDetected(
                    f"Agreement {agreement_id} records asset {agreement.asset_id}, not {asset_id}",
                    reason="asset_mismatch",
                )
            if agreement.status != AgreementStatus.AWAITING_FUNDING and agreement.asset_id == asset_id:
                return agreement
            self._require_status(agreement, AgreementStatus.AWAITING_FUNDING, "record funding")
            agreement.asset_id = asset_id
            self._advance(agreement, AgreementStatus.FUNDED, asset_id=asset_id)
            await self._commit()
            return agreement

    # ============================================================
    # Installment escrows (FUNDED -> REPAYING)
    # ============================================================

    async def prepare_installment_locks(self, agreement_id: int,
                                        now: Optional[int] = None) -> List[Tuple[int, Instruction]]:
        """Unsigned escrows for every installment not locked or released yet"""
        agreement = await self.get_agreement(agreement_id)
        self._require_status(agreement, AgreementStatus.FUNDED, "prepare escrows")
        now = int(time.time()) if now is None else now

        instructions = []
        for item in agreement.installments:
            if item.lock_ref is not None or item.released:
                continue
            matures = max(maturity_epoch(item.due_date, settings.SETTLEMENT_UTC_OFFSET_MINUTES), now + 1)
            instruction = await self.gateway.lock_funds(
                agreement.company_address, agreement.school_address, item.amount, unix_to_ripple(matures)
            )
            instructions.append((item.position, instruction))
        return instructions

    async def record_installment_lock(self, agreement_id: int, index: int,
                                      lock_ref: str, lock_sequence: int) -> LoanAgreement:
        async with self._locked(agreement_id) as agreement:
            if index < 0 or index >= len(agreement.installments):
                raise ValidationFailed(
                    f"Agreement {agreement_id} has no installment {index}",
                    reason="installment_not_found",
                )
            item = agreement.installments[index]
            if item.lock_ref == lock_ref and item.lock_sequence == lock_sequence:
                return agreement
            if item.lock_ref is not None:
                raise ConflictDetected(
                    f"Installment {index} already records escrow {item.lock_ref}",
                    reason="lock_mismatch",
                )
            if item.released:
                raise ValidationFailed(f"Installment {index} is already released", reason="installment_released")
            self._require_status(agreement, AgreementStatus.FUNDED, "record escrow")
            await self._require_unused_lock(lock_ref)
            await self._require_lock_on_ledger(agreement, item, lock_ref)
            item.lock_ref = lock_ref
            item.lock_sequence = lock_sequence
            self._touch(agreement)
            self._record_event(agreement, "lock_created", installment=index, lock_ref=lock_ref,
                               lock_sequence=lock_sequence)
            await self._commit()
            logger.info("Agreement %s: installment %s locked in escrow %s", agreement_id, index, lock_ref)
            return agreement

    async def _require_unused_lock(self, lock_ref: str) -> None:
        result = await self.db.execute(
            select(AgreementInstallment.agreement_id, AgreementInstallment.position)
            .where(AgreementInstallment.lock_ref == lock_ref)
        )
        holder = result.first()
        if holder is not None:
            raise ConflictDetected(
                f"Escrow {lock_ref} is already recorded for agreement {holder[0]} installment {holder[1]}",
                reason="lock_in_use",
            )

    async def _require_lock_on_ledger(self, agreement: LoanAgreement, item: AgreementInstallment,
                                      lock_ref: str) -> None:
        """
        The escrow must exist on the ledger with the installment's terms.

        Recorded escrows that later vanish from the ledger count as finished
        out of band, so only a matching escrow may be recorded.
        """
        objects = await self.gateway.get_account_objects(agreement.company_address)
        lock = next((candidate for candidate in objects if candidate.index == lock_ref), None)
        if lock is None:
            raise ValidationFailed(
                f"Escrow {lock_ref} is not on the ledger for {agreement.company_address}",
                reason="lock_not_found",
            )

        matures = maturity_epoch(item.due_date, settings.SETTLEMENT_UTC_OFFSET_MINUTES)
        problems = {}
        if lock.owner != agreement.company_address:
            problems["owner"] = lock.owner
        if lock.destination != agreement.school_address:
            problems["destination"] = lock.destination
        if lock.amount != item.amount:
            problems["amount"] = None if lock.amount is None else str(lock.amount)
        if lock.finish_after is None or ripple_to_unix(lock.finish_after) < matures:
            problems["finishAfter"] = lock.finish_after
        if problems:
            raise ValidationFailed(
                f"Escrow {lock_ref} does not match installment {item.position}",
                reason="lock_terms_mismatch",
                details=problems,
            )

    async def reconcile_locks(self, agreement_id: int, now: Optional[int] = None) -> ReconcileOutcome:
        """
        Release matured escrows of a FUNDED agreement.

        An escrow missing from the ledger was finished out of band and is
        marked released without resubmitting. A failed release leaves the
        installment unreleased for the next pass.
        """
        now = int(time.time()) if now is None else now
        outcome = ReconcileOutcome(agreement_id=agreement_id, released=[], failed=[], advanced=False)

        async with self._locked(agreement_id) as agreement:
            if agreement.status != AgreementStatus.FUNDED:
                return outcome
            pending = [item for item in agreement.installments if item.lock_ref and not item.released]
            if pending:
                on_ledger = {
                    lock.index: lock
                    for lock in await self.gateway.get_account_objects(agreement.company_address)
                }
            for item in pending:
                lock = on_ledger.get(item.lock_ref)
                if lock is None:
                    self._mark_released(agreement, item, out_of_band=True)
                    outcome.released.append(item.position)
                    continue
                if lock.finish_after is not None and ripple_to_unix(lock.finish_after) > now:
                    continue
                if item.lock_sequence is None:
                    logger.error("Agreement %s installment %s has no escrow sequence", agreement_id, item.position)
                    outcome.failed.append(item.position)
                    continue
                try:
                    tx_hash = await self.gateway.release_locked_funds(agreement.company_address, item.lock_sequence)
                except EduFundError as e:
                    logger.error("Agreement %s installment %s release failed: %s", agreement_id, item.position, e)
                    outcome.failed.append(item.position)
                    continue
                self._mark_released(agreement, item, tx_hash=tx_hash)
                outcome.released.append(item.position)

            if agreement.all_released:
                self._advance(agreement, AgreementStatus.REPAYING)
                outcome.advanced = True
            if outcome.released or outcome.advanced:
                await self._commit()
        return outcome

    def _mark_released(self, agreement: LoanAgreement, item: AgreementInstallment,
                       tx_hash: Optional[str] = None, out_of_band: bool = False) -> None:
        item.released = True
        item.released_at = utc_now()
        self._touch(agreement)
        self._record_event(agreement, "lock_released", installment=item.position,
                           lock_ref=item.lock_ref, tx_hash=tx_hash, out_of_band=out_of_band)
        logger.info("Agreement %s: installment %s released%s", agreement.id, item.position,
                    " (already finished on ledger)" if out_of_band else "")

    async def agreements_pending_release(self) -> List[int]:
        result = await self.db.execute(
            select(LoanAgreement.id)
            .join(AgreementInstallment, AgreementInstallment.agreement_id == LoanAgreement.id)
            .where(
                LoanAgreement.status == AgreementStatus.FUNDED,
                AgreementInstallment.lock_ref.isnot(None),
                AgreementInstallment.released.is_(False),
            )
            .distinct()
            .order_by(LoanAgreement.id)
        )
        return list(result.scalars().all())

    # ============================================================
    # Repayment (REPAYING -> REPAID)
    # ============================================================

    async def repaying_student_addresses(self) -> List[str]:
        result = await self.db.execute(
            select(LoanAgreement.student_address)
            .where(LoanAgreement.status == AgreementStatus.REPAYING)
            .distinct()
        )
        return sorted(result.scalars().all())

    async def apply_repayment(self, payment: PaymentEvent) -> str:
        """Credit a LoanRepayment payment to its agreement, at most once per tx hash"""
        agreement_id = payment.repayment_agreement_id()
        if agreement_id is None or not payment.validated or not payment.tx_hash:
            return PaymentOutcome.IGNORED
        if payment.amount is None or payment.amount <= 0:
            logger.warning("Repayment %s for agreement %s is not a native amount; ignored",
                           payment.tx_hash, agreement_id)
            return PaymentOutcome.IGNORED

        try:
            async with self._locked(agreement_id) as agreement:
                if payment.account != agreement.student_address or payment.destination != agreement.company_address:
                    logger.warning(
                        "Repayment %s names agreement %s but moves %s -> %s; ignored",
                        payment.tx_hash, agreement_id, payment.account, payment.destination,
                    )
                    return PaymentOutcome.IGNORED

                seen = await self.db.execute(
                    select(ProcessedPayment.id).where(ProcessedPayment.tx_hash == payment.tx_hash)
                )
                if seen.scalar_one_or_none() is not None:
                    return PaymentOutcome.DUPLICATE

                if agreement.status != AgreementStatus.REPAYING:
                    logger.warning("Repayment %s for agreement %s arrived while %s; ignored",
                                   payment.tx_hash, agreement_id, agreement.status.value)
                    return PaymentOutcome.IGNORED

                credited = min(payment.amount, agreement.outstanding)
                excess = payment.amount - credited
                agreement.amount_paid = agreement.amount_paid + credited
                self._touch(agreement)
                self.db.add(ProcessedPayment(
                    tx_hash=payment.tx_hash,
                    agreement_id=agreement.id,
                    amount=payment.amount,
                    credited=credited,
                    excess=excess,
                    ledger_index=payment.ledger_index,
                ))
                self._record_event(agreement, "payment_applied", tx_hash=payment.tx_hash,
                                   amount=str(payment.amount), credited=str(credited), excess=str(excess),
                                   amount_paid=str(agreement.amount_paid))
                if excess:
                    logger.warning("Repayment %s overpays agreement %s by %s drops",
                                   payment.tx_hash, agreement_id, excess)

                if agreement.amount_paid >= agreement.total_owed and agreement.status == AgreementStatus.REPAYING:
                    self._advance(agreement, AgreementStatus.REPAID, amount_paid=str(agreement.amount_paid))

                try:
                    await self._commit()
                except IntegrityError:
                    await self.db.rollback()
                    return PaymentOutcome.DUPLICATE
                logger.info("Agreement %s: repayment %s credited %s (%s/%s)", agreement_id,
                            payment.tx_hash, credited, agreement.amount_paid, agreement.total_owed)
                return PaymentOutcome.APPLIED
        except ResourceNotFound:
            logger.warning("Repayment %s names unknown agreement %s; ignored", payment.tx_hash, agreement_id)
            return PaymentOutcome.IGNORED

    # ============================================================
    # Closing (REPAID -> CLOSED)
    # ============================================================

    async def prepare_burn(self, agreement_id: int) -> Instruction:
        agreement = await self.get_agreement(agreement_id)
        self._require_status(agreement, AgreementStatus.REPAID, "prepare burn")
        if agreement.asset_id is None:
            raise ValidationFailed("Agreement has no debt NFT to burn", reason="asset_missing")
        return await self.gateway.burn_asset(agreement.company_address, agreement.asset_id)

    async def record_closed(self, agreement_id: int, tx_hash: Optional[str] = None) -> LoanAgreement:
        async with self._locked(agreement_id) as agreement:
            self._require_status(agreement, AgreementStatus.REPAID, "record burn")
            if agreement.asset_id is None:
                raise ValidationFailed("Agreement has no debt NFT to burn", reason="asset_missing")
            self._advance(agreement, AgreementStatus.CLOSED, asset_id=agreement.asset_id, tx_hash=tx_hash)
            await self._commit()
            return agreement
