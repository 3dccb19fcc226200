from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List, Optional
import logging

from edufund.core.exceptions import ValidationFailed, ResourceNotFound
from edufund.core.locks import LockManager, LocalLockManager, request_key
from edufund.modules.loan_requests.models import LoanRequest, RequestInstallment, LoanRequestStatus
from edufund.modules.loan_requests.schemas import (
    LoanRequestCreate, LoanRequestUpdate, InstallmentIn,
    missing_submission_fields, schedule_mismatch
)
from edufund.modules.agreements.models import LoanAgreement

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (LoanRequestStatus.DRAFT, LoanRequestStatus.OPEN)

SCALAR_FIELDS = (
    "student_address", "student_name", "school_address", "program",
    "total_amount", "graduation_date", "industry", "description",
)


class LoanRequestService:
    """Student-side management of funding requests"""

    def __init__(self, db: AsyncSession, locks: Optional[LockManager] = None):
        self.db = db
        self.locks = locks or LocalLockManager()

    async def get_request(self, request_id: int) -> LoanRequest:
        result = await self.db.execute(
            select(LoanRequest).where(LoanRequest.id == request_id).execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise ResourceNotFound(f"Loan request {request_id} not found", reason="request_not_found")
        return request

    async def list_open_requests(self, industry: Optional[str] = None) -> List[LoanRequest]:
        """OPEN requests, newest first, optionally filtered by industry"""
        query = select(LoanRequest).where(LoanRequest.status == LoanRequestStatus.OPEN)
        if industry:
            query = query.where(LoanRequest.industry == industry)
        result = await self.db.execute(query.order_by(LoanRequest.created_at.desc(), LoanRequest.id.desc()))
        return list(result.scalars().all())

    async def list_student_requests(self, student_address: str) -> List[LoanRequest]:
        """Every request of one student, drafts and accepted ones included"""
        result = await self.db.execute(
            select(LoanRequest)
            .where(LoanRequest.student_address == student_address)
            .order_by(LoanRequest.created_at.desc(), LoanRequest.id.desc())
        )
        return list(result.scalars().all())

    async def create_request(self, data: LoanRequestCreate) -> LoanRequest:
        request = LoanRequest(
            status=LoanRequestStatus(data.status.value),
            **{name: getattr(data, name) for name in SCALAR_FIELDS}
        )
        request.installments = self._build_installments(data.installments or [])
        self.db.add(request)
        await self.db.commit()
        logger.info("Loan request %s created as %s", request.id, request.status.value)
        return await self.get_request(request.id)

    async def update_request(self, request_id: int, data: LoanRequestUpdate) -> LoanRequest:
        async with self.locks.hold(request_key(request_id)):
            return await self._update_request(request_id, data)

    async def _update_request(self, request_id: int, data: LoanRequestUpdate) -> LoanRequest:
        request = await self.get_request(request_id)
        if request.status not in EDITABLE_STATUSES:
            raise ValidationFailed(
                f"Loan request {request_id} is {request.status.value} and can no longer be edited",
                reason="request_not_editable",
            )

        changes = data.model_dump(exclude_unset=True)
        new_installments = changes.pop("installments", None)
        for name, value in changes.items():
            setattr(request, name, value)
        if new_installments is not None:
            request.installments = self._build_installments(data.installments)

        if request.status != LoanRequestStatus.DRAFT:
            self._ensure_complete(request)

        await self.db.commit()
        return await self.get_request(request.id)

    async def submit_request(self, request_id: int) -> LoanRequest:
        """Publish a DRAFT request to companies"""
        async with self.locks.hold(request_key(request_id)):
            return await self._submit_request(request_id)

    async def _submit_request(self, request_id: int) -> LoanRequest:
        request = await self.get_request(request_id)
        if request.status != LoanRequestStatus.DRAFT:
            raise ValidationFailed(
                f"Only DRAFT requests can be submitted (request is {request.status.value})",
                reason="request_not_draft",
            )
        self._ensure_complete(request)
        request.status = LoanRequestStatus.OPEN
        await self.db.commit()
        logger.info("Loan request %s submitted", request.id)
        return await self.get_request(request.id)

    async def delete_request(self, request_id: int) -> None:
        async with self.locks.hold(request_key(request_id)):
            await self._delete_request(request_id)

    async def _delete_request(self, request_id: int) -> None:
        request = await self.get_request(request_id)
        if request.status not in EDITABLE_STATUSES:
            raise ValidationFailed(
                f"Loan request {request_id} is {request.status.value} and cannot be deleted",
                reason="request_not_deletable",
            )
        agreements = await self.db.execute(
            select(func.count(LoanAgreement.id)).where(LoanAgreement.request_id == request_id)
        )
        if agreements.scalar_one():
            raise ValidationFailed(
                f"Loan request {request_id} has an agreement and cannot be deleted",
                reason="request_not_deletable",
            )
        await self.db.delete(request)
        await self.db.commit()
        logger.info("Loan request %s deleted", request_id)

    @staticmethod
    def _build_installments(items: List[InstallmentIn]) -> List[RequestInstallment]:
        return [
            RequestInstallment(position=position, amount=item.amount, due_date=item.due_date)
            for position, item in enumerate(items)
        ]

    @staticmethod
    def _ensure_complete(request: LoanRequest) -> None:
        values = {name: getattr(request, name) for name in SCALAR_FIELDS}
        values["installments"] = list(request.installments)
        missing = missing_submission_fields(values)
        if missing:
            raise ValidationFailed(
                f"Missing required fields: {', '.join(missing)}",
                reason="request_incomplete",
                details={"missing": missing},
            )
        mismatch = schedule_mismatch(request.total_amount, request.installments)
        if mismatch:
            raise ValidationFailed(mismatch, reason="schedule_mismatch")
