"""Data access layer for students, transactions and settlement runs"""

import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canteen_ledger.domain.exceptions import NotFoundError
from canteen_ledger.domain.loyalty import LOYALTY_MAX, LOYALTY_MIN
from canteen_ledger.domain.models import (
    DEFERRED_STATUSES,
    JobStatus,
    PaymentOutcome,
    PaymentStatus,
    TokenOperation,
    TransactionDraft,
    TransactionKind,
)
from canteen_ledger.infrastructure.database.models import (
    JobExecutionRecord,
    LoyaltyAdjustmentRecord,
    StudentRecord,
    TransactionRecord,
)


def parse_uuid(value: str) -> uuid.UUID:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"Transaction {value} not found")


class StudentRepository:
    """Repository for student accounts (loyalty, status, wallet)"""

    def __init__(self, db: Session):
        self.db = db

    def create_student(self, student_id: str, created_at: datetime, **profile) -> StudentRecord:
        db_student = StudentRecord(student_id=student_id, created_at=created_at, **profile)
        self.db.add(db_student)
        self.db.flush()
        return db_student

    def get_student(self, student_id: str) -> Optional[StudentRecord]:
        return self.db.query(StudentRecord).filter(StudentRecord.student_id == student_id).first()

    def get_student_or_raise(self, student_id: str) -> StudentRecord:
        student = self.get_student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def list_by_active(self, is_active: bool) -> List[StudentRecord]:
        return self.db.query(StudentRecord).filter(StudentRecord.is_active == is_active).all()

    def list_expired_suspensions(self, now: datetime, student_id: Optional[str] = None) -> List[StudentRecord]:
        """Suspended students whose time-boxed suspension ended before `now`"""
        query = self.db.query(StudentRecord).filter(
            StudentRecord.is_active.is_(False),
            StudentRecord.suspension_date.isnot(None),
            StudentRecord.suspension_date < now,
        )
        if student_id is not None:
            query = query.filter(StudentRecord.student_id == student_id)
        return query.all()

    def adjust_loyalty(self, student_id: str, delta: int, now: datetime) -> int:
        """
        Add `delta` (possibly negative) to the loyalty score in a single UPDATE.

        The clamp to [0, 100] happens in SQL so concurrent adjustments never
        lose an update. Returns the resulting score.
        """
        raw = StudentRecord.loyalty + delta
        clamped = case(
            (raw < LOYALTY_MIN, LOYALTY_MIN),
            (raw > LOYALTY_MAX, LOYALTY_MAX),
            else_=raw,
        )
        updated = self._update(
            StudentRecord.student_id == student_id,
            {StudentRecord.loyalty: clamped, StudentRecord.updated_at: now},
        )
        if not updated:
            raise NotFoundError(f"Student {student_id} not found")
        return self.get_student_or_raise(student_id).loyalty

    def debit_tokens(self, student_id: str, cents: int, now: datetime) -> bool:
        """Atomically spend wallet tokens; False if the balance no longer covers it"""
        return bool(
            self._update(
                (StudentRecord.student_id == student_id) & (StudentRecord.token_cents >= cents),
                {StudentRecord.token_cents: StudentRecord.token_cents - cents, StudentRecord.updated_at: now},
            )
        )

    def credit_tokens(self, student_id: str, cents: int, now: datetime) -> None:
        updated = self._update(
            StudentRecord.student_id == student_id,
            {StudentRecord.token_cents: StudentRecord.token_cents + cents, StudentRecord.updated_at: now},
        )
        if not updated:
            raise NotFoundError(f"Student {student_id} not found")

    def set_status(
        self,
        student_id: str,
        is_active: bool,
        now: datetime,
        suspension_date: Optional[datetime] = None,
        reason: Optional[str] = None,
        only_if_active: Optional[bool] = None,
    ) -> bool:
        """
        Write the active flag; `only_if_active` makes it conditional on the current flag.

        Returns False when no row matched (unknown student or flag already changed).
        """
        criteria = StudentRecord.student_id == student_id
        if only_if_active is not None:
            criteria = criteria & (StudentRecord.is_active.is_(only_if_active))
        return bool(
            self._update(
                criteria,
                {
                    StudentRecord.is_active: is_active,
                    StudentRecord.suspension_date: suspension_date,
                    StudentRecord.suspension_reason: reason,
                    StudentRecord.updated_at: now,
                },
            )
        )

    def _update(self, criteria, values) -> int:
        self.db.flush()
        count = self.db.query(StudentRecord).filter(criteria).update(values, synchronize_session=False)
        self.db.expire_all()
        return count


class TransactionRepository:
    """Repository for purchases and token top-ups"""

    def __init__(self, db: Session):
        self.db = db

    def create_purchase(
        self,
        student_id: str,
        draft: TransactionDraft,
        created_at: datetime,
        items: Optional[list] = None,
        cashier_id: Optional[str] = None,
    ) -> TransactionRecord:
        db_transaction = TransactionRecord(
            student_id=student_id,
            kind=TransactionKind.PURCHASE.value,
            token_operation=TokenOperation.SPEND.value if draft.token_used_cents else None,
            items=items,
            cashier_id=cashier_id,
            total_item_cents=draft.total_item_cents,
            transaction_amount_cents=draft.transaction_amount_cents,
            amount_cents=draft.amount_cents,
            change_cents=draft.change_cents,
            token_used_cents=draft.token_used_cents,
            status=draft.status.value,
            due_date=draft.due_date,
            is_overdue=False,
            paid_at=created_at if draft.status == PaymentStatus.PAID else None,
            created_at=created_at,
        )
        self.db.add(db_transaction)
        self.db.flush()
        return db_transaction

    def create_token_topup(
        self, student_id: str, amount_cents: int, created_at: datetime, cashier_id: Optional[str] = None
    ) -> TransactionRecord:
        db_transaction = TransactionRecord(
            student_id=student_id,
            kind=TransactionKind.TOKEN_TOPUP.value,
            description="Bought Token",
            token_operation=TokenOperation.ADD.value,
            cashier_id=cashier_id,
            total_item_cents=amount_cents,
            transaction_amount_cents=amount_cents,
            amount_cents=amount_cents,
            status=PaymentStatus.PAID.value,
            paid_at=created_at,
            created_at=created_at,
        )
        self.db.add(db_transaction)
        self.db.flush()
        return db_transaction

    def get_transaction(self, transaction_id) -> Optional[TransactionRecord]:
        return self.db.query(TransactionRecord).filter(TransactionRecord.id == parse_uuid(transaction_id)).first()

    def get_transaction_or_raise(self, transaction_id) -> TransactionRecord:
        transaction = self.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def list_by_student(self, student_id: str, limit: int = 50) -> List[TransactionRecord]:
        return (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.student_id == student_id)
            .order_by(TransactionRecord.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_deferred_ids(self) -> List[uuid.UUID]:
        """Ids of every Partial/Credit transaction, oldest first"""
        rows = (
            self.db.query(TransactionRecord.id)
            .filter(TransactionRecord.status.in_(DEFERRED_STATUSES))
            .order_by(TransactionRecord.created_at)
            .all()
        )
        return [row[0] for row in rows]

    def list_outstanding(self, student_id: str) -> List[TransactionRecord]:
        return (
            self.db.query(TransactionRecord)
            .filter(
                TransactionRecord.student_id == student_id,
                TransactionRecord.status.in_(DEFERRED_STATUSES),
            )
            .order_by(TransactionRecord.created_at)
            .all()
        )

    def list_overdue(self, student_id: Optional[str] = None) -> List[TransactionRecord]:
        query = self.db.query(TransactionRecord).filter(
            TransactionRecord.status.in_(DEFERRED_STATUSES),
            TransactionRecord.is_overdue.is_(True),
        )
        if student_id is not None:
            query = query.filter(TransactionRecord.student_id == student_id)
        return query.order_by(TransactionRecord.due_date).all()

    def count_overdue(self, student_id: str) -> int:
        return (
            self.db.query(func.count(TransactionRecord.id))
            .filter(
                TransactionRecord.student_id == student_id,
                TransactionRecord.status.in_(DEFERRED_STATUSES),
                TransactionRecord.is_overdue.is_(True),
            )
            .scalar()
        )

    def count_paid_since(self, moment: datetime) -> int:
        """Deferred purchases settled after `moment`"""
        return (
            self.db.query(func.count(TransactionRecord.id))
            .filter(
                TransactionRecord.kind == TransactionKind.PURCHASE.value,
                TransactionRecord.status == PaymentStatus.PAID.value,
                TransactionRecord.paid_at > moment,
                TransactionRecord.paid_at > TransactionRecord.created_at,
            )
            .scalar()
        )

    def compare_and_set_balance(
        self, transaction_id: uuid.UUID, expected_version: int, outcome: PaymentOutcome, now: datetime
    ) -> bool:
        """Write the payment outcome only if nobody touched the record since it was read"""
        values = {
            TransactionRecord.transaction_amount_cents: outcome.transaction_amount_cents,
            TransactionRecord.amount_cents: outcome.amount_cents,
            TransactionRecord.status: outcome.status.value,
            TransactionRecord.due_date: outcome.due_date,
            TransactionRecord.is_overdue: outcome.is_overdue,
            TransactionRecord.version: TransactionRecord.version + 1,
        }
        if outcome.fully_paid:
            values[TransactionRecord.paid_at] = now
        return bool(
            self._update(
                (TransactionRecord.id == transaction_id) & (TransactionRecord.version == expected_version),
                values,
            )
        )

    def set_due_date(self, transaction_id: uuid.UUID, due_date: datetime) -> None:
        self._update(
            (TransactionRecord.id == transaction_id)
            & TransactionRecord.status.in_(DEFERRED_STATUSES)
            & TransactionRecord.due_date.is_(None),
            {TransactionRecord.due_date: due_date},
        )

    def set_overdue(self, transaction_id: uuid.UUID, is_overdue: bool) -> None:
        self._update(
            (TransactionRecord.id == transaction_id) & TransactionRecord.status.in_(DEFERRED_STATUSES),
            {TransactionRecord.is_overdue: is_overdue},
        )

    def record_deduction(self, transaction_id: uuid.UUID, points: int, today: date) -> bool:
        """
        Mark today's deduction on the transaction.

        Conditional on the balance still being open and on no deduction
        having been recorded today, so a payment landing mid-scan or two
        overlapping runs cannot charge the same overdue day.
        """
        return bool(
            self._update(
                (TransactionRecord.id == transaction_id)
                & TransactionRecord.status.in_(DEFERRED_STATUSES)
                & (TransactionRecord.last_deduction_date.is_(None) | (TransactionRecord.last_deduction_date < today)),
                {
                    TransactionRecord.loyalty_deductions: TransactionRecord.loyalty_deductions + 1,
                    TransactionRecord.loyalty_points_deducted: TransactionRecord.loyalty_points_deducted + points,
                    TransactionRecord.last_deduction_date: today,
                },
            )
        )

    def delete_transaction(self, transaction: TransactionRecord) -> None:
        self.db.delete(transaction)
        self.db.flush()

    def _update(self, criteria, values) -> int:
        self.db.flush()
        count = self.db.query(TransactionRecord).filter(criteria).update(values, synchronize_session=False)
        self.db.expire_all()
        return count


class LoyaltyAdjustmentRepository:
    """Audit rows for manual loyalty restorations"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, student_id: str, points: int, reason: str, resulting_loyalty: int, now: datetime):
        db_adjustment = LoyaltyAdjustmentRecord(
            student_id=student_id,
            points=points,
            reason=reason,
            resulting_loyalty=resulting_loyalty,
            created_at=now,
        )
        self.db.add(db_adjustment)
        self.db.flush()
        return db_adjustment

    def list_by_student(self, student_id: str) -> List[LoyaltyAdjustmentRecord]:
        return (
            self.db.query(LoyaltyAdjustmentRecord)
            .filter(LoyaltyAdjustmentRecord.student_id == student_id)
            .order_by(LoyaltyAdjustmentRecord.created_at)
            .all()
        )


class JobExecutionRepository:
    """Repository for settlement execution records"""

    def __init__(self, db: Session):
        self.db = db

    def get_for_date(self, job_type: str, execution_date: date) -> Optional[JobExecutionRecord]:
        return (
            self.db.query(JobExecutionRecord)
            .filter(JobExecutionRecord.job_type == job_type, JobExecutionRecord.execution_date == execution_date)
            .first()
        )

    def try_claim(
        self,
        job_type: str,
        execution_date: date,
        executed_by: str,
        now: datetime,
        stale_after: timedelta,
    ) -> Optional[JobExecutionRecord]:
        """
        Claim today's run; returns the running record, or None if another invocation owns it.

        The insert relies on the (job_type, execution_date) unique constraint.
        A failed run, or a running one older than `stale_after`, is taken over
        with a compare-and-swap on its status and start time. Commits.
        """
        db_execution = JobExecutionRecord(
            job_type=job_type,
            execution_date=execution_date,
            status=JobStatus.RUNNING.value,
            executed_by=executed_by,
            started_at=now,
            errors=[],
        )
        self.db.add(db_execution)
        try:
            self.db.commit()
            return db_execution
        except IntegrityError:
            self.db.rollback()

        existing = self.get_for_date(job_type, execution_date)
        if existing is None or existing.status == JobStatus.COMPLETED.value:
            return None
        if existing.status == JobStatus.RUNNING.value and existing.started_at > now - stale_after:
            return None

        claimed = (
            self.db.query(JobExecutionRecord)
            .filter(
                JobExecutionRecord.id == existing.id,
                JobExecutionRecord.status == existing.status,
                JobExecutionRecord.started_at == existing.started_at,
            )
            .update(
                {
                    JobExecutionRecord.status: JobStatus.RUNNING.value,
                    JobExecutionRecord.executed_by: executed_by,
                    JobExecutionRecord.started_at: now,
                    JobExecutionRecord.finished_at: None,
                    JobExecutionRecord.errors: [],
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        if not claimed:
            return None
        self.db.expire_all()
        return self.get_for_date(job_type, execution_date)

    def finish(self, execution_id: uuid.UUID, status: str, now: datetime, **counters) -> None:
        """Close the run with its final status, counters and error list. Commits."""
        values = {
            JobExecutionRecord.status: status,
            JobExecutionRecord.finished_at: now,
        }
        for name, value in counters.items():
            values[getattr(JobExecutionRecord, name)] = value
        self.db.query(JobExecutionRecord).filter(JobExecutionRecord.id == execution_id).update(
            values, synchronize_session=False
        )
        self.db.commit()

    def history(self, job_type: str, limit: int = 10) -> List[JobExecutionRecord]:
        return (
            self.db.query(JobExecutionRecord)
            .filter(JobExecutionRecord.job_type == job_type)
            .order_by(JobExecutionRecord.execution_date.desc())
            .limit(limit)
            .all()
        )

    def last_completed(self, job_type: str) -> Optional[JobExecutionRecord]:
        return (
            self.db.query(JobExecutionRecord)
            .filter(
                JobExecutionRecord.job_type == job_type,
                JobExecutionRecord.status == JobStatus.COMPLETED.value,
            )
            .order_by(JobExecutionRecord.execution_date.desc())
            .first()
        )
