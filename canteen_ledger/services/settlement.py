"""Daily settlement job - overdue evaluation, loyalty penalties and suspension cascade"""

import logging
import time
import uuid
from datetime import date, timedelta
from typing import List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from canteen_ledger.config import settings
from canteen_ledger.domain.exceptions import JobExecutionError
from canteen_ledger.domain.models import DEFERRED_STATUSES, JobStatus, SettlementResult
from canteen_ledger.domain.overdue import (
    calculate_due_date,
    days_overdue,
    deducted_today,
    deduction_points,
    is_overdue,
)
from canteen_ledger.infrastructure.database.models import JobExecutionRecord
from canteen_ledger.infrastructure.database.repositories import (
    JobExecutionRepository,
    StudentRepository,
    TransactionRepository,
)
from canteen_ledger.infrastructure.observability.logging import log_settlement_run
from canteen_ledger.infrastructure.observability.metrics import (
    loyalty_deduction_counter,
    loyalty_points_deducted_counter,
    settlement_duration_histogram,
    settlement_run_counter,
)
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)

JOB_TYPE = "daily_payment_processing"


class SettlementJob:
    """
    Once-per-day sweep over every Partial/Credit transaction.

    Flow:
    1. Claim today's execution record (duplicate triggers become no-ops)
    2. Reactivate students whose suspension period ended
    3. Per transaction: refresh is_overdue, charge one loyalty deduction per overdue day
    4. Suspend affected students whose loyalty fell to the threshold
    5. Close the execution record with counters and per-transaction errors

    Each transaction is committed on its own, so a failure only loses that
    transaction's changes and the scan carries on.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock,
        deduction_schedule: Optional[Sequence[int]] = None,
        stale_after: Optional[timedelta] = None,
    ):
        self.db = db
        self.clock = clock
        self.deduction_schedule = list(deduction_schedule or settings.deduction_schedule)
        self.stale_after = stale_after or timedelta(minutes=settings.job_stale_after_minutes)
        self.students = StudentRepository(db)
        self.transactions = TransactionRepository(db)
        self.executions = JobExecutionRepository(db)
        self.accounts = AccountService(db, clock)

    def run(self, executed_by: str = "system") -> SettlementResult:
        """Run today's settlement unless a completed or in-flight run already exists"""
        start_time = time.time()
        today = self.clock.today()

        try:
            execution = self.executions.try_claim(JOB_TYPE, today, executed_by, self.clock.now(), self.stale_after)
        except Exception as e:
            self.db.rollback()
            settlement_run_counter.labels(outcome="failed").inc()
            logger.error(f"Settlement could not be claimed: {e}", extra={"execution_date": today.isoformat()})
            raise JobExecutionError(f"Settlement for {today.isoformat()} could not be claimed: {e}") from e
        if execution is None:
            return self._skipped(today)

        execution_id = execution.id
        result = SettlementResult(
            execution_id=str(execution_id),
            execution_date=today,
            status=JobStatus.RUNNING,
        )
        logger.info(
            "Settlement started",
            extra={"execution_id": str(execution_id), "execution_date": today.isoformat(), "executed_by": executed_by},
        )

        try:
            result.reactivated_accounts = self.accounts.check_suspension_status()
            affected = self._scan(today, result)
            result.suspended_accounts = self._cascade(affected, result)
        except Exception as e:
            self.db.rollback()
            result.status = JobStatus.FAILED
            result.errors.append(f"Settlement aborted: {e}")
            try:
                self._finish(execution_id, result)
            except Exception:
                self.db.rollback()
                logger.exception("Could not mark settlement as failed", extra={"execution_id": str(execution_id)})
            settlement_run_counter.labels(outcome="failed").inc()
            logger.error(f"Settlement failed: {e}", extra={"execution_id": str(execution_id)})
            raise JobExecutionError(f"Settlement for {today.isoformat()} could not complete: {e}") from e

        result.status = JobStatus.COMPLETED
        self._finish(execution_id, result)

        duration = time.time() - start_time
        settlement_duration_histogram.observe(duration)
        settlement_run_counter.labels(outcome="completed").inc()
        log_settlement_run(
            result.execution_id,
            today.isoformat(),
            result.status.value,
            result.processed_transactions,
            result.deducted_transactions,
            len(result.errors),
            duration * 1000,
        )
        return result

    def _scan(self, today: date, result: SettlementResult) -> Set[str]:
        """Evaluate and penalise each deferred transaction; returns the students that lost points"""
        affected: Set[str] = set()
        for transaction_id in self.transactions.list_deferred_ids():
            try:
                student_id = self._settle_transaction(transaction_id, today, result)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                error = JobExecutionError(str(e), transaction_id=str(transaction_id))
                result.errors.append(str(error))
                logger.error(f"Settlement error: {error}", extra={"transaction_id": str(transaction_id)})
                continue
            result.processed_transactions += 1
            if student_id is not None:
                affected.add(student_id)
        return affected

    def _settle_transaction(self, transaction_id: uuid.UUID, today: date, result: SettlementResult) -> Optional[str]:
        transaction = self.transactions.get_transaction(transaction_id)
        if transaction is None or transaction.status not in DEFERRED_STATUSES:
            # Paid off or deleted since the scan started
            return None

        due_date = transaction.due_date
        if due_date is None:
            due_date = calculate_due_date(
                transaction.created_at,
                transaction.total_item_cents,
                settings.due_date_skip_weekends,
                settings.holidays,
            )
            self.transactions.set_due_date(transaction_id, due_date)
            transaction = self.transactions.get_transaction_or_raise(transaction_id)

        overdue = is_overdue(due_date, self.clock.now())
        if transaction.is_overdue != overdue:
            self.transactions.set_overdue(transaction_id, overdue)
            transaction = self.transactions.get_transaction_or_raise(transaction_id)
        if not overdue:
            return None

        result.overdue_transactions += 1
        if deducted_today(transaction.last_deduction_date, today):
            return None

        student_id = transaction.student_id
        points = deduction_points(transaction.loyalty_deductions, self.deduction_schedule)
        if not self.transactions.record_deduction(transaction_id, points, today):
            return None
        new_loyalty = self.students.adjust_loyalty(student_id, -points, self.clock.now())

        result.deducted_transactions += 1
        loyalty_deduction_counter.inc()
        loyalty_points_deducted_counter.inc(points)
        logger.info(
            "Loyalty deducted",
            extra={
                "transaction_id": str(transaction_id),
                "student_id": student_id,
                "points": points,
                "loyalty": new_loyalty,
                "days_overdue": days_overdue(due_date, self.clock.now()),
            },
        )
        return student_id

    def _cascade(self, affected: Set[str], result: SettlementResult) -> int:
        suspended = 0
        for student_id in sorted(affected):
            try:
                if self.accounts.suspend_for_low_loyalty_pending(student_id):
                    suspended += 1
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                error = JobExecutionError(f"status cascade for student {student_id} failed: {e}")
                result.errors.append(str(error))
                logger.error(f"Settlement error: {error}", extra={"student_id": student_id})
        return suspended

    def _finish(self, execution_id: uuid.UUID, result: SettlementResult) -> None:
        self.executions.finish(
            execution_id,
            result.status.value,
            self.clock.now(),
            processed_transactions=result.processed_transactions,
            overdue_transactions=result.overdue_transactions,
            deducted_transactions=result.deducted_transactions,
            suspended_accounts=result.suspended_accounts,
            reactivated_accounts=result.reactivated_accounts,
            errors=list(result.errors),
        )

    def _skipped(self, today: date) -> SettlementResult:
        existing = self.executions.get_for_date(JOB_TYPE, today)
        settlement_run_counter.labels(outcome="skipped").inc()
        logger.info(
            "Settlement already handled today, skipping",
            extra={"execution_date": today.isoformat(), "existing_status": existing.status if existing else None},
        )
        # Lost the claim yet no row is left to report on
        return SettlementResult(
            execution_id=str(existing.id) if existing else None,
            execution_date=today,
            status=JobStatus(existing.status) if existing else JobStatus.FAILED,
            skipped=True,
            processed_transactions=existing.processed_transactions if existing else 0,
            overdue_transactions=existing.overdue_transactions if existing else 0,
            deducted_transactions=existing.deducted_transactions if existing else 0,
            suspended_accounts=existing.suspended_accounts if existing else 0,
            reactivated_accounts=existing.reactivated_accounts if existing else 0,
            errors=list(existing.errors or []) if existing else [],
        )

    def history(self, limit: int = 10) -> List[JobExecutionRecord]:
        return self.executions.history(JOB_TYPE, limit=limit)

    def last_completed(self) -> Optional[JobExecutionRecord]:
        return self.executions.last_completed(JOB_TYPE)
