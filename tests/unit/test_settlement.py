"""Unit tests for the daily settlement job"""

import pytest
from datetime import timedelta
from canteen_ledger.domain.exceptions import JobExecutionError
from canteen_ledger.domain.models import AccountState, JobStatus, SettlementResult
from canteen_ledger.domain.account_status import classify_account
from canteen_ledger.infrastructure.database.models import JobExecutionRecord
from canteen_ledger.infrastructure.database.repositories import StudentRepository, TransactionRepository
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.services.ledger_service import LedgerService
from canteen_ledger.services.settlement import JOB_TYPE, SettlementJob


@pytest.fixture
def ledger(db, clock) -> LedgerService:
    return LedgerService(db, clock)


@pytest.fixture
def deferred(ledger, student_factory):
    """₱100 Partial with ₱40 down; due five days after creation"""
    student_factory(loyalty=95)
    return ledger.create_transaction("2201-000245", 10_000, "Partial", tendered_cents=4_000)


def run_job(db, clock) -> SettlementResult:
    return SettlementJob(db, clock).run()


def loyalty_of(db, student_id="2201-000245") -> int:
    return StudentRepository(db).get_student(student_id).loyalty


def clear_executions(db):
    db.query(JobExecutionRecord).delete()
    db.commit()


def test_not_overdue_before_due_date(db, clock, deferred):
    clock.advance(days=2)

    result = run_job(db, clock)

    assert result.status == JobStatus.COMPLETED
    assert result.processed_transactions == 1
    assert result.overdue_transactions == 0
    assert result.deducted_transactions == 0
    assert loyalty_of(db) == 95


def test_six_days_late_costs_one_point(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=6))

    result = run_job(db, clock)

    assert result.deducted_transactions == 1
    assert loyalty_of(db) == 94
    transaction = TransactionRepository(db).get_transaction(deferred.id)
    assert transaction.is_overdue is True
    assert transaction.loyalty_deductions == 1
    assert transaction.loyalty_points_deducted == 1
    assert transaction.last_deduction_date == clock.today()


def test_same_day_rerun_is_skipped(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=6))
    first = run_job(db, clock)

    second = run_job(db, clock)

    assert second.skipped is True
    assert second.status == JobStatus.COMPLETED
    assert second.execution_id == first.execution_id
    assert loyalty_of(db) == 94


def test_lost_execution_record_does_not_double_charge(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=6))
    run_job(db, clock)
    clear_executions(db)

    result = run_job(db, clock)

    assert result.skipped is False
    assert result.overdue_transactions == 1
    assert result.deducted_transactions == 0
    assert loyalty_of(db) == 94


def test_deductions_escalate_per_day(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=6))
    run_job(db, clock)

    for expected in (92, 90, 88, 84, 80):
        clock.advance(days=1)
        run_job(db, clock)
        assert loyalty_of(db) == expected

    transaction = TransactionRepository(db).get_transaction(deferred.id)
    assert transaction.loyalty_deductions == 6
    assert transaction.loyalty_points_deducted == 15


def test_grace_window_boundary(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(hours=12))

    result = run_job(db, clock)

    assert result.overdue_transactions == 0
    assert TransactionRepository(db).get_transaction(deferred.id).is_overdue is False
    assert loyalty_of(db) == 95

    clear_executions(db)
    clock.advance(minutes=1)
    result = run_job(db, clock)

    assert result.deducted_transactions == 1
    assert loyalty_of(db) == 94


def test_paid_transactions_are_ignored(db, clock, ledger, deferred):
    ledger.apply_payment(str(deferred.id), full=True)
    clock.set(deferred.due_date + timedelta(days=3))

    result = run_job(db, clock)

    assert result.processed_transactions == 0
    assert loyalty_of(db) == 95


def test_low_loyalty_suspends_indefinitely(db, clock, deferred):
    student = StudentRepository(db).get_student("2201-000245")
    student.loyalty = 21
    db.commit()
    clock.set(deferred.due_date + timedelta(days=1))

    result = run_job(db, clock)

    assert result.suspended_accounts == 1
    student = StudentRepository(db).get_student("2201-000245")
    assert student.loyalty == 20
    assert student.is_active is False
    assert student.suspension_date is None
    assert classify_account(student.is_active, student.loyalty).state == AccountState.SUSPENDED


def test_zero_loyalty_is_banned(db, clock, deferred):
    student = StudentRepository(db).get_student("2201-000245")
    student.loyalty = 1
    db.commit()
    clock.set(deferred.due_date + timedelta(days=1))
    run_job(db, clock)

    clock.advance(days=1)
    run_job(db, clock)

    student = StudentRepository(db).get_student("2201-000245")
    assert student.loyalty == 0
    assert student.is_active is False
    assert classify_account(student.is_active, student.loyalty).state == AccountState.BANNED


def test_healthy_loyalty_stays_active(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=1))

    result = run_job(db, clock)

    assert result.suspended_accounts == 0
    assert StudentRepository(db).get_student("2201-000245").is_active is True


def test_one_bad_transaction_does_not_stop_the_run(db, clock, ledger, student_factory, monkeypatch):
    student_factory("2201-000001", loyalty=95)
    student_factory("2201-000002", loyalty=95)
    bad = ledger.create_transaction("2201-000001", 10_000, "Partial", tendered_cents=4_000)
    good = ledger.create_transaction("2201-000002", 10_000, "Partial", tendered_cents=4_000)
    bad_id = bad.id
    clock.set(good.due_date + timedelta(days=1))

    job = SettlementJob(db, clock)
    original = job._settle_transaction

    def flaky(transaction_id, today, result):
        if transaction_id == bad_id:
            raise RuntimeError("row is locked")
        return original(transaction_id, today, result)

    monkeypatch.setattr(job, "_settle_transaction", flaky)

    result = job.run()

    assert result.status == JobStatus.COMPLETED
    assert result.processed_transactions == 1
    assert result.deducted_transactions == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"transaction {bad_id}:")
    assert loyalty_of(db, "2201-000001") == 95
    assert loyalty_of(db, "2201-000002") == 94

    record = db.query(JobExecutionRecord).one()
    assert record.status == JobStatus.COMPLETED.value
    assert record.errors == result.errors


def test_fatal_error_marks_run_failed_and_allows_retry(db, clock, deferred, monkeypatch):
    clock.set(deferred.due_date + timedelta(days=1))
    job = SettlementJob(db, clock)

    def broken():
        raise RuntimeError("database went away")

    monkeypatch.setattr(job.transactions, "list_deferred_ids", broken)

    with pytest.raises(JobExecutionError):
        job.run()

    record = db.query(JobExecutionRecord).one()
    assert record.status == JobStatus.FAILED.value
    assert record.finished_at == clock.now()
    assert loyalty_of(db) == 95

    retry = run_job(db, clock)

    assert retry.skipped is False
    assert retry.status == JobStatus.COMPLETED
    assert retry.deducted_transactions == 1
    db.expire_all()
    assert db.query(JobExecutionRecord).one().status == JobStatus.COMPLETED.value


def test_stale_running_record_is_taken_over(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=1))
    db.add(
        JobExecutionRecord(
            job_type=JOB_TYPE,
            execution_date=clock.today(),
            status=JobStatus.RUNNING.value,
            executed_by="crashed-worker",
            started_at=clock.now() - timedelta(hours=2),
            errors=[],
        )
    )
    db.commit()

    result = run_job(db, clock)

    assert result.skipped is False
    assert result.deducted_transactions == 1
    record = db.query(JobExecutionRecord).one()
    assert record.status == JobStatus.COMPLETED.value
    assert record.executed_by == "system"


def test_fresh_running_record_is_left_alone(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=1))
    db.add(
        JobExecutionRecord(
            job_type=JOB_TYPE,
            execution_date=clock.today(),
            status=JobStatus.RUNNING.value,
            executed_by="other-worker",
            started_at=clock.now() - timedelta(minutes=5),
            errors=[],
        )
    )
    db.commit()

    result = run_job(db, clock)

    assert result.skipped is True
    assert result.status == JobStatus.RUNNING
    assert loyalty_of(db) == 95


def test_expired_suspension_is_lifted(db, clock, student_factory):
    student_factory(loyalty=60)
    AccountService(db, clock).suspend_student("2201-000245", days=1)
    clock.advance(days=2)

    result = run_job(db, clock)

    assert result.reactivated_accounts == 1
    assert StudentRepository(db).get_student("2201-000245").is_active is True


def test_history_and_last_completed(db, clock, deferred):
    run_job(db, clock)
    clock.advance(days=1)
    run_job(db, clock)

    job = SettlementJob(db, clock)
    history = job.history()

    assert [record.execution_date for record in history] == [clock.today(), clock.today() - timedelta(days=1)]
    assert job.last_completed().execution_date == clock.today()


def test_custom_deduction_schedule(db, clock, deferred):
    clock.set(deferred.due_date + timedelta(days=1))

    SettlementJob(db, clock, deduction_schedule=[5]).run()

    assert loyalty_of(db) == 90


def test_payment_during_scan_is_not_charged(db, clock, ledger, deferred):
    clock.set(deferred.due_date + timedelta(days=6))
    job = SettlementJob(db, clock)
    ids = job.transactions.list_deferred_ids()

    ledger.apply_payment(str(deferred.id), full=True)
    result = SettlementResult(execution_id=None, execution_date=clock.today(), status=JobStatus.RUNNING)

    assert job._settle_transaction(ids[0], clock.today(), result) is None
    assert loyalty_of(db) == 95
    transaction = TransactionRepository(db).get_transaction(deferred.id)
    assert transaction.status == "Paid"
    assert transaction.loyalty_deductions == 0
    assert transaction.due_date is None
    assert TransactionRepository(db).record_deduction(deferred.id, 1, clock.today()) is False


def test_claim_failure_is_reported_as_job_error(db, clock, deferred, monkeypatch):
    job = SettlementJob(db, clock)

    def broken(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(job.executions, "try_claim", broken)

    with pytest.raises(JobExecutionError):
        job.run()

    assert db.query(JobExecutionRecord).count() == 0
    assert loyalty_of(db) == 95


def test_lost_claim_without_record_reports_failed(db, clock, deferred, monkeypatch):
    job = SettlementJob(db, clock)
    monkeypatch.setattr(job.executions, "try_claim", lambda *args, **kwargs: None)

    result = job.run()

    assert result.skipped is True
    assert result.status == JobStatus.FAILED
    assert result.execution_id is None
    assert loyalty_of(db) == 95
