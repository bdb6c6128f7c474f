"""Ledger operations: purchases, payments, token wallet and loyalty restoration"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from canteen_ledger.config import settings
from canteen_ledger.domain.account_status import (
    can_make_new_transactions,
    classify_account,
)
from canteen_ledger.domain.exceptions import ConcurrencyConflict, ValidationError
from canteen_ledger.domain.ledger import (
    open_purchase,
    outstanding_cents,
    parse_status,
    settle_payment,
    tokens_to_use,
    validate_items,
)
from canteen_ledger.domain.loyalty import can_credit, can_partial
from canteen_ledger.domain.models import (
    AccountState,
    LineItem,
    PaymentStatusReport,
    RecoveryStats,
    TransactionKind,
)
from canteen_ledger.infrastructure.database.models import TransactionRecord
from canteen_ledger.infrastructure.database.repositories import (
    LoyaltyAdjustmentRepository,
    StudentRepository,
    TransactionRepository,
)
from canteen_ledger.infrastructure.observability.logging import log_payment, log_status_change
from canteen_ledger.infrastructure.observability.metrics import (
    payment_conflict_counter,
    record_payment,
    transaction_counter,
)
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.utils.clock import Clock
from canteen_ledger.utils.money import format_pesos

logger = logging.getLogger(__name__)

RECENT_RECOVERY_WINDOW = timedelta(days=7)


def _as_line_items(items: Optional[Iterable[Union[LineItem, dict]]]) -> Optional[List[LineItem]]:
    if items is None:
        return None
    return [item if isinstance(item, LineItem) else LineItem(**item) for item in items]


class LedgerService:
    """Creates and updates transactions; every public write commits or rolls back as a unit"""

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.students = StudentRepository(db)
        self.transactions = TransactionRepository(db)
        self.adjustments = LoyaltyAdjustmentRepository(db)
        self.accounts = AccountService(db, clock)

    def create_transaction(
        self,
        student_id: str,
        total_item_cents: int,
        status: str,
        tendered_cents: int = 0,
        pay_with_token: bool = False,
        items: Optional[Iterable[Union[LineItem, dict]]] = None,
        cashier_id: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Record a checkout as Paid, Partial or Credit.

        With `pay_with_token` the wallet covers as much of the bill as it can
        and `tendered_cents` is the cash handed over on top. Raises
        ValidationError (nothing written) when the purchase breaks a policy.
        """
        payment_status = parse_status(status)
        student = self.students.get_student_or_raise(student_id)
        line_items = _as_line_items(items)
        validate_items(line_items, total_item_cents)

        token_used = tokens_to_use(student.token_cents, total_item_cents) if pay_with_token else 0
        now = self.clock.now()
        draft = open_purchase(
            total_item_cents,
            payment_status,
            loyalty=student.loyalty,
            created_at=now,
            tendered_cents=tendered_cents,
            token_used_cents=token_used,
            is_active=student.is_active,
            skip_weekends=settings.due_date_skip_weekends,
            holidays=settings.holidays,
        )

        try:
            if token_used and not self.students.debit_tokens(student_id, token_used, now):
                raise ConcurrencyConflict(f"Token balance of student {student_id} changed during checkout")
            transaction = self.transactions.create_purchase(
                student_id,
                draft,
                created_at=now,
                items=[{"name": i.name, "price_cents": i.price_cents} for i in line_items] if line_items else None,
                cashier_id=cashier_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        transaction_counter.labels(kind=TransactionKind.PURCHASE.value, status=draft.status.value).inc()
        logger.info(
            "Transaction created",
            extra={
                "transaction_id": str(transaction.id),
                "student_id": student_id,
                "status": draft.status.value,
                "total_item_cents": draft.total_item_cents,
                "token_used_cents": token_used,
            },
        )
        return transaction

    def buy_token(self, student_id: str, amount_cents: int, cashier_id: Optional[str] = None) -> TransactionRecord:
        """Top up the wallet; the record is always Paid and never deferred"""
        if amount_cents <= 0:
            raise ValidationError("Token amount must be greater than zero")
        self.students.get_student_or_raise(student_id)
        now = self.clock.now()
        try:
            transaction = self.transactions.create_token_topup(student_id, amount_cents, now, cashier_id)
            self.students.credit_tokens(student_id, amount_cents, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        transaction_counter.labels(kind=TransactionKind.TOKEN_TOPUP.value, status=transaction.status).inc()
        logger.info(
            "Tokens bought",
            extra={"transaction_id": str(transaction.id), "student_id": student_id, "amount_cents": amount_cents},
        )
        return transaction

    def apply_payment(
        self, transaction_id: str, payment_cents: Optional[int] = None, full: bool = False
    ) -> TransactionRecord:
        """
        Pay down a Partial or Credit balance.

        A concurrent modification is retried once against fresh state before
        ConcurrencyConflict reaches the caller.
        """
        for attempt in (1, 2):
            try:
                return self._apply_payment_once(transaction_id, payment_cents, full)
            except ConcurrencyConflict:
                self.db.rollback()
                payment_conflict_counter.inc()
                if attempt == 2:
                    raise
                logger.warning("Payment conflict, retrying", extra={"transaction_id": str(transaction_id)})
            except Exception:
                self.db.rollback()
                raise

    def _apply_payment_once(self, transaction_id: str, payment_cents: Optional[int], full: bool) -> TransactionRecord:
        transaction = self.transactions.get_transaction_or_raise(transaction_id)
        record_id = transaction.id
        student_id = transaction.student_id
        version = transaction.version

        outcome = settle_payment(
            transaction.status,
            transaction.total_item_cents,
            transaction.transaction_amount_cents,
            transaction.amount_cents,
            transaction.due_date,
            transaction.is_overdue,
            payment_cents=payment_cents,
            full=full,
        )

        now = self.clock.now()
        if not self.transactions.compare_and_set_balance(record_id, version, outcome, now):
            raise ConcurrencyConflict(f"Transaction {record_id} was modified concurrently")

        if outcome.fully_paid:
            self.accounts.reactivate_if_cleared_pending(student_id)
        self.db.commit()

        record_payment(outcome.fully_paid)
        log_payment(
            str(record_id),
            student_id,
            outcome.payment_cents,
            outcome.status.value,
            outstanding_cents(outcome.status, outcome.amount_cents),
        )
        return self.transactions.get_transaction_or_raise(record_id)

    def delete_transaction(self, transaction_id: str) -> None:
        """
        Remove a transaction record.

        Loyalty deductions and wallet movements it caused stay as they are;
        they are logged so the history can be reconciled by hand.
        """
        transaction = self.transactions.get_transaction_or_raise(transaction_id)
        audit = {
            "transaction_id": str(transaction.id),
            "student_id": transaction.student_id,
            "status": transaction.status,
            "kind": transaction.kind,
            "loyalty_points_deducted": transaction.loyalty_points_deducted,
            "token_used_cents": transaction.token_used_cents,
        }
        try:
            self.transactions.delete_transaction(transaction)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        moved_balances = audit["loyalty_points_deducted"] or audit["token_used_cents"]
        if moved_balances or audit["kind"] == TransactionKind.TOKEN_TOPUP.value:
            logger.warning("Transaction deleted without reversing loyalty or wallet effects", extra=audit)
        else:
            logger.info("Transaction deleted", extra=audit)

    def get_transaction(self, transaction_id: str) -> TransactionRecord:
        return self.transactions.get_transaction_or_raise(transaction_id)

    def list_student_transactions(self, student_id: str, limit: int = 50) -> List[TransactionRecord]:
        self.students.get_student_or_raise(student_id)
        return self.transactions.list_by_student(student_id, limit=limit)

    def get_student_payment_status(self, student_id: str) -> PaymentStatusReport:
        """Student's deferred balances and standing; lifts an expired suspension first"""
        self.students.get_student_or_raise(student_id)
        self.accounts.check_suspension_status(student_id)

        student = self.students.get_student_or_raise(student_id)
        overdue = self.transactions.list_overdue(student_id)
        outstanding = self.transactions.list_outstanding(student_id)

        return PaymentStatusReport(
            student_id=student.student_id,
            loyalty=student.loyalty,
            is_active=student.is_active,
            suspension_date=student.suspension_date,
            token_cents=student.token_cents,
            standing=classify_account(student.is_active, student.loyalty),
            can_partial=can_partial(student.loyalty),
            can_credit=can_credit(student.loyalty),
            can_make_new_transactions=can_make_new_transactions(student.is_active, student.loyalty),
            overdue_transactions=overdue,
            outstanding_transactions=outstanding,
            total_overdue_cents=sum(abs(t.amount_cents) for t in overdue),
            total_outstanding_cents=sum(abs(t.amount_cents) for t in outstanding),
        )

    def restore_loyalty_points(self, student_id: str, points: int, reason: str) -> int:
        """Admin grant of loyalty points, capped at 100; returns the new score"""
        if points <= 0:
            raise ValidationError("Points to restore must be greater than zero")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to restore loyalty points")
        self.students.get_student_or_raise(student_id)

        now = self.clock.now()
        try:
            new_loyalty = self.students.adjust_loyalty(student_id, points, now)
            self.adjustments.record(student_id, points, reason.strip(), new_loyalty, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        log_status_change(student_id, "restore_loyalty", reason.strip(), new_loyalty)
        return new_loyalty

    def get_recovery_stats(self) -> RecoveryStats:
        overdue = self.transactions.list_overdue()
        suspended = self.students.list_by_active(False)
        banned = [s for s in suspended if classify_account(s.is_active, s.loyalty).state == AccountState.BANNED]
        total_overdue = sum(abs(t.amount_cents) for t in overdue)
        logger.debug("Recovery stats computed", extra={"total_overdue": format_pesos(total_overdue)})

        return RecoveryStats(
            total_overdue_transactions=len(overdue),
            total_overdue_cents=total_overdue,
            suspended_accounts=len(suspended),
            banned_accounts=len(banned),
            recent_recoveries=self.transactions.count_paid_since(self.clock.now() - RECENT_RECOVERY_WINDOW),
        )
