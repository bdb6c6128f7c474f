"""Transaction state machine - Paid / Partial / Credit classification and payments"""

from datetime import date, datetime
from typing import Iterable, List, Optional

from canteen_ledger.domain.exceptions import OverpaymentError, ValidationError
from canteen_ledger.domain.loyalty import CREDIT_THRESHOLD, PARTIAL_THRESHOLD, can_credit, can_partial
from canteen_ledger.domain.models import LineItem, PaymentOutcome, PaymentStatus, TransactionDraft
from canteen_ledger.domain.overdue import calculate_due_date


def parse_status(value: str) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown payment status: {value!r}")


def tokens_to_use(wallet_cents: int, total_item_cents: int) -> int:
    """Wallet tokens consumed by a purchase: never more than the wallet or the bill"""
    return max(0, min(wallet_cents, total_item_cents))


def validate_items(items: Optional[List[LineItem]], total_item_cents: int) -> None:
    if not items:
        return
    if any(item.price_cents < 0 for item in items):
        raise ValidationError("Item prices must not be negative")
    if sum(item.price_cents for item in items) != total_item_cents:
        raise ValidationError("Item prices do not add up to the transaction total")


def open_purchase(
    total_item_cents: int,
    status: PaymentStatus,
    loyalty: int,
    created_at: datetime,
    tendered_cents: int = 0,
    token_used_cents: int = 0,
    is_active: bool = True,
    skip_weekends: bool = False,
    holidays: Iterable[date] = (),
) -> TransactionDraft:
    """
    Classify a new purchase and compute its balance fields.

    Raises ValidationError before anything is written when the total is not
    positive, the student's loyalty does not allow the requested deferral,
    or the money handed over does not match the requested status.
    """
    if total_item_cents <= 0:
        raise ValidationError("Total item amount must be greater than zero")
    if tendered_cents < 0 or token_used_cents < 0:
        raise ValidationError("Amounts received must not be negative")

    received = tendered_cents + token_used_cents

    if status == PaymentStatus.PAID:
        change = received - total_item_cents
        if change < 0:
            raise ValidationError("Amount received is less than the total; change would be negative")
        return TransactionDraft(
            status=status,
            total_item_cents=total_item_cents,
            transaction_amount_cents=received,
            amount_cents=total_item_cents,
            change_cents=change,
            token_used_cents=token_used_cents,
            due_date=None,
        )

    if not is_active:
        raise ValidationError("Suspended accounts cannot defer payment")

    if status == PaymentStatus.PARTIAL:
        if not can_partial(loyalty):
            raise ValidationError(f"Partial payment requires at least {PARTIAL_THRESHOLD} loyalty points")
        if received >= total_item_cents:
            raise ValidationError("Partial payment must leave a balance; use Paid instead")
    elif status == PaymentStatus.CREDIT:
        if not can_credit(loyalty):
            raise ValidationError(f"Credit requires {CREDIT_THRESHOLD} loyalty points")
        if received != 0:
            raise ValidationError("Credit purchases cannot take cash or tokens up front")

    return TransactionDraft(
        status=status,
        total_item_cents=total_item_cents,
        transaction_amount_cents=received,
        amount_cents=received - total_item_cents,
        change_cents=0,
        token_used_cents=token_used_cents,
        due_date=calculate_due_date(created_at, total_item_cents, skip_weekends, holidays),
    )


def outstanding_cents(status: str, amount_cents: int) -> int:
    """Balance still owed on a transaction"""
    if status == PaymentStatus.PAID:
        return 0
    return abs(amount_cents)


def settle_payment(
    status: str,
    total_item_cents: int,
    transaction_amount_cents: int,
    amount_cents: int,
    due_date: Optional[datetime],
    is_overdue: bool,
    payment_cents: Optional[int] = None,
    full: bool = False,
) -> PaymentOutcome:
    """
    Apply a payment to a Partial or Credit transaction.

    `full` pays off whatever is outstanding. Paying exactly the outstanding
    balance moves the transaction to Paid and clears its due date; anything
    less leaves it Partial with a smaller negative amount.
    """
    if status not in (PaymentStatus.PARTIAL, PaymentStatus.CREDIT):
        raise ValidationError(f"Transaction is {status}; only Partial or Credit balances accept payments")

    outstanding = outstanding_cents(status, amount_cents)
    if full:
        if payment_cents is not None and payment_cents != outstanding:
            raise ValidationError("A full payment must equal the outstanding balance")
        payment_cents = outstanding
    if payment_cents is None or payment_cents <= 0:
        raise ValidationError("Payment must be greater than zero")
    if payment_cents > outstanding:
        raise OverpaymentError(payment_cents, outstanding)

    new_transaction_amount = transaction_amount_cents + payment_cents
    if payment_cents == outstanding:
        return PaymentOutcome(
            status=PaymentStatus.PAID,
            payment_cents=payment_cents,
            transaction_amount_cents=new_transaction_amount,
            amount_cents=total_item_cents,
            due_date=None,
            is_overdue=False,
        )

    return PaymentOutcome(
        status=PaymentStatus.PARTIAL,
        payment_cents=payment_cents,
        transaction_amount_cents=new_transaction_amount,
        amount_cents=new_transaction_amount - total_item_cents,
        due_date=due_date,
        is_overdue=is_overdue,
    )
