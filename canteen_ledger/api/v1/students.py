"""Student account endpoints - registration, payment status, loyalty, suspension, tokens"""

from fastapi import APIRouter, Depends, Query

from canteen_ledger.api.dependencies import get_account_service, get_ledger_service
from canteen_ledger.api.v1.schemas import (
    LoyaltyRestoreRequest,
    LoyaltyRestoreResponse,
    PaymentStatusResponse,
    StudentCreateRequest,
    StudentResponse,
    SuspendRequest,
    SuspensionCheckResponse,
    TokenPurchaseRequest,
    TransactionListResponse,
    TransactionResponse,
)
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/students", response_model=StudentResponse, status_code=201)
def register_student(request_body: StudentCreateRequest, accounts: AccountService = Depends(get_account_service)):
    """Register a student with 25 starting loyalty points and an empty wallet"""
    student = accounts.register_student(**request_body.model_dump())
    return StudentResponse.from_record(student)


@router.post("/students/check-suspensions", response_model=SuspensionCheckResponse)
def check_suspensions(accounts: AccountService = Depends(get_account_service)):
    """Reactivate every account whose suspension period has ended"""
    return SuspensionCheckResponse(reactivated_accounts=accounts.check_suspension_status())


@router.get("/students/{student_id}/payment-status", response_model=PaymentStatusResponse)
def get_payment_status(student_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    """
    Deferred balances, eligibility and standing for a student.

    Loading the status also lifts a suspension whose end date has passed.
    """
    report = ledger.get_student_payment_status(student_id)
    student = ledger.students.get_student_or_raise(student_id)
    return PaymentStatusResponse.from_report(student, report)


@router.get("/students/{student_id}/transactions", response_model=TransactionListResponse)
def list_transactions(
    student_id: str,
    limit: int = Query(50, ge=1, le=500),
    ledger: LedgerService = Depends(get_ledger_service),
):
    transactions = ledger.list_student_transactions(student_id, limit=limit)
    return TransactionListResponse(
        student_id=student_id,
        transactions=[TransactionResponse.from_record(t) for t in transactions],
    )


@router.post("/students/{student_id}/loyalty/restore", response_model=LoyaltyRestoreResponse)
def restore_loyalty(
    student_id: str,
    request_body: LoyaltyRestoreRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    loyalty = ledger.restore_loyalty_points(student_id, request_body.points, request_body.reason)
    return LoyaltyRestoreResponse(student_id=student_id, loyalty=loyalty)


@router.post("/students/{student_id}/suspend", response_model=StudentResponse)
def suspend_student(
    student_id: str,
    request_body: SuspendRequest,
    accounts: AccountService = Depends(get_account_service),
):
    student = accounts.suspend_student(student_id, days=request_body.days, reason=request_body.reason)
    return StudentResponse.from_record(student)


@router.post("/students/{student_id}/reactivate", response_model=StudentResponse)
def reactivate_student(student_id: str, accounts: AccountService = Depends(get_account_service)):
    return StudentResponse.from_record(accounts.reactivate_student(student_id))


@router.post("/students/{student_id}/tokens", response_model=TransactionResponse, status_code=201)
def buy_token(
    student_id: str,
    request_body: TokenPurchaseRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Top up the prepaid token wallet"""
    transaction = ledger.buy_token(student_id, request_body.amount_cents, cashier_id=request_body.cashier_id)
    return TransactionResponse.from_record(transaction)
