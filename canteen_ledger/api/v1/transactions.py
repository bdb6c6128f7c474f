"""Transaction endpoints - checkout, payments, deletion"""

from fastapi import APIRouter, Depends, Response

from canteen_ledger.api.dependencies import get_ledger_service
from canteen_ledger.api.v1.schemas import PaymentRequest, TransactionCreateRequest, TransactionResponse
from canteen_ledger.services.ledger_service import LedgerService

router = APIRouter()


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(request_body: TransactionCreateRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """
    Record a checkout.

    - Paid: cash (plus tokens) must cover the total; change is returned
    - Partial: needs 90 loyalty points; leaves a balance due in 3-5 days
    - Credit: needs 100 loyalty points; nothing paid up front
    """
    transaction = ledger.create_transaction(
        student_id=request_body.student_id,
        total_item_cents=request_body.total_item_cents,
        status=request_body.status,
        tendered_cents=request_body.tendered_cents,
        pay_with_token=request_body.pay_with_token,
        items=[item.model_dump() for item in request_body.items] if request_body.items else None,
        cashier_id=request_body.cashier_id,
    )
    return TransactionResponse.from_record(transaction)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    return TransactionResponse.from_record(ledger.get_transaction(transaction_id))


@router.post("/transactions/{transaction_id}/payments", response_model=TransactionResponse)
def apply_payment(
    transaction_id: str,
    request_body: PaymentRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Pay down a Partial/Credit balance; paying the full balance marks it Paid"""
    transaction = ledger.apply_payment(transaction_id, payment_cents=request_body.payment_cents, full=request_body.full)
    return TransactionResponse.from_record(transaction)


@router.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: str, ledger: LedgerService = Depends(get_ledger_service)):
    ledger.delete_transaction(transaction_id)
    return Response(status_code=204)
