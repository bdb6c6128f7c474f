"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from canteen_ledger.domain.account_status import SUSPENSION_PRESET_DAYS, classify_account
from canteen_ledger.domain.ledger import outstanding_cents
from canteen_ledger.domain.models import PaymentStatusReport, RecoveryStats, SettlementResult
from canteen_ledger.infrastructure.database.models import JobExecutionRecord, StudentRecord, TransactionRecord
from canteen_ledger.utils.money import format_pesos

STUDENT_ID_PATTERN = r"^\d{4}-\d{6}$"


class StudentCreateRequest(BaseModel):
    """Request body for POST /v1/students"""

    student_id: str = Field(..., pattern=STUDENT_ID_PATTERN, description="Student number, e.g. 2201-000245")
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    email: Optional[str] = None
    course: Optional[str] = None
    year_level: Optional[str] = None


class StudentResponse(BaseModel):
    """Student account snapshot"""

    student_id: str
    first_name: str
    last_name: str
    loyalty: int
    is_active: bool
    standing: str
    standing_reason: Optional[str] = None
    suspension_date: Optional[datetime] = None
    token_cents: int
    token_display: str

    @classmethod
    def from_record(cls, student: StudentRecord) -> "StudentResponse":
        standing = classify_account(student.is_active, student.loyalty)
        return cls(
            student_id=student.student_id,
            first_name=student.first_name,
            last_name=student.last_name,
            loyalty=student.loyalty,
            is_active=student.is_active,
            standing=standing.state.value,
            standing_reason=standing.reason,
            suspension_date=student.suspension_date,
            token_cents=student.token_cents,
            token_display=format_pesos(student.token_cents),
        )


class LineItemSchema(BaseModel):
    """Single purchased item"""

    name: str = Field(..., min_length=1)
    price_cents: int = Field(..., ge=0)


class TransactionCreateRequest(BaseModel):
    """Request body for POST /v1/transactions"""

    student_id: str = Field(..., min_length=1)
    total_item_cents: int = Field(..., gt=0, description="Sum of item prices in centavos")
    status: Literal["Paid", "Partial", "Credit"]
    tendered_cents: int = Field(0, ge=0, description="Cash handed over in centavos")
    pay_with_token: bool = False
    items: Optional[List[LineItemSchema]] = None
    cashier_id: Optional[str] = None


class TransactionResponse(BaseModel):
    """Transaction with its balance fields"""

    id: str
    student_id: str
    kind: str
    description: Optional[str] = None
    token_operation: Optional[str] = None
    items: Optional[List[LineItemSchema]] = None
    status: str
    total_item_cents: int
    transaction_amount_cents: int
    amount_cents: int
    change_cents: int
    token_used_cents: int
    outstanding_cents: int
    outstanding_display: str
    due_date: Optional[datetime] = None
    is_overdue: bool
    loyalty_deductions: int
    loyalty_points_deducted: int
    last_deduction_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_record(cls, transaction: TransactionRecord) -> "TransactionResponse":
        outstanding = outstanding_cents(transaction.status, transaction.amount_cents)
        return cls(
            id=str(transaction.id),
            student_id=transaction.student_id,
            kind=transaction.kind,
            description=transaction.description,
            token_operation=transaction.token_operation,
            items=transaction.items,
            status=transaction.status,
            total_item_cents=transaction.total_item_cents,
            transaction_amount_cents=transaction.transaction_amount_cents,
            amount_cents=transaction.amount_cents,
            change_cents=transaction.change_cents,
            token_used_cents=transaction.token_used_cents,
            outstanding_cents=outstanding,
            outstanding_display=format_pesos(outstanding),
            due_date=transaction.due_date,
            is_overdue=transaction.is_overdue,
            loyalty_deductions=transaction.loyalty_deductions,
            loyalty_points_deducted=transaction.loyalty_points_deducted,
            last_deduction_date=transaction.last_deduction_date,
            paid_at=transaction.paid_at,
            created_at=transaction.created_at,
        )


class TransactionListResponse(BaseModel):
    """Response for GET /v1/students/{student_id}/transactions"""

    student_id: str
    transactions: List[TransactionResponse]


class PaymentRequest(BaseModel):
    """Request body for POST /v1/transactions/{transaction_id}/payments"""

    payment_cents: Optional[int] = Field(None, gt=0)
    full: bool = Field(False, description="Pay off the whole outstanding balance")


class TokenPurchaseRequest(BaseModel):
    """Request body for POST /v1/students/{student_id}/tokens"""

    amount_cents: int = Field(..., gt=0)
    cashier_id: Optional[str] = None


class LoyaltyRestoreRequest(BaseModel):
    """Request body for POST /v1/students/{student_id}/loyalty/restore"""

    points: int = Field(..., gt=0, le=100)
    reason: str = Field(..., min_length=1)


class LoyaltyRestoreResponse(BaseModel):
    student_id: str
    loyalty: int


class SuspendRequest(BaseModel):
    """Request body for POST /v1/students/{student_id}/suspend"""

    days: Optional[int] = Field(
        None,
        gt=0,
        description=f"One of {list(SUSPENSION_PRESET_DAYS)} or a custom count; omit for indefinite",
    )
    reason: str = "Suspended by administrator"


class SuspensionCheckResponse(BaseModel):
    reactivated_accounts: int


class PaymentStatusResponse(BaseModel):
    """Response for GET /v1/students/{student_id}/payment-status"""

    student: StudentResponse
    can_partial: bool
    can_credit: bool
    can_make_new_transactions: bool
    suspension_reason: Optional[str] = None
    total_overdue_cents: int
    total_overdue_display: str
    total_outstanding_cents: int
    total_outstanding_display: str
    overdue_transactions: List[TransactionResponse]
    outstanding_transactions: List[TransactionResponse]

    @classmethod
    def from_report(cls, student: StudentRecord, report: PaymentStatusReport) -> "PaymentStatusResponse":
        return cls(
            student=StudentResponse.from_record(student),
            can_partial=report.can_partial,
            can_credit=report.can_credit,
            can_make_new_transactions=report.can_make_new_transactions,
            suspension_reason=report.standing.reason,
            total_overdue_cents=report.total_overdue_cents,
            total_overdue_display=format_pesos(report.total_overdue_cents),
            total_outstanding_cents=report.total_outstanding_cents,
            total_outstanding_display=format_pesos(report.total_outstanding_cents),
            overdue_transactions=[TransactionResponse.from_record(t) for t in report.overdue_transactions],
            outstanding_transactions=[TransactionResponse.from_record(t) for t in report.outstanding_transactions],
        )


class SettlementRunResponse(BaseModel):
    """Response for POST /v1/settlement/run"""

    execution_id: Optional[str] = None
    execution_date: date
    status: str
    skipped: bool
    processed_transactions: int
    overdue_transactions: int
    deducted_transactions: int
    suspended_accounts: int
    reactivated_accounts: int
    errors: List[str]

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementRunResponse":
        return cls(
            execution_id=result.execution_id,
            execution_date=result.execution_date,
            status=result.status.value,
            skipped=result.skipped,
            processed_transactions=result.processed_transactions,
            overdue_transactions=result.overdue_transactions,
            deducted_transactions=result.deducted_transactions,
            suspended_accounts=result.suspended_accounts,
            reactivated_accounts=result.reactivated_accounts,
            errors=result.errors,
        )


class JobExecutionSchema(BaseModel):
    """Single settlement execution record"""

    execution_id: str
    job_type: str
    execution_date: date
    status: str
    executed_by: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed_transactions: int
    deducted_transactions: int
    errors: List[str]

    @classmethod
    def from_record(cls, execution: JobExecutionRecord) -> "JobExecutionSchema":
        return cls(
            execution_id=str(execution.id),
            job_type=execution.job_type,
            execution_date=execution.execution_date,
            status=execution.status,
            executed_by=execution.executed_by,
            started_at=execution.started_at,
            finished_at=execution.finished_at,
            processed_transactions=execution.processed_transactions,
            deducted_transactions=execution.deducted_transactions,
            errors=execution.errors or [],
        )


class ExecutionHistoryResponse(BaseModel):
    """Response for GET /v1/settlement/executions"""

    executions: List[JobExecutionSchema]
    last_completed: Optional[JobExecutionSchema] = None


class RecoveryStatsResponse(BaseModel):
    """Response for GET /v1/stats/recovery"""

    total_overdue_transactions: int
    total_overdue_cents: int
    total_overdue_display: str
    suspended_accounts: int
    banned_accounts: int
    recent_recoveries: int

    @classmethod
    def from_stats(cls, stats: RecoveryStats) -> "RecoveryStatsResponse":
        return cls(
            total_overdue_transactions=stats.total_overdue_transactions,
            total_overdue_cents=stats.total_overdue_cents,
            total_overdue_display=format_pesos(stats.total_overdue_cents),
            suspended_accounts=stats.suspended_accounts,
            banned_accounts=stats.banned_accounts,
            recent_recoveries=stats.recent_recoveries,
        )
