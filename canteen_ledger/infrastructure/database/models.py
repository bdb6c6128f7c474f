"""SQLAlchemy ORM models for students, transactions and job executions"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from canteen_ledger.domain.loyalty import INITIAL_LOYALTY

Base = declarative_base()


class StudentRecord(Base):
    """Student account with loyalty score, status and token wallet"""

    __tablename__ = "students"

    student_id = Column(String(11), primary_key=True)
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    email = Column(Text, nullable=True)
    course = Column(Text, nullable=True)
    year_level = Column(Text, nullable=True)
    loyalty = Column(Integer, nullable=False, default=INITIAL_LOYALTY)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    suspension_date = Column(DateTime, nullable=True)
    suspension_reason = Column(Text, nullable=True)
    token_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    transactions = relationship("TransactionRecord", back_populates="student", passive_deletes=True)


class TransactionRecord(Base):
    """Purchase or token top-up; balance fields move only through the ledger service"""

    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(String(11), ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(Text, nullable=False, default="purchase")
    description = Column(Text, nullable=True)
    token_operation = Column(Text, nullable=True)
    items = Column(JSON, nullable=True)
    cashier_id = Column(Text, nullable=True)
    total_item_cents = Column(BigInteger, nullable=False)
    transaction_amount_cents = Column(BigInteger, nullable=False, default=0)
    amount_cents = Column(BigInteger, nullable=False)
    change_cents = Column(BigInteger, nullable=False, default=0)
    token_used_cents = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False, index=True)
    due_date = Column(DateTime, nullable=True)
    is_overdue = Column(Boolean, nullable=False, default=False, index=True)
    loyalty_deductions = Column(Integer, nullable=False, default=0)
    loyalty_points_deducted = Column(Integer, nullable=False, default=0)
    last_deduction_date = Column(Date, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)

    student = relationship("StudentRecord", back_populates="transactions")


class LoyaltyAdjustmentRecord(Base):
    """Audit trail for manual loyalty restorations"""

    __tablename__ = "loyalty_adjustments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(String(11), ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    resulting_loyalty = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False)


class JobExecutionRecord(Base):
    """One settlement run per (job_type, execution_date); the unique key makes duplicate triggers no-ops"""

    __tablename__ = "job_executions"
    __table_args__ = (UniqueConstraint("job_type", "execution_date", name="uq_job_executions_type_date"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)
    execution_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="running")
    executed_by = Column(Text, nullable=False, default="system")
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    processed_transactions = Column(Integer, nullable=False, default=0)
    overdue_transactions = Column(Integer, nullable=False, default=0)
    deducted_transactions = Column(Integer, nullable=False, default=0)
    suspended_accounts = Column(Integer, nullable=False, default=0)
    reactivated_accounts = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
