"""Account status lifecycle: registration, suspension and reactivation"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from canteen_ledger.domain.account_status import (
    LOW_LOYALTY_REASON,
    may_reactivate_after_payment,
    should_suspend,
    suspension_end,
)
from canteen_ledger.domain.exceptions import ValidationError
from canteen_ledger.infrastructure.database.models import StudentRecord
from canteen_ledger.infrastructure.database.repositories import StudentRepository, TransactionRepository
from canteen_ledger.infrastructure.observability.logging import log_status_change
from canteen_ledger.infrastructure.observability.metrics import record_status_change
from canteen_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)

MANUAL_SUSPENSION_REASON = "Suspended by administrator"
MANUAL_REACTIVATION_REASON = "Reactivated by administrator"
EXPIRED_REASON = "Suspension period ended"
PAID_OFF_REASON = "All overdue payments completed"


class AccountService:
    """
    Writes the active flag on student accounts.

    Public methods commit; the `*_pending` helpers leave the commit to the
    caller so they can ride along in the ledger or settlement unit of work.
    """

    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.students = StudentRepository(db)
        self.transactions = TransactionRepository(db)

    def register_student(
        self,
        student_id: str,
        first_name: str = "",
        last_name: str = "",
        email: Optional[str] = None,
        course: Optional[str] = None,
        year_level: Optional[str] = None,
    ) -> StudentRecord:
        """Open a new account with the starting loyalty score and an empty wallet"""
        if self.students.get_student(student_id) is not None:
            raise ValidationError(f"Student {student_id} is already registered")
        student = self.students.create_student(
            student_id,
            created_at=self.clock.now(),
            first_name=first_name,
            last_name=last_name,
            email=email,
            course=course,
            year_level=year_level,
        )
        self.db.commit()
        logger.info("Student registered", extra={"student_id": student_id, "loyalty": student.loyalty})
        return student

    def suspend_student(
        self, student_id: str, days: Optional[int] = None, reason: str = MANUAL_SUSPENSION_REASON
    ) -> StudentRecord:
        """Manual suspension for `days` (presets 1/3/7/30 or any custom count); None is indefinite"""
        self.students.get_student_or_raise(student_id)
        end = suspension_end(self.clock.now(), days)
        self.students.set_status(student_id, False, self.clock.now(), suspension_date=end, reason=reason)
        self.db.commit()
        record_status_change("suspend", "manual")
        log_status_change(student_id, "suspend", reason)
        return self.students.get_student_or_raise(student_id)

    def reactivate_student(self, student_id: str, reason: str = MANUAL_REACTIVATION_REASON) -> StudentRecord:
        """Manual reactivation is always allowed and clears any suspension end date"""
        self.students.get_student_or_raise(student_id)
        self.students.set_status(student_id, True, self.clock.now())
        self.db.commit()
        record_status_change("reactivate", "manual")
        log_status_change(student_id, "reactivate", reason)
        return self.students.get_student_or_raise(student_id)

    def check_suspension_status(self, student_id: Optional[str] = None) -> int:
        """
        Reactivate students whose time-boxed suspension has ended.

        Limited to one student when `student_id` is given. Returns how many
        accounts were reactivated.
        """
        now = self.clock.now()
        expired = [s.student_id for s in self.students.list_expired_suspensions(now, student_id)]
        reactivated = 0
        for sid in expired:
            if self.students.set_status(sid, True, now, only_if_active=False):
                reactivated += 1
                record_status_change("reactivate", "expiry")
                log_status_change(sid, "reactivate", EXPIRED_REASON)
        self.db.commit()
        return reactivated

    def suspend_for_low_loyalty_pending(self, student_id: str) -> bool:
        """Indefinite suspension when the score has fallen to the threshold; no-op otherwise"""
        student = self.students.get_student_or_raise(student_id)
        if not should_suspend(student.loyalty) or not student.is_active:
            return False
        suspended = self.students.set_status(
            student_id, False, self.clock.now(), reason=LOW_LOYALTY_REASON, only_if_active=True
        )
        if suspended:
            record_status_change("suspend", "settlement")
            log_status_change(student_id, "suspend", LOW_LOYALTY_REASON, student.loyalty)
        return suspended

    def reactivate_if_cleared_pending(self, student_id: str) -> bool:
        """Lift a suspension once no overdue balance remains and loyalty is above the threshold"""
        student = self.students.get_student_or_raise(student_id)
        remaining = self.transactions.count_overdue(student_id)
        if not may_reactivate_after_payment(student.is_active, remaining, student.loyalty):
            return False
        reactivated = self.students.set_status(student_id, True, self.clock.now(), only_if_active=False)
        if reactivated:
            record_status_change("reactivate", "payment")
            log_status_change(student_id, "reactivate", PAID_OFF_REASON, student.loyalty)
        return reactivated
