"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from canteen_ledger.config import settings
from canteen_ledger.infrastructure.database.session import get_db
from canteen_ledger.services.account_service import AccountService
from canteen_ledger.services.ledger_service import LedgerService
from canteen_ledger.services.settlement import SettlementJob
from canteen_ledger.utils.clock import Clock, SystemClock


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Clock:
    """Provide the canteen wall clock"""
    return SystemClock(settings.timezone)


def get_ledger_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> LedgerService:
    return LedgerService(db, clock)


def get_account_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> AccountService:
    return AccountService(db, clock)


def get_settlement_job(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> SettlementJob:
    return SettlementJob(db, clock)
