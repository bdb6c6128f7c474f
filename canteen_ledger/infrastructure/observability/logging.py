"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from canteen_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_payment(transaction_id: str, student_id: str, payment_cents: int, status: str, remaining_cents: int) -> None:
    """Log structured payment outcome"""
    logging.getLogger("canteen_ledger.payments").info(
        "Payment applied",
        extra={
            "transaction_id": transaction_id,
            "student_id": student_id,
            "step": "payment_applied",
            "payment_cents": payment_cents,
            "status": status,
            "remaining_cents": remaining_cents,
        },
    )


def log_status_change(student_id: str, action: str, reason: str | None, loyalty: int | None = None) -> None:
    """Log suspension, reactivation and loyalty restoration events"""
    logging.getLogger("canteen_ledger.accounts").info(
        "Account status changed",
        extra={
            "student_id": student_id,
            "step": "account_status",
            "action": action,
            "reason": reason,
            "loyalty": loyalty,
        },
    )


def log_settlement_run(
    execution_id: str | None,
    execution_date: str,
    status: str,
    processed: int,
    deducted: int,
    error_count: int,
    duration_ms: float,
) -> None:
    """Log structured settlement outcome for audit"""
    logging.getLogger("canteen_ledger.settlement").info(
        "Settlement run finished",
        extra={
            "execution_id": execution_id,
            "execution_date": execution_date,
            "step": "settlement_complete",
            "status": status,
            "processed_transactions": processed,
            "deducted_transactions": deducted,
            "error_count": error_count,
            "duration_ms": duration_ms,
        },
    )
