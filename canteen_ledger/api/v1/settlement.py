"""Settlement endpoints - manual "Run Now", execution history, recovery stats"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from canteen_ledger.api.dependencies import get_ledger_service, get_request_id, get_settlement_job
from canteen_ledger.api.v1.schemas import (
    ExecutionHistoryResponse,
    JobExecutionSchema,
    RecoveryStatsResponse,
    SettlementRunResponse,
)
from canteen_ledger.domain.exceptions import JobExecutionError
from canteen_ledger.services.ledger_service import LedgerService
from canteen_ledger.services.settlement import SettlementJob

router = APIRouter()


@router.post("/settlement/run", response_model=SettlementRunResponse)
def run_settlement(request: Request, job: SettlementJob = Depends(get_settlement_job)):
    """
    Run today's settlement now.

    Safe to call repeatedly or alongside the scheduled trigger: once today's
    run has completed, further calls return it with `skipped=true`.
    """
    request_id = get_request_id(request)
    try:
        result = job.run(executed_by="manual")
    except JobExecutionError as e:
        logging.error(f"Settlement failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=str(e))
    return SettlementRunResponse.from_result(result)


@router.get("/settlement/executions", response_model=ExecutionHistoryResponse)
def get_execution_history(
    limit: int = Query(10, ge=1, le=100),
    job: SettlementJob = Depends(get_settlement_job),
):
    last = job.last_completed()
    return ExecutionHistoryResponse(
        executions=[JobExecutionSchema.from_record(e) for e in job.history(limit=limit)],
        last_completed=JobExecutionSchema.from_record(last) if last else None,
    )


@router.get("/stats/recovery", response_model=RecoveryStatsResponse)
def get_recovery_stats(ledger: LedgerService = Depends(get_ledger_service)):
    return RecoveryStatsResponse.from_stats(ledger.get_recovery_stats())
