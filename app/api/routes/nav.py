"""
NAV API Routes
Calculate, batch-run, retry, inspect and verify NAVs

Date Rules:
- If `nav_date` is omitted → today in the fund timezone is used
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.dependencies import get_nav_service, get_scheduler
from app.api.serializers import (
    change_to_dict,
    comparison_to_dict,
    record_to_dict,
    run_to_dict,
)
from app.domain.models import FundKey
from app.scheduler.nav_scheduler import NAVScheduler
from app.services.nav_service import NAVService
from app.utils.time import today_local

router = APIRouter()


# -------------------------------------------------------------------
# Request models
# -------------------------------------------------------------------

class CalculateRequest(BaseModel):
    fund_id: str = Field(..., min_length=1)
    share_class_id: str = Field(..., min_length=1)
    nav_date: Optional[date] = Field(None, description="Valuation date (default: today)")
    persist: bool = Field(True, description="Store the result as a NAV record")


class RunRequest(BaseModel):
    nav_date: Optional[date] = Field(None, description="Valuation date (default: today)")


class RetryRequest(BaseModel):
    nav_date: date


class VerifyRequest(BaseModel):
    fund_id: str = Field(..., min_length=1)
    share_class_id: str = Field(..., min_length=1)
    nav_date: Optional[date] = None
    tolerance_pct: Optional[Decimal] = Field(None, ge=0, description="Allowed |difference| in percent")


# -------------------------------------------------------------------
# Calculation
# -------------------------------------------------------------------

@router.post("/calculate")
async def calculate_nav(
    request: CalculateRequest,
    service: NAVService = Depends(get_nav_service),
):
    result = await service.calculate_nav(
        request.fund_id,
        request.share_class_id,
        request.nav_date or today_local(),
        persist=request.persist,
    )
    return result.as_dict()


@router.post("/verify")
async def verify_nav(
    request: VerifyRequest,
    service: NAVService = Depends(get_nav_service),
):
    comparison = await service.verify_nav(
        request.fund_id,
        request.share_class_id,
        request.nav_date or today_local(),
        tolerance_pct=request.tolerance_pct,
    )
    return comparison_to_dict(comparison)


# -------------------------------------------------------------------
# Runs
# -------------------------------------------------------------------

@router.post("/runs")
async def start_run(
    request: RunRequest,
    scheduler: NAVScheduler = Depends(get_scheduler),
):
    """Manual batch run; opens an approval like the scheduled run does"""
    run = await scheduler.execute_scheduled_run(request.nav_date or today_local(), triggered_by="MANUAL")
    return run_to_dict(run)


@router.post("/runs/retry")
async def retry_run(
    request: RetryRequest,
    scheduler: NAVScheduler = Depends(get_scheduler),
):
    run = await scheduler.retry_failed_run(request.nav_date)
    return run_to_dict(run)


@router.get("/runs")
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    service: NAVService = Depends(get_nav_service),
):
    return [run_to_dict(run) for run in await service.list_runs(limit)]


@router.get("/runs/{run_id}")
async def get_run(run_id: str, service: NAVService = Depends(get_nav_service)):
    return run_to_dict(await service.get_run(run_id))


@router.get("/schedule/next")
async def next_scheduled_run(scheduler: NAVScheduler = Depends(get_scheduler)):
    scheduled = scheduler.next_scheduled_run()
    if scheduled is None:
        return {"scheduled_time": None, "nav_date": None, "status": "NONE"}
    return {
        "scheduled_time": scheduled.scheduled_time.isoformat(),
        "nav_date": scheduled.nav_date.isoformat(),
        "status": scheduled.status,
    }


# -------------------------------------------------------------------
# Records
# -------------------------------------------------------------------

@router.get("/records/{fund_id}/{share_class_id}")
async def list_records(
    fund_id: str,
    share_class_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(100, ge=1, le=1000),
    service: NAVService = Depends(get_nav_service),
):
    records = await service.list_records(FundKey(fund_id, share_class_id), start, end, limit)
    return [record_to_dict(r) for r in records]


@router.get("/records/{fund_id}/{share_class_id}/{nav_date}")
async def get_record(
    fund_id: str,
    share_class_id: str,
    nav_date: date,
    service: NAVService = Depends(get_nav_service),
):
    record = await service.get_record(FundKey(fund_id, share_class_id), nav_date)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No NAV record for {fund_id}/{share_class_id} on {nav_date}")
    return record_to_dict(record)


@router.get("/records/{fund_id}/{share_class_id}/{nav_date}/history")
async def get_record_history(
    fund_id: str,
    share_class_id: str,
    nav_date: date,
    service: NAVService = Depends(get_nav_service),
):
    history = await service.get_record_history(FundKey(fund_id, share_class_id), nav_date)
    return [change_to_dict(c) for c in history]
