"""
Fund Configuration API Routes
Per-fund fee, pricing and accrual policy (administrator-maintained)
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models import FundConfig
from app.domain.services.config_engine import validate_fund_config
from app.infrastructure.db.database import get_db
from app.infrastructure.db.repositories.fund_config_repository import FundConfigRepository

router = APIRouter()


class PricingPolicyIn(BaseModel):
    equity_price_type: str = "CLOSE"
    bond_price_type: str = "BID"
    derivative_price_type: str = "MARK_TO_MARKET"
    fx_rate_time: str = "CLOSE"
    fx_rate_source: str = "ECB"


class AccrualPolicyIn(BaseModel):
    fee_accrual_basis: str = "DAILY"
    dividend_accrual_policy: str = "EX_DATE"
    interest_day_count: str = "ACT_365"
    fee_day_count: str = "ACT_365"


class ShareClassIn(BaseModel):
    share_class_id: str = Field(..., min_length=1)
    name: str = ""
    currency: Optional[str] = None
    isin: Optional[str] = None
    hedged: bool = False
    active: bool = True
    management_fee_rate: Optional[Decimal] = None
    performance_fee_rate: Optional[Decimal] = None
    distribution_policy: str = "ACC"


class FundConfigIn(BaseModel):
    name: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3)
    fund_type: str = "UCITS"
    active: bool = True
    management_fee_rate: Decimal = Field(..., ge=0)
    depositary_fee_rate: Decimal = Field(Decimal("0"), ge=0)
    admin_fee_rate: Decimal = Field(Decimal("0"), ge=0)
    performance_fee_rate: Optional[Decimal] = Field(None, ge=0)
    performance_fee_type: Optional[str] = None
    hurdle_rate: Optional[Decimal] = None
    high_water_mark: Optional[Decimal] = None
    pricing_policy: PricingPolicyIn = Field(default_factory=PricingPolicyIn)
    accrual_policy: AccrualPolicyIn = Field(default_factory=AccrualPolicyIn)
    share_classes: List[ShareClassIn] = Field(default_factory=list)


@router.get("")
async def list_funds(active_only: bool = False, db: AsyncSession = Depends(get_db)):
    configs = await FundConfigRepository(db).list_all(active_only=active_only)
    return [c.as_dict() for c in configs]


@router.get("/{fund_id}")
async def get_fund(fund_id: str, db: AsyncSession = Depends(get_db)):
    config = await FundConfigRepository(db).get(fund_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Fund not configured: {fund_id}")
    return config.as_dict()


@router.put("/{fund_id}")
async def upsert_fund(fund_id: str, payload: FundConfigIn, db: AsyncSession = Depends(get_db)):
    data = payload.model_dump()
    data["fund_id"] = fund_id
    try:
        config = FundConfig.from_dict(data)
        validate_fund_config(config)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    await FundConfigRepository(db).upsert(config)
    return config.as_dict()


@router.delete("/{fund_id}")
async def delete_fund(fund_id: str, db: AsyncSession = Depends(get_db)):
    deleted = await FundConfigRepository(db).delete(fund_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Fund not configured: {fund_id}")
    return {"deleted": fund_id}
