"""
Fund Config Repository
Simple upsert + fetch for per-fund configuration.
"""

from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models import FundConfig
from app.infrastructure.db.models import FundConfigModel
from app.utils.time import now_utc_naive


class FundConfigRepository:
    """Repository for fund configurations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load(self, fund_id: str) -> Optional[FundConfigModel]:
        result = await self.session.execute(
            select(FundConfigModel).where(FundConfigModel.fund_id == fund_id)
        )
        return result.scalar_one_or_none()

    async def get(self, fund_id: str) -> Optional[FundConfig]:
        model = await self._load(fund_id)
        return FundConfig.from_dict(model.config) if model else None

    async def list_all(self, active_only: bool = False) -> List[FundConfig]:
        query = select(FundConfigModel).order_by(FundConfigModel.fund_id)
        if active_only:
            query = query.where(FundConfigModel.active.is_(True))
        result = await self.session.execute(query)
        return [FundConfig.from_dict(m.config) for m in result.scalars().all()]

    async def upsert(self, config: FundConfig) -> FundConfig:
        existing = await self._load(config.fund_id)
        if existing:
            existing.name = config.name
            existing.currency = config.currency
            existing.active = config.active
            existing.config = config.as_dict()
            existing.updated_at = now_utc_naive()
            await self.session.flush()
            return config

        self.session.add(
            FundConfigModel(
                fund_id=config.fund_id,
                name=config.name,
                currency=config.currency,
                active=config.active,
                config=config.as_dict(),
                created_at=now_utc_naive(),
                updated_at=now_utc_naive(),
            )
        )
        await self.session.flush()
        return config

    async def delete(self, fund_id: str) -> bool:
        result = await self.session.execute(
            delete(FundConfigModel).where(FundConfigModel.fund_id == fund_id)
        )
        return result.rowcount > 0
