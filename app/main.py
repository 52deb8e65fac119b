"""
FastAPI Main Application with NAV Scheduler
Wires configuration, persistence, registry clients and services once at startup
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI

from app.api.errors import register_exception_handlers
from app.api.routes import approvals, funds, health, nav
from app.config import settings
from app.core.container import build_container
from app.core.logging import setup_logging
from app.domain.services.config_engine import ConfigEngine, ScheduleConfig
from app.infrastructure.db import database
from app.infrastructure.db.repositories.fund_config_repository import FundConfigRepository

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def load_config_engine(config_dir: Path):
    """None when the directory carries no funds.yml"""
    if not (config_dir / "funds.yml").exists():
        logger.info("⚙️  No funds.yml in %s; using registry fund data and settings defaults", config_dir)
        return None
    engine = ConfigEngine(config_dir, schedule_defaults=ScheduleConfig.from_settings(settings))
    engine.load_all()
    return engine


async def seed_fund_configs(session_factory, config_engine: ConfigEngine) -> int:
    """Insert configured funds that are not stored yet; stored rows win"""
    seeded = 0
    async with session_factory() as session:
        repo = FundConfigRepository(session)
        for config in config_engine.funds:
            if await repo.get(config.fund_id) is None:
                await repo.upsert(config)
                seeded += 1
        await session.commit()
    return seeded


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Handles startup and shutdown of all services
    """
    logger.info("=" * 60)
    logger.info("🚀 Starting NAV Engine")
    logger.info("=" * 60)

    # 1. Database
    await database.init_db()
    logger.info("✅ Database initialized")

    # 2. Configuration
    config_dir = Path(settings.CONFIG_DIR)
    if not config_dir.is_absolute():
        config_dir = Path(__file__).parent.parent / config_dir
    config_engine = load_config_engine(config_dir)
    if config_engine is not None:
        seeded = await seed_fund_configs(database.async_session_factory, config_engine)
        logger.info("✅ Configuration loaded | funds=%s | seeded=%s", len(config_engine.funds), seeded)

    # 3. Services
    container = build_container(settings, database.async_session_factory, config_engine=config_engine)
    app.state.container = container

    # 4. Scheduler
    if settings.SCHEDULER_ENABLED:
        try:
            container.scheduler.start()
            upcoming = container.scheduler.next_scheduled_run()
            if upcoming:
                logger.info("📅 Next NAV run: %s (nav_date=%s)", upcoming.scheduled_time.isoformat(), upcoming.nav_date)
        except Exception as e:
            logger.error(f"❌ Failed to start scheduler: {e}")
    else:
        logger.info("⏰ Scheduler disabled")

    logger.info(f"   ✅ API Server: http://{settings.API_HOST}:{settings.API_PORT}")

    yield

    logger.info("🛑 Shutting down NAV Engine...")
    container.scheduler.shutdown()
    await database.close_db()
    logger.info("👋 NAV Engine shutdown complete")


app = FastAPI(
    title="NAV Engine",
    description="Daily fund NAV calculation, validation and four-eyes approval",
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(health.router, tags=["Health"])
app.include_router(nav.router, prefix="/api/v1/nav", tags=["NAV"])
app.include_router(approvals.router, prefix="/api/v1/approvals", tags=["Approvals"])
app.include_router(funds.router, prefix="/api/v1/funds", tags=["Fund Configuration"])


@app.get("/")
async def root():
    return {"service": "NAV Engine", "version": "1.0.0", "docs": "/docs"}
