
from fastapi import APIRouter, Request
from sqlalchemy import text

from app.infrastructure.db import database

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    container = getattr(request.app.state, "container", None)
    scheduler_status = "disabled"
    if container is not None and container.scheduler.scheduler.running:
        scheduler_status = "running"
    return {
        "status": "ok",
        "service": "NAV Engine",
        "scheduler": scheduler_status,
    }


@router.get("/ready")
async def ready():
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_connected = True
    except Exception:
        db_connected = False

    return {
        "status": "ready" if db_connected else "not_ready",
        "db_connected": db_connected,
    }
