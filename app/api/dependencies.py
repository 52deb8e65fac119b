"""FastAPI dependencies resolving services from app.state"""

from fastapi import HTTPException, Request

from app.core.container import ServiceContainer
from app.scheduler.nav_scheduler import NAVScheduler
from app.services.approval_service import ApprovalService
from app.services.nav_service import NAVService


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return container


def get_nav_service(request: Request) -> NAVService:
    return get_container(request).nav_service


def get_approval_service(request: Request) -> ApprovalService:
    return get_container(request).approval_service


def get_scheduler(request: Request) -> NAVScheduler:
    return get_container(request).scheduler
