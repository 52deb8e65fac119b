"""
NAV Approval API Routes
Four-eyes sign-off and publication
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import get_approval_service
from app.api.serializers import approval_to_dict
from app.domain.models import ApprovalStatus
from app.services.approval_service import ApprovalService

router = APIRouter()


class ActorRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    actor_name: str = Field(..., min_length=1)
    comment: Optional[str] = Field(None, max_length=2000)


class ApproveRequest(ActorRequest):
    expected_status: Optional[ApprovalStatus] = Field(
        None, description="State the caller is approving from (default: current)"
    )


@router.get("/pending")
async def list_pending(service: ApprovalService = Depends(get_approval_service)):
    return [approval_to_dict(a) for a in await service.list_pending()]


@router.get("/{approval_id}")
async def get_approval(approval_id: str, service: ApprovalService = Depends(get_approval_service)):
    return approval_to_dict(await service.get(approval_id))


@router.post("/{approval_id}/approve")
async def approve(
    approval_id: str,
    request: ApproveRequest,
    service: ApprovalService = Depends(get_approval_service),
):
    approval = await service.approve(
        approval_id,
        actor_id=request.actor_id,
        actor_name=request.actor_name,
        comment=request.comment,
        expected_status=request.expected_status,
    )
    return approval_to_dict(approval)


@router.post("/{approval_id}/reject")
async def reject(
    approval_id: str,
    request: ActorRequest,
    service: ApprovalService = Depends(get_approval_service),
):
    approval = await service.reject(
        approval_id,
        actor_id=request.actor_id,
        actor_name=request.actor_name,
        comment=request.comment,
    )
    return approval_to_dict(approval)


@router.post("/{approval_id}/publish")
async def publish(
    approval_id: str,
    request: ActorRequest,
    service: ApprovalService = Depends(get_approval_service),
):
    approval = await service.publish(approval_id, actor_id=request.actor_id, actor_name=request.actor_name)
    return approval_to_dict(approval)
