from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from voterpulse.api.dependencies import TenantContext, get_interaction_service, get_tenant_context
from voterpulse.config import config
from voterpulse.models.schemas import InteractionCreate
from voterpulse.services.interactions import InteractionService, serialize_interaction
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def create_interaction(
    request: InteractionCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    service: InteractionService = Depends(get_interaction_service)
):
    """Log an outreach attempt; a captured support level is written onto the voter"""
    try:
        interaction = await service.create_interaction(
            tenant.organization_id,
            user_id=tenant.user_id,
            voter_id=request.voter_id,
            interaction_type=request.type,
            result=request.result,
            support_level=request.support_level,
            notes=request.notes,
            duration=request.duration,
            script_id=request.script_id,
            list_id=request.list_id
        )
        return serialize_interaction(interaction)
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error creating interaction: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create interaction: {str(e)}")


@router.get("/recent")
async def get_recent_interactions(
    limit: int = Query(50, ge=1, le=config.MAX_PAGE_SIZE),
    type: Optional[str] = Query(None, description="Only this interaction type"),
    tenant: TenantContext = Depends(get_tenant_context),
    service: InteractionService = Depends(get_interaction_service)
):
    try:
        return await service.get_recent(tenant.organization_id, limit=limit, interaction_type=type)
    except Exception as e:
        logger.error(f"Error getting recent interactions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get recent interactions: {str(e)}")


@router.get("/mine")
async def get_my_interactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=config.MAX_PAGE_SIZE),
    tenant: TenantContext = Depends(get_tenant_context),
    service: InteractionService = Depends(get_interaction_service)
):
    """Interactions logged by the calling user"""
    try:
        return await service.get_user_activity(tenant.organization_id, tenant.user_id, page=page, limit=limit)
    except Exception as e:
        logger.error(f"Error getting user activity: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get user activity: {str(e)}")


@router.get("/stats")
async def get_interaction_stats(
    days: int = Query(7, ge=1, le=365),
    tenant: TenantContext = Depends(get_tenant_context),
    service: InteractionService = Depends(get_interaction_service)
):
    try:
        return await service.get_stats(tenant.organization_id, days=days)
    except Exception as e:
        logger.error(f"Error getting interaction stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get interaction stats: {str(e)}")
