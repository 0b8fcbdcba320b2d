from fastapi import APIRouter, Depends, HTTPException, Query

from voterpulse.api.dependencies import TenantContext, get_dashboard_service, get_tenant_context
from voterpulse.services.dashboard import DashboardService
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/metrics")
async def get_metrics(
    tenant: TenantContext = Depends(get_tenant_context),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Headline counts for the organization"""
    try:
        return await service.get_metrics(tenant.organization_id)
    except Exception as e:
        logger.error(f"Error getting dashboard metrics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get dashboard metrics: {str(e)}")


@router.get("/activity")
async def get_activity(
    limit: int = Query(20, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant_context),
    service: DashboardService = Depends(get_dashboard_service)
):
    try:
        return await service.get_activity(tenant.organization_id, limit=limit)
    except Exception as e:
        logger.error(f"Error getting dashboard activity: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get dashboard activity: {str(e)}")


@router.get("/top-lists")
async def get_top_lists(
    limit: int = Query(5, ge=1, le=50),
    tenant: TenantContext = Depends(get_tenant_context),
    service: DashboardService = Depends(get_dashboard_service)
):
    try:
        return await service.get_top_lists(tenant.organization_id, limit=limit)
    except Exception as e:
        logger.error(f"Error getting top lists: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get top lists: {str(e)}")


@router.get("/trends")
async def get_trends(
    days: int = Query(7, ge=1, le=90),
    tenant: TenantContext = Depends(get_tenant_context),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Daily interaction counts for the last ``days`` days"""
    try:
        return await service.get_trends(tenant.organization_id, days=days)
    except Exception as e:
        logger.error(f"Error getting interaction trends: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get interaction trends: {str(e)}")
