from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from typing import Any, Dict, Optional

from voterpulse.api.dependencies import (
    TenantContext,
    get_interaction_service,
    get_tenant_context,
    get_voter_service,
    require_permission,
)
from voterpulse.api.exceptions import APIError, NotFoundError
from voterpulse.config import config
from voterpulse.services.interactions import InteractionService
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.services.shared.query_builders import VoterFilterCriteria, parse_criteria
from voterpulse.services.voters import VoterService, serialize_voter
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Query parameters that may repeat (?county=27&county=53)
LIST_CRITERIA_PARAMS = (
    "congressionalDistrict", "legislativeDistrict", "stateSenateDistrict", "county",
    "city", "zipCode", "precinctCode", "party", "supportLevel",
)
FLAG_CRITERIA_PARAMS = ("hasPhone", "hasEmail")


def criteria_from_query(request: Request) -> Optional[VoterFilterCriteria]:
    """Filter criteria from query parameters; None when no filter is given"""
    raw: Dict[str, Any] = {}
    for name in LIST_CRITERIA_PARAMS:
        values = [v for v in request.query_params.getlist(name) if v != ""]
        if values:
            raw[name] = values
    for name in FLAG_CRITERIA_PARAMS:
        if request.query_params.get(name):
            raw[name] = request.query_params[name]
    return parse_criteria(raw) if raw else None


@router.get("")
async def search_voters(
    request: Request,
    search: Optional[str] = Query(None, description="Name, phone, street, city or voter id"),
    listId: Optional[int] = Query(None, description="Only members of this list"),
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterService = Depends(get_voter_service)
):
    """Search voters with filters and pagination"""
    try:
        criteria = criteria_from_query(request)
        voters, total = await service.search_voters(
            tenant.organization_id,
            criteria=criteria,
            search=search,
            list_id=listId,
            page=page,
            limit=limit
        )
        return {
            "voters": [serialize_voter(v) for v in voters],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit
            }
        }
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error searching voters: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to search voters: {str(e)}")


@router.get("/filter-options")
async def get_filter_options(
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterService = Depends(get_voter_service)
):
    """Distinct district and geography values for filter dropdowns"""
    try:
        return await service.get_filter_options(tenant.organization_id)
    except Exception as e:
        logger.error(f"Error getting filter options: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get filter options: {str(e)}")


@router.get("/{voter_id}")
async def get_voter(
    voter_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterService = Depends(get_voter_service)
):
    """Voter with election history, recent interactions and lists"""
    try:
        detail = await service.get_voter_detail(tenant.organization_id, voter_id)
        if detail is None:
            raise NotFoundError("Voter not found")
        return detail
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error getting voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get voter: {str(e)}")


@router.get("/{voter_id}/interactions")
async def get_voter_interactions(
    voter_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=config.MAX_PAGE_SIZE),
    tenant: TenantContext = Depends(get_tenant_context),
    service: InteractionService = Depends(get_interaction_service)
):
    try:
        items, total = await service.get_voter_interactions(tenant.organization_id, voter_id, page=page, limit=limit)
        return {"interactions": items, "pagination": {"page": page, "limit": limit, "total": total}}
    except Exception as e:
        logger.error(f"Error getting interactions for voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get voter interactions: {str(e)}")


@router.post("", status_code=201)
async def create_voter(
    payload: Dict[str, Any] = Body(...),
    tenant: TenantContext = Depends(require_permission("can_manage_voters")),
    service: VoterService = Depends(get_voter_service)
):
    """Manually add a voter"""
    try:
        voter = await service.create_voter(tenant.organization_id, payload)
        return serialize_voter(voter)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error creating voter: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create voter: {str(e)}")


@router.put("/{voter_id}")
async def update_voter(
    voter_id: int,
    payload: Dict[str, Any] = Body(...),
    tenant: TenantContext = Depends(require_permission("can_manage_voters")),
    service: VoterService = Depends(get_voter_service)
):
    try:
        voter = await service.update_voter(tenant.organization_id, voter_id, payload)
        if voter is None:
            raise NotFoundError("Voter not found")
        return serialize_voter(voter)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update voter: {str(e)}")


@router.delete("/{voter_id}")
async def delete_voter(
    voter_id: int,
    tenant: TenantContext = Depends(require_permission("can_manage_voters")),
    service: VoterService = Depends(get_voter_service)
):
    try:
        deleted = await service.delete_voter(tenant.organization_id, voter_id)
        if not deleted:
            raise NotFoundError("Voter not found")
        return {"message": "Voter deleted"}
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error deleting voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete voter: {str(e)}")
