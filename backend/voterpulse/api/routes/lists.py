from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import List, Optional

from voterpulse.api.dependencies import (
    TenantContext,
    get_list_populator,
    get_tenant_context,
    get_voter_list_service,
    require_permission,
)
from voterpulse.api.exceptions import APIError, NotFoundError
from voterpulse.api.security import BULK_RATE_LIMIT, limiter
from voterpulse.config import config
from voterpulse.models.schemas import PopulateListRequest, VoterIdsRequest, VoterListCreate, VoterListUpdate
from voterpulse.services.list_populator import ListPopulator
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.services.voter_lists import VoterListService, serialize_list
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=List[dict])
async def list_voter_lists(
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterListService = Depends(get_voter_list_service)
):
    """All lists of the organization with member counts"""
    try:
        lists = await service.list_lists(tenant.organization_id)
        return [serialize_list(voter_list, count) for voter_list, count in lists]
    except Exception as e:
        logger.error(f"Error listing voter lists: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list voter lists: {str(e)}")


@router.post("", status_code=201)
async def create_voter_list(
    request: VoterListCreate,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    service: VoterListService = Depends(get_voter_list_service)
):
    try:
        voter_list = await service.create_list(
            tenant.organization_id,
            created_by=tenant.user_id,
            name=request.name,
            description=request.description,
            list_type=request.type,
            is_public=request.is_public,
            is_dynamic=request.is_dynamic,
            filter_criteria=request.filter_criteria
        )
        return serialize_list(voter_list, 0)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error creating voter list: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create voter list: {str(e)}")


@router.get("/{list_id}")
async def get_voter_list(
    list_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterListService = Depends(get_voter_list_service)
):
    try:
        detail = await service.get_list_detail(tenant.organization_id, list_id)
        if detail is None:
            raise NotFoundError("List not found")
        return detail
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error getting voter list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get voter list: {str(e)}")


@router.put("/{list_id}")
async def update_voter_list(
    list_id: int,
    request: VoterListUpdate,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    service: VoterListService = Depends(get_voter_list_service)
):
    try:
        changes = request.model_dump(by_alias=True, exclude_unset=True)
        voter_list = await service.update_list(tenant.organization_id, list_id, changes)
        if voter_list is None:
            raise NotFoundError("List not found")
        return serialize_list(voter_list)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating voter list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update voter list: {str(e)}")


@router.delete("/{list_id}")
async def delete_voter_list(
    list_id: int,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    service: VoterListService = Depends(get_voter_list_service)
):
    try:
        deleted = await service.delete_list(tenant.organization_id, list_id)
        if not deleted:
            raise NotFoundError("List not found")
        return {"message": "List deleted"}
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error deleting voter list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete voter list: {str(e)}")


@router.get("/{list_id}/voters")
async def get_list_members(
    list_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    tenant: TenantContext = Depends(get_tenant_context),
    service: VoterListService = Depends(get_voter_list_service)
):
    """Paginated list members"""
    try:
        result = await service.get_members(tenant.organization_id, list_id, page=page, limit=limit)
        if result is None:
            raise NotFoundError("List not found")
        members, total = result
        return {
            "voters": members,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit
            }
        }
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error getting members of list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get list members: {str(e)}")


@router.post("/{list_id}/voters")
async def add_list_members(
    list_id: int,
    request: VoterIdsRequest,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    service: VoterListService = Depends(get_voter_list_service)
):
    """Add voters to a static list (existing members are left as they are)"""
    try:
        added = await service.add_voters(tenant.organization_id, list_id, request.voter_ids, added_by=tenant.user_id)
        if added is None:
            raise NotFoundError("List not found")
        return {"addedCount": added}
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error adding voters to list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to add voters to list: {str(e)}")


@router.delete("/{list_id}/voters")
async def remove_list_members(
    list_id: int,
    request: VoterIdsRequest,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    service: VoterListService = Depends(get_voter_list_service)
):
    try:
        removed = await service.remove_voters(tenant.organization_id, list_id, request.voter_ids)
        if removed is None:
            raise NotFoundError("List not found")
        return {"removedCount": removed}
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error removing voters from list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to remove voters from list: {str(e)}")


@router.post("/{list_id}/populate")
@limiter.limit(BULK_RATE_LIMIT)
async def populate_voter_list(
    request: Request,
    list_id: int,
    body: Optional[PopulateListRequest] = None,
    tenant: TenantContext = Depends(require_permission("can_manage_lists")),
    populator: ListPopulator = Depends(get_list_populator)
):
    """Replace the list's members with the voters matching its filter criteria"""
    try:
        count = await populator.populate(
            tenant.organization_id,
            list_id,
            criteria=body.filter_criteria if body else None,
            user_id=tenant.user_id
        )
        return {"message": f"List populated with {count} voters", "addedCount": count}
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error populating list {list_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to populate list: {str(e)}")
