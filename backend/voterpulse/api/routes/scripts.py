from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from voterpulse.api.dependencies import TenantContext, get_script_service, get_tenant_context, require_permission
from voterpulse.api.exceptions import APIError, NotFoundError
from voterpulse.models.schemas import ScriptCreate, ScriptUpdate
from voterpulse.services.scripts import ScriptService
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.utils.field_mapping import model_to_dict
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=List[dict])
async def list_scripts(
    type: Optional[str] = Query(None, description="Filter by script type"),
    includeInactive: bool = Query(False),
    tenant: TenantContext = Depends(get_tenant_context),
    service: ScriptService = Depends(get_script_service)
):
    """List the organization's scripts"""
    try:
        scripts = await service.list_scripts(
            tenant.organization_id,
            script_type=type,
            active_only=not includeInactive
        )
        return [model_to_dict(script) for script in scripts]
    except Exception as e:
        logger.error(f"Error listing scripts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list scripts: {str(e)}")


@router.post("", status_code=201)
async def create_script(
    request: ScriptCreate,
    tenant: TenantContext = Depends(require_permission("can_manage_scripts")),
    service: ScriptService = Depends(get_script_service)
):
    try:
        script = await service.create_script(
            tenant.organization_id,
            created_by=tenant.user_id,
            name=request.name,
            content=request.content,
            script_type=request.type
        )
        return model_to_dict(script)
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error creating script: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create script: {str(e)}")


@router.get("/{script_id}")
async def get_script(
    script_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: ScriptService = Depends(get_script_service)
):
    try:
        script = await service.get_script(tenant.organization_id, script_id)
        if not script:
            raise NotFoundError("Script not found")
        return model_to_dict(script)
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error getting script {script_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get script: {str(e)}")


@router.put("/{script_id}")
async def update_script(
    script_id: int,
    request: ScriptUpdate,
    tenant: TenantContext = Depends(require_permission("can_manage_scripts")),
    service: ScriptService = Depends(get_script_service)
):
    try:
        script = await service.update_script(
            tenant.organization_id,
            script_id,
            request.model_dump(by_alias=True, exclude_unset=True)
        )
        if not script:
            raise NotFoundError("Script not found")
        return model_to_dict(script)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating script {script_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update script: {str(e)}")


@router.delete("/{script_id}")
async def delete_script(
    script_id: int,
    tenant: TenantContext = Depends(require_permission("can_manage_scripts")),
    service: ScriptService = Depends(get_script_service)
):
    try:
        deleted = await service.delete_script(tenant.organization_id, script_id)
        if not deleted:
            raise NotFoundError("Script not found")
        return {"message": "Script deleted"}
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error deleting script {script_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete script: {str(e)}")
