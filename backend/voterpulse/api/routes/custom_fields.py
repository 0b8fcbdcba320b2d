from fastapi import APIRouter, Depends, HTTPException

from voterpulse.api.dependencies import (
    TenantContext,
    get_custom_field_service,
    get_tenant_context,
    require_permission,
    require_role,
)
from voterpulse.api.exceptions import APIError, NotFoundError
from voterpulse.models.schemas import CustomFieldBulkSet, CustomFieldCreate, CustomFieldUpdate, CustomFieldValueSet
from voterpulse.services.custom_fields import CustomFieldService, serialize_definition
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/definitions")
async def list_definitions(
    tenant: TenantContext = Depends(get_tenant_context),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    """The organization's custom fields in display order"""
    try:
        definitions = await service.list_definitions(tenant.organization_id)
        return [serialize_definition(definition) for definition in definitions]
    except Exception as e:
        logger.error(f"Error listing custom fields: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list custom fields: {str(e)}")


@router.post("/definitions", status_code=201)
async def create_definition(
    request: CustomFieldCreate,
    tenant: TenantContext = Depends(require_role("admin")),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    try:
        definition = await service.create_definition(
            tenant.organization_id,
            field_name=request.field_name,
            field_label=request.field_label,
            field_type=request.field_type,
            options=request.options,
            is_required=request.is_required,
            sort_order=request.sort_order
        )
        return serialize_definition(definition)
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error creating custom field: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create custom field: {str(e)}")


@router.patch("/definitions/{field_id}")
async def update_definition(
    field_id: int,
    request: CustomFieldUpdate,
    tenant: TenantContext = Depends(require_role("admin")),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    """Update label, options, required flag or order (name and type are fixed)"""
    try:
        definition = await service.update_definition(
            tenant.organization_id,
            field_id,
            request.model_dump(by_alias=True, exclude_unset=True)
        )
        if not definition:
            raise NotFoundError("Custom field not found")
        return serialize_definition(definition)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating custom field {field_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update custom field: {str(e)}")


@router.delete("/definitions/{field_id}")
async def delete_definition(
    field_id: int,
    tenant: TenantContext = Depends(require_role("admin")),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    try:
        deleted = await service.delete_definition(tenant.organization_id, field_id)
        if not deleted:
            raise NotFoundError("Custom field not found")
        return {"message": "Custom field deleted"}
    except APIError:
        raise
    except Exception as e:
        logger.error(f"Error deleting custom field {field_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete custom field: {str(e)}")


@router.post("/values/bulk")
async def bulk_set_values(
    request: CustomFieldBulkSet,
    tenant: TenantContext = Depends(require_permission("can_manage_voters")),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    """Set one field to the same value on many voters"""
    try:
        return await service.bulk_set_values(
            tenant.organization_id,
            request.field_id,
            request.voter_ids,
            request.value
        )
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error bulk setting custom field {request.field_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to set custom field values: {str(e)}")


@router.get("/values/{voter_id}")
async def get_voter_values(
    voter_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    try:
        return await service.get_voter_values(tenant.organization_id, voter_id)
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error getting custom field values for voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get custom field values: {str(e)}")


@router.post("/values/{voter_id}")
async def set_voter_value(
    voter_id: int,
    request: CustomFieldValueSet,
    tenant: TenantContext = Depends(require_permission("can_manage_voters")),
    service: CustomFieldService = Depends(get_custom_field_service)
):
    try:
        return await service.set_voter_value(tenant.organization_id, voter_id, request.field_id, request.value)
    except VoterPulseError:
        raise
    except Exception as e:
        logger.error(f"Error setting custom field value for voter {voter_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to set custom field value: {str(e)}")
