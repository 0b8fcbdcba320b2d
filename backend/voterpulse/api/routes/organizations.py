from fastapi import APIRouter, Depends, HTTPException

from voterpulse.api.dependencies import (
    TenantContext,
    get_current_user_id,
    get_organization_service,
    get_tenant_context,
    require_permission,
    require_role,
)
from voterpulse.api.exceptions import APIError, NotFoundError, UnauthorizedError
from voterpulse.models.schemas import (
    InvitationCreate,
    MemberCreate,
    MemberUpdate,
    OrganizationCreate,
    OrganizationUpdate,
)
from voterpulse.services.organizations import OrganizationService, serialize_membership
from voterpulse.services.shared.exceptions import VoterPulseError
from voterpulse.utils.field_mapping import model_to_dict
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _serialize_member(membership) -> dict:
    return {
        "id": membership.id,
        "userId": membership.user_id,
        "role": membership.role,
        "status": membership.status,
        "permissions": membership.permissions or {},
    }


@router.get("")
async def list_my_organizations(
    user_id: int = Depends(get_current_user_id),
    service: OrganizationService = Depends(get_organization_service)
):
    """Organizations the caller is an active member of"""
    try:
        return await service.list_user_organizations(user_id)
    except Exception as e:
        logger.error(f"Error listing organizations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list organizations: {str(e)}")


@router.post("", status_code=201)
async def create_organization(
    request: OrganizationCreate,
    user_id: int = Depends(get_current_user_id),
    service: OrganizationService = Depends(get_organization_service)
):
    """Create an organization; the caller becomes its admin"""
    try:
        if await service.get_user(user_id) is None:
            raise UnauthorizedError("Unknown user")
        organization, membership = await service.create_organization(user_id, request.name)
        return serialize_membership(organization, membership)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error creating organization: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create organization: {str(e)}")


@router.get("/members")
async def list_members(
    tenant: TenantContext = Depends(get_tenant_context),
    service: OrganizationService = Depends(get_organization_service)
):
    try:
        return await service.list_members(tenant.organization_id)
    except Exception as e:
        logger.error(f"Error listing members: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list members: {str(e)}")


@router.post("/members", status_code=201)
async def add_member(
    request: MemberCreate,
    tenant: TenantContext = Depends(require_permission("can_manage_team")),
    service: OrganizationService = Depends(get_organization_service)
):
    """Invite a user (created by email if unknown) into the organization"""
    try:
        membership = await service.add_member(
            tenant.organization_id,
            email=request.email,
            role=request.role,
            permissions=request.permissions,
            first_name=request.first_name,
            last_name=request.last_name
        )
        return _serialize_member(membership)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error adding member: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to add member: {str(e)}")


@router.patch("/members/{member_id}")
async def update_member(
    member_id: int,
    request: MemberUpdate,
    tenant: TenantContext = Depends(require_permission("can_manage_team")),
    service: OrganizationService = Depends(get_organization_service)
):
    """Change a member's role, status or permissions"""
    try:
        membership = await service.update_member(
            tenant.organization_id,
            member_id,
            request.model_dump(exclude_unset=True)
        )
        if membership is None:
            raise NotFoundError("Member not found")
        return _serialize_member(membership)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating member {member_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update member: {str(e)}")


@router.post("/invitations", status_code=201)
async def create_invitation(
    request: InvitationCreate,
    tenant: TenantContext = Depends(require_role("admin", "manager")),
    service: OrganizationService = Depends(get_organization_service)
):
    """Invite an email address; the token is handed to the invitee out of band"""
    try:
        invitation = await service.create_invitation(
            tenant.organization_id,
            invited_by=tenant.user_id,
            email=request.email,
            role=request.role
        )
        return model_to_dict(invitation)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error creating invitation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create invitation: {str(e)}")


@router.post("/invitations/{token}/accept")
async def accept_invitation(
    token: str,
    user_id: int = Depends(get_current_user_id),
    service: OrganizationService = Depends(get_organization_service)
):
    """Join the inviting organization; the caller's email must match the invitation"""
    try:
        return await service.accept_invitation(token, user_id)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error accepting invitation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to accept invitation: {str(e)}")


@router.get("/{organization_id}")
async def get_organization(
    organization_id: int,
    user_id: int = Depends(get_current_user_id),
    service: OrganizationService = Depends(get_organization_service)
):
    try:
        return await service.get_organization(organization_id, user_id)
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error getting organization {organization_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to get organization: {str(e)}")


@router.patch("/{organization_id}")
async def update_organization(
    organization_id: int,
    request: OrganizationUpdate,
    user_id: int = Depends(get_current_user_id),
    service: OrganizationService = Depends(get_organization_service)
):
    """Update name, description or settings (admins only)"""
    try:
        return await service.update_organization(
            organization_id,
            user_id,
            request.model_dump(exclude_unset=True)
        )
    except (APIError, VoterPulseError):
        raise
    except Exception as e:
        logger.error(f"Error updating organization {organization_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update organization: {str(e)}")
