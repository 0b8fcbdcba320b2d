from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from fastapi import Depends, Header

from voterpulse.api.exceptions import ForbiddenError, UnauthorizedError
from voterpulse.services.container import get_service_container
from voterpulse.services.custom_fields import CustomFieldService
from voterpulse.services.dashboard import DashboardService
from voterpulse.services.import_pipeline.job_tracker import ImportJobTracker
from voterpulse.services.import_pipeline.runner import ImportRunner
from voterpulse.services.interactions import InteractionService
from voterpulse.services.list_populator import ListPopulator
from voterpulse.services.organizations import OrganizationService
from voterpulse.services.scripts import ScriptService
from voterpulse.services.voter_lists import VoterListService
from voterpulse.services.voters import VoterService
from voterpulse.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TenantContext:
    """Resolved caller identity for a tenant-scoped request"""
    organization_id: int
    user_id: int
    role: str
    permissions: Dict[str, bool] = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_permission(self, name: str) -> bool:
        return self.is_admin or bool(self.permissions.get(name))


def _parse_id_header(value: Optional[str], header_name: str) -> int:
    if value is None or not value.strip():
        raise UnauthorizedError(f"{header_name} header is required")
    try:
        return int(value)
    except ValueError:
        raise UnauthorizedError(f"{header_name} header must be an integer")


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> int:
    """Authenticated user id (identity is established upstream)"""
    return _parse_id_header(x_user_id, "X-User-Id")


def get_organization_service() -> OrganizationService:
    container = get_service_container()
    return container.get_organization_service()


async def get_tenant_context(
    user_id: int = Depends(get_current_user_id),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-Id"),
    organization_service: OrganizationService = Depends(get_organization_service)
) -> TenantContext:
    """
    Resolve the organization a request acts on.

    Raises:
        UnauthorizedError: Missing or malformed identity headers
        ForbiddenError: The user is not an active member of the organization
    """
    organization_id = _parse_id_header(x_organization_id, "X-Organization-Id")
    membership = await organization_service.get_active_membership(organization_id, user_id)
    if membership is None:
        logger.warning(
            f"User {user_id} denied access to organization {organization_id}",
            extra={"organization_id": organization_id}
        )
        raise ForbiddenError("Not a member of this organization")
    return TenantContext(
        organization_id=organization_id,
        user_id=user_id,
        role=membership.role,
        permissions=dict(membership.permissions or {}),
    )


def require_permission(name: str) -> Callable:
    """Dependency factory: tenant context that holds ``name`` (admins hold all)"""
    async def dependency(tenant: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if not tenant.has_permission(name):
            raise ForbiddenError(f"Missing permission: {name}", details={"permission": name})
        return tenant
    return dependency


def require_role(*roles: str) -> Callable:
    """Dependency factory: tenant context whose role is one of ``roles``"""
    async def dependency(tenant: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if tenant.role not in roles:
            raise ForbiddenError(f"Requires role: {' or '.join(roles)}", details={"roles": list(roles)})
        return tenant
    return dependency


def get_import_tracker() -> ImportJobTracker:
    """Get the process-wide import job tracker"""
    container = get_service_container()
    return container.get_import_tracker()


def get_import_runner() -> ImportRunner:
    container = get_service_container()
    return container.get_import_runner()


def get_list_populator() -> ListPopulator:
    container = get_service_container()
    return container.get_list_populator()


def get_voter_service() -> VoterService:
    container = get_service_container()
    return container.get_voter_service()


def get_voter_list_service() -> VoterListService:
    container = get_service_container()
    return container.get_voter_list_service()


def get_interaction_service() -> InteractionService:
    container = get_service_container()
    return container.get_interaction_service()


def get_script_service() -> ScriptService:
    container = get_service_container()
    return container.get_script_service()


def get_dashboard_service() -> DashboardService:
    container = get_service_container()
    return container.get_dashboard_service()


def get_custom_field_service() -> CustomFieldService:
    container = get_service_container()
    return container.get_custom_field_service()
