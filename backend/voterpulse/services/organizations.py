"""
Organization (tenant) and membership service
"""
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from voterpulse.config import config
from voterpulse.db.database import AsyncSessionLocal, Organization, OrganizationMember, TeamInvitation, User
from voterpulse.services.shared.exceptions import (
    DuplicateRecordError,
    PermissionDeniedError,
    RecordValidationError,
    TenantAccessError,
)
from voterpulse.utils.field_mapping import model_to_dict

logger = logging.getLogger(__name__)

ROLES = ("admin", "manager", "volunteer")

MEMBER_STATUSES = ("active", "invited", "disabled")

PERMISSIONS = (
    "can_manage_voters",
    "can_manage_lists",
    "can_manage_scripts",
    "can_manage_team",
    "can_import_data",
    "can_export_data",
)

DEFAULT_ROLE_PERMISSIONS: Dict[str, Dict[str, bool]] = {
    "admin": {name: True for name in PERMISSIONS},
    "manager": {
        "can_manage_voters": True,
        "can_manage_lists": True,
        "can_manage_scripts": True,
        "can_manage_team": False,
        "can_import_data": True,
        "can_export_data": True,
    },
    "volunteer": {name: False for name in PERMISSIONS},
}

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _NON_SLUG.sub("-", name.lower()).strip("-")
    return slug[:80] or "organization"


def _check_role(role: str) -> None:
    if role not in ROLES:
        raise RecordValidationError(f"role must be one of {', '.join(ROLES)}", field="role")


def _check_permissions(permissions: Optional[Dict[str, bool]]) -> None:
    unknown = set(permissions or {}) - set(PERMISSIONS)
    if unknown:
        raise RecordValidationError(f"Unknown permissions: {', '.join(sorted(unknown))}", field="permissions")


def _check_email(email: Optional[str]) -> str:
    if not email or "@" not in email:
        raise RecordValidationError("A valid email is required", field="email")
    return email.strip().lower()


def serialize_membership(organization: Organization, membership: OrganizationMember) -> Dict[str, Any]:
    data = model_to_dict(organization)
    data["settings"] = organization.settings or {}
    data["role"] = membership.role
    data["permissions"] = membership.permissions or {}
    return data


class OrganizationService:

    async def get_user(self, user_id: int) -> Optional[User]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def get_active_membership(self, organization_id: int, user_id: int) -> Optional[OrganizationMember]:
        """Membership row if the user is an active member of the organization"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.status == "active"
                )
            )
            return result.scalar_one_or_none()

    async def create_organization(self, user_id: int, name: str) -> Tuple[Organization, OrganizationMember]:
        """Create an organization with the creator as its admin"""
        if not name or not name.strip():
            raise RecordValidationError("Name is required", field="name")

        async with AsyncSessionLocal() as session:
            async with session.begin():
                base_slug = slugify(name)
                taken = await session.execute(select(Organization.id).where(Organization.slug == base_slug))
                slug = base_slug if taken.scalar_one_or_none() is None else f"{base_slug}-{uuid.uuid4().hex[:6]}"

                organization = Organization(name=name.strip(), slug=slug)
                session.add(organization)
                await session.flush()

                membership = OrganizationMember(
                    organization_id=organization.id,
                    user_id=user_id,
                    role="admin",
                    status="active",
                    permissions=dict(DEFAULT_ROLE_PERMISSIONS["admin"]),
                )
                session.add(membership)

            logger.info(f"Created organization {organization.id} '{organization.name}'",
                        extra={"organization_id": organization.id})
            return organization, membership

    async def list_user_organizations(self, user_id: int) -> List[Dict[str, Any]]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Organization, OrganizationMember)
                .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
                .where(OrganizationMember.user_id == user_id, OrganizationMember.status == "active")
                .order_by(Organization.name)
            )
            return [serialize_membership(org, membership) for org, membership in result.all()]

    async def list_members(self, organization_id: int) -> List[Dict[str, Any]]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(OrganizationMember, User)
                .join(User, OrganizationMember.user_id == User.id)
                .where(OrganizationMember.organization_id == organization_id)
                .order_by(User.last_name, User.first_name)
            )
            return [
                {
                    "id": membership.id,
                    "userId": user.id,
                    "email": user.email,
                    "firstName": user.first_name,
                    "lastName": user.last_name,
                    "role": membership.role,
                    "status": membership.status,
                    "permissions": membership.permissions or {},
                }
                for membership, user in result.all()
            ]

    async def add_member(
        self,
        organization_id: int,
        email: str,
        role: str = "volunteer",
        permissions: Optional[Dict[str, bool]] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> OrganizationMember:
        """
        Add a user (created by email if unknown) to an organization.

        Raises:
            RecordValidationError: Missing email, unknown role or permission
            DuplicateRecordError: The user is already a member
        """
        email = _check_email(email)
        _check_role(role)
        _check_permissions(permissions)

        effective = dict(DEFAULT_ROLE_PERMISSIONS[role])
        effective.update(permissions or {})

        async with AsyncSessionLocal() as session:
            try:
                async with session.begin():
                    result = await session.execute(select(User).where(User.email == email))
                    user = result.scalar_one_or_none()
                    if user is None:
                        user = User(email=email, first_name=first_name, last_name=last_name)
                        session.add(user)
                        await session.flush()

                    membership = OrganizationMember(
                        organization_id=organization_id,
                        user_id=user.id,
                        role=role,
                        status="active",
                        permissions=effective,
                    )
                    session.add(membership)
            except IntegrityError as e:
                raise DuplicateRecordError(f"{email} is already a member of this organization", key=email) from e
            return membership

    async def get_organization(self, organization_id: int, user_id: int) -> Dict[str, Any]:
        """
        An organization with the caller's role and permissions.

        Raises:
            PermissionDeniedError: The user is not an active member
        """
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Organization, OrganizationMember)
                .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
                .where(
                    Organization.id == organization_id,
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.status == "active"
                )
            )
            row = result.first()
            if row is None:
                raise PermissionDeniedError("Not a member of this organization")
            return serialize_membership(*row)

    async def update_organization(self, organization_id: int, user_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update name, description and/or settings.

        Raises:
            PermissionDeniedError: The user is not an active admin of the organization
            RecordValidationError: Blank name
        """
        if "name" in changes and (changes["name"] is None or not changes["name"].strip()):
            raise RecordValidationError("Name cannot be blank", field="name")

        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await session.execute(
                    select(Organization, OrganizationMember)
                    .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
                    .where(
                        Organization.id == organization_id,
                        OrganizationMember.user_id == user_id,
                        OrganizationMember.status == "active"
                    )
                )
                row = result.first()
                if row is None or row[1].role != "admin":
                    raise PermissionDeniedError("Admin access required")
                organization, membership = row

                if "name" in changes:
                    organization.name = changes["name"].strip()
                if "description" in changes:
                    organization.description = changes["description"]
                if changes.get("settings") is not None:
                    organization.settings = dict(changes["settings"])
                organization.updated_at = datetime.utcnow()

            logger.info(f"Updated organization {organization_id}", extra={"organization_id": organization_id})
            return serialize_membership(organization, membership)

    async def update_member(
        self,
        organization_id: int,
        member_id: int,
        changes: Dict[str, Any],
    ) -> Optional[OrganizationMember]:
        """
        Change a member's role, status and/or permissions.

        A role change resets permissions to the new role's defaults before any
        explicit ``permissions`` are applied.

        Returns:
            The membership, or None if it is not in the organization

        Raises:
            RecordValidationError: Unknown role, status or permission, or the
                change would leave the organization without an active admin
        """
        role = changes.get("role")
        status = changes.get("status")
        permissions = changes.get("permissions")
        if role is not None:
            _check_role(role)
        if status is not None and status not in MEMBER_STATUSES:
            raise RecordValidationError(f"status must be one of {', '.join(MEMBER_STATUSES)}", field="status")
        _check_permissions(permissions)

        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await session.execute(
                    select(OrganizationMember).where(
                        OrganizationMember.id == member_id,
                        OrganizationMember.organization_id == organization_id
                    )
                )
                membership = result.scalar_one_or_none()
                if membership is None:
                    return None

                was_active_admin = membership.role == "admin" and membership.status == "active"
                if role is not None and role != membership.role:
                    membership.role = role
                    membership.permissions = dict(DEFAULT_ROLE_PERMISSIONS[role])
                if status is not None:
                    membership.status = status
                if permissions:
                    membership.permissions = {**(membership.permissions or {}), **permissions}

                if was_active_admin and (membership.role != "admin" or membership.status != "active"):
                    remaining = await session.execute(
                        select(func.count(OrganizationMember.id)).where(
                            OrganizationMember.organization_id == organization_id,
                            OrganizationMember.id != member_id,
                            OrganizationMember.role == "admin",
                            OrganizationMember.status == "active"
                        )
                    )
                    if not remaining.scalar():
                        raise RecordValidationError("An organization must keep at least one active admin", field="role")

            logger.info(
                f"Updated member {member_id}: role={membership.role} status={membership.status}",
                extra={"organization_id": organization_id}
            )
            return membership

    async def create_invitation(
        self,
        organization_id: int,
        invited_by: int,
        email: str,
        role: str = "volunteer",
    ) -> TeamInvitation:
        """
        Invite an email address; the returned token is redeemed with ``accept_invitation``.

        Raises:
            RecordValidationError: Missing email or unknown role
            DuplicateRecordError: The address already belongs to a member
        """
        email = _check_email(email)
        _check_role(role)

        async with AsyncSessionLocal() as session:
            async with session.begin():
                existing = await session.execute(
                    select(OrganizationMember.id)
                    .join(User, OrganizationMember.user_id == User.id)
                    .where(OrganizationMember.organization_id == organization_id, User.email == email)
                )
                if existing.scalar_one_or_none() is not None:
                    raise DuplicateRecordError(f"{email} is already a member of this organization", key=email)

                invitation = TeamInvitation(
                    organization_id=organization_id,
                    email=email,
                    role=role,
                    token=secrets.token_urlsafe(32),
                    invited_by=invited_by,
                    expires_at=datetime.utcnow() + timedelta(days=config.INVITATION_TTL_DAYS),
                )
                session.add(invitation)

            logger.info(f"Invited {email} as {role}", extra={"organization_id": organization_id})
            return invitation

    async def accept_invitation(self, token: str, user_id: int) -> Dict[str, Any]:
        """
        Redeem an invitation for the calling user.

        Raises:
            TenantAccessError: No invitation with this token
            RecordValidationError: Already accepted or expired
            PermissionDeniedError: The invitation is for another email address
            DuplicateRecordError: The user is already a member
        """
        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await session.execute(select(TeamInvitation).where(TeamInvitation.token == token))
                invitation = result.scalar_one_or_none()
                if invitation is None:
                    raise TenantAccessError("Invitation not found")
                if invitation.accepted_at is not None:
                    raise RecordValidationError("Invitation already accepted")
                if datetime.utcnow() > invitation.expires_at:
                    raise RecordValidationError("Invitation expired")

                user = (await session.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
                if user is None or user.email.lower() != invitation.email:
                    raise PermissionDeniedError("Invitation is for a different email")

                existing = await session.execute(
                    select(OrganizationMember.id).where(
                        OrganizationMember.organization_id == invitation.organization_id,
                        OrganizationMember.user_id == user_id
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    raise DuplicateRecordError("Already a member of this organization", key=invitation.email)

                membership = OrganizationMember(
                    organization_id=invitation.organization_id,
                    user_id=user_id,
                    role=invitation.role,
                    status="active",
                    permissions=dict(DEFAULT_ROLE_PERMISSIONS[invitation.role]),
                )
                session.add(membership)
                invitation.accepted_at = datetime.utcnow()

                organization = (await session.execute(
                    select(Organization).where(Organization.id == invitation.organization_id)
                )).scalar_one()

            logger.info(
                f"User {user_id} joined organization {invitation.organization_id} as {invitation.role}",
                extra={"organization_id": invitation.organization_id}
            )
            return serialize_membership(organization, membership)
