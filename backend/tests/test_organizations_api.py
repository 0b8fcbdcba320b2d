"""
Tests for organization and membership endpoints
"""
import pytest
from httpx import AsyncClient

from tests.helpers.api_helpers import make_api_request
from tests.helpers.db_helpers import expire_invitation


@pytest.mark.integration
@pytest.mark.asyncio
async def test_list_my_organizations(client: AsyncClient, tenant, other_tenant):
    organizations = await make_api_request(
        client, "GET", "/api/organizations", {"X-User-Id": str(tenant.user_id)}
    )
    assert [org["id"] for org in organizations] == [tenant.organization_id]
    assert organizations[0]["role"] == "admin"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_organization_makes_caller_admin(client: AsyncClient, tenant):
    response = await client.post(
        "/api/organizations", headers={"X-User-Id": str(tenant.user_id)}, json={"name": "Ward 3 Campaign!"}
    )
    assert response.status_code == 201
    created = response.json()
    assert created["slug"] == "ward-3-campaign"
    assert created["role"] == "admin"
    assert created["permissions"]["can_import_data"] is True

    headers = {"X-User-Id": str(tenant.user_id), "X-Organization-Id": str(created["id"])}
    assert (await client.get("/api/voters", headers=headers)).status_code == 200


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_organization_for_unknown_user(client: AsyncClient):
    response = await client.post("/api/organizations", headers={"X-User-Id": "9999"}, json={"name": "Ghost"})
    assert response.status_code == 401


@pytest.mark.integration
@pytest.mark.asyncio
async def test_add_and_list_members(client: AsyncClient, tenant):
    response = await client.post(
        "/api/organizations/members",
        headers=tenant.headers,
        json={"email": "Canvasser@Example.org", "role": "volunteer", "permissions": {"can_manage_lists": True}}
    )
    assert response.status_code == 201
    member = response.json()
    assert member["role"] == "volunteer"
    assert member["permissions"]["can_manage_lists"] is True
    assert member["permissions"]["can_import_data"] is False

    duplicate = await client.post(
        "/api/organizations/members", headers=tenant.headers, json={"email": "canvasser@example.org"}
    )
    assert duplicate.status_code == 409

    members = await make_api_request(client, "GET", "/api/organizations/members", tenant.headers)
    assert len(members) == 2

    # Granted permission takes effect for the new member
    member_headers = {"X-User-Id": str(member["userId"]), "X-Organization-Id": str(tenant.organization_id)}
    created = await client.post("/api/lists", headers=member_headers, json={"name": "Turf 1"})
    assert created.status_code == 201


@pytest.mark.integration
@pytest.mark.asyncio
async def test_member_validation_and_permission(client: AsyncClient, tenant, volunteer):
    bad_role = await client.post(
        "/api/organizations/members", headers=tenant.headers, json={"email": "x@example.org", "role": "owner"}
    )
    assert bad_role.status_code == 400

    bad_permission = await client.post(
        "/api/organizations/members", headers=tenant.headers,
        json={"email": "x@example.org", "permissions": {"can_fly": True}}
    )
    assert bad_permission.status_code == 400

    forbidden = await client.post(
        "/api/organizations/members", headers=volunteer.headers, json={"email": "y@example.org"}
    )
    assert forbidden.status_code == 403


@pytest.mark.integration
@pytest.mark.asyncio
async def test_get_and_update_organization(client: AsyncClient, tenant, other_tenant, volunteer):
    user_only = {"X-User-Id": str(tenant.user_id)}
    organization = await make_api_request(client, "GET", f"/api/organizations/{tenant.organization_id}", user_only)
    assert organization["name"] == "Test Campaign"
    assert organization["role"] == "admin"
    assert organization["settings"] == {}

    updated = await make_api_request(
        client, "PATCH", f"/api/organizations/{tenant.organization_id}", user_only,
        json_data={"name": "Ward 3", "description": "Door knocking", "settings": {"default_list_type": "canvass"}}
    )
    assert updated["name"] == "Ward 3"
    assert updated["description"] == "Door knocking"
    assert updated["settings"] == {"default_list_type": "canvass"}

    # Omitted fields are left alone
    renamed = await make_api_request(
        client, "PATCH", f"/api/organizations/{tenant.organization_id}", user_only, json_data={"name": "Ward 4"}
    )
    assert renamed["description"] == "Door knocking"

    blank = await client.patch(f"/api/organizations/{tenant.organization_id}", headers=user_only, json={"name": " "})
    assert blank.status_code == 400

    not_member = await client.get(f"/api/organizations/{other_tenant.organization_id}", headers=user_only)
    assert not_member.status_code == 403

    volunteer_only = {"X-User-Id": str(volunteer.user_id)}
    assert (await client.get(f"/api/organizations/{tenant.organization_id}", headers=volunteer_only)).status_code == 200
    not_admin = await client.patch(
        f"/api/organizations/{tenant.organization_id}", headers=volunteer_only, json={"name": "Mine"}
    )
    assert not_admin.status_code == 403


@pytest.mark.integration
@pytest.mark.asyncio
async def test_update_member_role_status_and_permissions(client: AsyncClient, tenant, volunteer):
    members = await make_api_request(client, "GET", "/api/organizations/members", tenant.headers)
    member_id = next(m["id"] for m in members if m["userId"] == volunteer.user_id)

    promoted = await make_api_request(
        client, "PATCH", f"/api/organizations/members/{member_id}", tenant.headers, json_data={"role": "manager"}
    )
    assert promoted["role"] == "manager"
    assert promoted["permissions"]["can_import_data"] is True
    assert promoted["permissions"]["can_manage_team"] is False

    granted = await make_api_request(
        client, "PATCH", f"/api/organizations/members/{member_id}", tenant.headers,
        json_data={"permissions": {"can_import_data": False}}
    )
    assert granted["role"] == "manager"
    assert granted["permissions"]["can_import_data"] is False
    assert granted["permissions"]["can_manage_lists"] is True

    disabled = await make_api_request(
        client, "PATCH", f"/api/organizations/members/{member_id}", tenant.headers, json_data={"status": "disabled"}
    )
    assert disabled["status"] == "disabled"
    # A disabled member loses access to the organization
    assert (await client.get("/api/voters", headers=volunteer.headers)).status_code == 403

    for body in ({"role": "owner"}, {"status": "gone"}, {"permissions": {"can_fly": True}}):
        response = await client.patch(f"/api/organizations/members/{member_id}", headers=tenant.headers, json=body)
        assert response.status_code == 400, body

    missing = await client.patch("/api/organizations/members/99999", headers=tenant.headers, json={"role": "admin"})
    assert missing.status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_member_updates_need_team_permission_and_keep_an_admin(client: AsyncClient, tenant, volunteer):
    members = await make_api_request(client, "GET", "/api/organizations/members", tenant.headers)
    admin_id = next(m["id"] for m in members if m["userId"] == tenant.user_id)

    forbidden = await client.patch(
        f"/api/organizations/members/{admin_id}", headers=volunteer.headers, json={"role": "volunteer"}
    )
    assert forbidden.status_code == 403

    last_admin = await client.patch(
        f"/api/organizations/members/{admin_id}", headers=tenant.headers, json={"role": "volunteer"}
    )
    assert last_admin.status_code == 400

    await make_api_request(
        client, "POST", "/api/organizations/members", tenant.headers,
        json_data={"email": "second-admin@example.org", "role": "admin"}
    )
    demoted = await make_api_request(
        client, "PATCH", f"/api/organizations/members/{admin_id}", tenant.headers, json_data={"role": "volunteer"}
    )
    assert demoted["role"] == "volunteer"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invitation_is_accepted_by_the_invited_user(client: AsyncClient, tenant, other_tenant):
    invitation = await make_api_request(
        client, "POST", "/api/organizations/invitations", tenant.headers,
        json_data={"email": "Admin@Other.Example.org", "role": "manager"}
    )
    assert invitation["email"] == "admin@other.example.org"
    assert invitation["acceptedAt"] is None
    token = invitation["token"]

    # Another user cannot redeem it
    wrong_user = await client.post(
        f"/api/organizations/invitations/{token}/accept", headers={"X-User-Id": str(tenant.user_id)}
    )
    assert wrong_user.status_code == 403

    joined = await make_api_request(
        client, "POST", f"/api/organizations/invitations/{token}/accept", {"X-User-Id": str(other_tenant.user_id)}
    )
    assert joined["id"] == tenant.organization_id
    assert joined["role"] == "manager"

    headers = {"X-User-Id": str(other_tenant.user_id), "X-Organization-Id": str(tenant.organization_id)}
    assert (await client.get("/api/voters", headers=headers)).status_code == 200

    again = await client.post(
        f"/api/organizations/invitations/{token}/accept", headers={"X-User-Id": str(other_tenant.user_id)}
    )
    assert again.status_code == 400


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invitation_rules(client: AsyncClient, tenant, other_tenant, volunteer):
    forbidden = await client.post(
        "/api/organizations/invitations", headers=volunteer.headers, json={"email": "new@example.org"}
    )
    assert forbidden.status_code == 403

    member = await client.post(
        "/api/organizations/invitations", headers=tenant.headers, json={"email": "volunteer@example.org"}
    )
    assert member.status_code == 409

    bad_role = await client.post(
        "/api/organizations/invitations", headers=tenant.headers, json={"email": "new@example.org", "role": "owner"}
    )
    assert bad_role.status_code == 400

    unknown = await client.post(
        "/api/organizations/invitations/not-a-token/accept", headers={"X-User-Id": str(other_tenant.user_id)}
    )
    assert unknown.status_code == 404

    invitation = await make_api_request(
        client, "POST", "/api/organizations/invitations", tenant.headers,
        json_data={"email": "admin@other.example.org"}
    )
    await expire_invitation(invitation["token"])
    expired = await client.post(
        f"/api/organizations/invitations/{invitation['token']}/accept", headers={"X-User-Id": str(other_tenant.user_id)}
    )
    assert expired.status_code == 400
    organizations = await make_api_request(client, "GET", "/api/organizations", {"X-User-Id": str(other_tenant.user_id)})
    assert [org["id"] for org in organizations] == [other_tenant.organization_id]
