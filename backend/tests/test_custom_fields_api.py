"""
Tests for custom field definitions and per-voter values
"""
import pytest
from httpx import AsyncClient

from tests.helpers.api_helpers import make_api_request
from tests.helpers.db_helpers import count_custom_field_values, create_voter


async def _create_field(client: AsyncClient, headers, **body):
    payload = {"fieldName": "yard_sign", "fieldLabel": "Yard sign", "fieldType": "boolean"}
    payload.update(body)
    response = await client.post("/api/custom-fields/definitions", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_definition_crud(client: AsyncClient, tenant):
    sign = await _create_field(client, tenant.headers, sortOrder=2)
    issue = await _create_field(
        client, tenant.headers,
        fieldName="top_issue", fieldLabel="Top issue", fieldType="select",
        options=["housing", "transit", "housing"], sortOrder=1
    )
    assert issue["options"] == ["housing", "transit"]
    assert sign["options"] == []

    listed = await make_api_request(client, "GET", "/api/custom-fields/definitions", tenant.headers)
    assert [d["fieldName"] for d in listed] == ["top_issue", "yard_sign"]

    updated = await make_api_request(
        client, "PATCH", f"/api/custom-fields/definitions/{sign['id']}", tenant.headers,
        json_data={"fieldLabel": "Wants a yard sign", "isRequired": True}
    )
    assert updated["fieldLabel"] == "Wants a yard sign"
    assert updated["isRequired"] is True
    assert updated["fieldType"] == "boolean"

    deleted = await client.delete(f"/api/custom-fields/definitions/{sign['id']}", headers=tenant.headers)
    assert deleted.status_code == 200
    missing = await client.delete(f"/api/custom-fields/definitions/{sign['id']}", headers=tenant.headers)
    assert missing.status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_definition_validation(client: AsyncClient, tenant):
    await _create_field(client, tenant.headers)

    duplicate = await client.post(
        "/api/custom-fields/definitions", headers=tenant.headers,
        json={"fieldName": "yard_sign", "fieldLabel": "Again", "fieldType": "text"}
    )
    assert duplicate.status_code == 409

    for body in (
        {"fieldName": "Bad Name", "fieldLabel": "x", "fieldType": "text"},
        {"fieldName": "shoe", "fieldLabel": "x", "fieldType": "shoe_size"},
        {"fieldName": "issue", "fieldLabel": "x", "fieldType": "select"},
    ):
        response = await client.post("/api/custom-fields/definitions", headers=tenant.headers, json=body)
        assert response.status_code == 400, body
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_volunteer_cannot_manage_fields_or_values(client: AsyncClient, tenant, volunteer):
    field = await _create_field(client, tenant.headers)
    voter = await create_voter(tenant.organization_id, "V1")

    response = await client.post(
        "/api/custom-fields/definitions", headers=volunteer.headers,
        json={"fieldName": "notes2", "fieldLabel": "x", "fieldType": "text"}
    )
    assert response.status_code == 403
    response = await client.post(
        f"/api/custom-fields/values/{voter.id}", headers=volunteer.headers,
        json={"fieldId": field["id"], "value": True}
    )
    assert response.status_code == 403

    # Reading is open to every member
    values = await make_api_request(client, "GET", f"/api/custom-fields/values/{voter.id}", volunteer.headers)
    assert values[0]["value"] is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_set_and_clear_voter_value(client: AsyncClient, tenant):
    field = await _create_field(
        client, tenant.headers, fieldName="last_contact", fieldLabel="Last contact", fieldType="date"
    )
    voter = await create_voter(tenant.organization_id, "V1")

    stored = await make_api_request(
        client, "POST", f"/api/custom-fields/values/{voter.id}", tenant.headers,
        json_data={"fieldId": field["id"], "value": "3/7/2024"}
    )
    assert stored["value"] == "2024-03-07"

    # Setting again replaces the value
    await make_api_request(
        client, "POST", f"/api/custom-fields/values/{voter.id}", tenant.headers,
        json_data={"fieldId": field["id"], "value": "2024-04-01"}
    )
    values = await make_api_request(client, "GET", f"/api/custom-fields/values/{voter.id}", tenant.headers)
    assert values == [{
        "fieldId": field["id"],
        "fieldName": "last_contact",
        "fieldLabel": "Last contact",
        "fieldType": "date",
        "options": [],
        "isRequired": False,
        "value": "2024-04-01",
    }]
    assert await count_custom_field_values(field["id"]) == 1

    bad = await client.post(
        f"/api/custom-fields/values/{voter.id}", headers=tenant.headers,
        json={"fieldId": field["id"], "value": "someday"}
    )
    assert bad.status_code == 400

    await make_api_request(
        client, "POST", f"/api/custom-fields/values/{voter.id}", tenant.headers,
        json_data={"fieldId": field["id"], "value": None}
    )
    assert await count_custom_field_values(field["id"]) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_required_field_cannot_be_cleared(client: AsyncClient, tenant):
    field = await _create_field(client, tenant.headers, isRequired=True)
    voter = await create_voter(tenant.organization_id, "V1")

    response = await client.post(
        f"/api/custom-fields/values/{voter.id}", headers=tenant.headers,
        json={"fieldId": field["id"], "value": None}
    )
    assert response.status_code == 400


@pytest.mark.integration
@pytest.mark.asyncio
async def test_values_are_tenant_scoped(client: AsyncClient, tenant, other_tenant):
    field = await _create_field(client, tenant.headers)
    foreign_field = await _create_field(client, other_tenant.headers)
    voter = await create_voter(tenant.organization_id, "V1")
    foreign_voter = await create_voter(other_tenant.organization_id, "V1")

    response = await client.get(f"/api/custom-fields/values/{foreign_voter.id}", headers=tenant.headers)
    assert response.status_code == 404

    response = await client.post(
        f"/api/custom-fields/values/{foreign_voter.id}", headers=tenant.headers,
        json={"fieldId": field["id"], "value": True}
    )
    assert response.status_code == 404

    response = await client.post(
        f"/api/custom-fields/values/{voter.id}", headers=tenant.headers,
        json={"fieldId": foreign_field["id"], "value": True}
    )
    assert response.status_code == 404
    assert await count_custom_field_values(field["id"]) == 0
    assert await count_custom_field_values(foreign_field["id"]) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_bulk_set_values(client: AsyncClient, tenant, other_tenant):
    field = await _create_field(
        client, tenant.headers,
        fieldName="issues", fieldLabel="Issues", fieldType="multiselect", options=["housing", "transit", "parks"]
    )
    voters = [await create_voter(tenant.organization_id, f"V{i}") for i in range(3)]
    foreign_voter = await create_voter(other_tenant.organization_id, "V9")
    voter_ids = [v.id for v in voters] + [foreign_voter.id, voters[0].id]

    result = await make_api_request(
        client, "POST", "/api/custom-fields/values/bulk", tenant.headers,
        json_data={"fieldId": field["id"], "voterIds": voter_ids, "value": ["transit", "housing"]}
    )
    assert result == {"updated": 3, "skipped": 1}
    assert await count_custom_field_values(field["id"]) == 3

    values = await make_api_request(client, "GET", f"/api/custom-fields/values/{voters[1].id}", tenant.headers)
    assert values[0]["value"] == ["transit", "housing"]

    # A second bulk set overwrites instead of duplicating
    await make_api_request(
        client, "POST", "/api/custom-fields/values/bulk", tenant.headers,
        json_data={"fieldId": field["id"], "voterIds": [voters[1].id], "value": ["parks"]}
    )
    assert await count_custom_field_values(field["id"]) == 3
    values = await make_api_request(client, "GET", f"/api/custom-fields/values/{voters[1].id}", tenant.headers)
    assert values[0]["value"] == ["parks"]

    bad = await client.post(
        "/api/custom-fields/values/bulk", headers=tenant.headers,
        json={"fieldId": field["id"], "voterIds": [voters[0].id], "value": ["zoning"]}
    )
    assert bad.status_code == 400
    empty = await client.post(
        "/api/custom-fields/values/bulk", headers=tenant.headers,
        json={"fieldId": field["id"], "voterIds": [], "value": ["parks"]}
    )
    assert empty.status_code == 400


@pytest.mark.integration
@pytest.mark.asyncio
async def test_deleting_definition_removes_values(client: AsyncClient, tenant):
    field = await _create_field(client, tenant.headers)
    voter = await create_voter(tenant.organization_id, "V1")
    await make_api_request(
        client, "POST", f"/api/custom-fields/values/{voter.id}", tenant.headers,
        json_data={"fieldId": field["id"], "value": "yes"}
    )
    assert await count_custom_field_values(field["id"]) == 1

    await make_api_request(client, "DELETE", f"/api/custom-fields/definitions/{field['id']}", tenant.headers)
    assert await count_custom_field_values(field["id"]) == 0
