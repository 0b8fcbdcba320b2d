"""
Tests for voter search and record endpoints
"""
import pytest
from httpx import AsyncClient

from tests.helpers.api_helpers import make_api_request
from tests.helpers.db_helpers import create_list, create_voter, get_voter


async def _seed(organization_id: int):
    return [
        await create_voter(organization_id, "V1", first_name="Ann", last_name="Lee", congressional_district="4",
                           county_code="62", phone="555-0001", support_level=1),
        await create_voter(organization_id, "V2", first_name="Bo", last_name="Ng", congressional_district="4",
                           county_code="27", phone=""),
        await create_voter(organization_id, "V3", first_name="Cy", last_name="Oh", congressional_district="5",
                           county_code="62", email="cy@example.org", support_level=2),
    ]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_search_with_repeated_filters_and_pagination(client: AsyncClient, tenant):
    await _seed(tenant.organization_id)

    data = await make_api_request(
        client, "GET", "/api/voters", tenant.headers,
        params={"congressionalDistrict": "4", "county": ["62", "27"], "limit": 1}
    )
    assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}
    assert data["voters"][0]["lastName"] == "Lee"

    page_two = await make_api_request(
        client, "GET", "/api/voters", tenant.headers,
        params={"congressionalDistrict": "4", "county": ["62", "27"], "limit": 1, "page": 2}
    )
    assert page_two["voters"][0]["lastName"] == "Ng"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_search_contact_flags_and_support_levels(client: AsyncClient, tenant):
    await _seed(tenant.organization_id)

    with_phone = await make_api_request(client, "GET", "/api/voters", tenant.headers, params={"hasPhone": "true"})
    assert [v["stateVoterId"] for v in with_phone["voters"]] == ["V1"]

    supporters = await make_api_request(
        client, "GET", "/api/voters", tenant.headers, params={"supportLevel": ["1", "2"]}
    )
    assert {v["stateVoterId"] for v in supporters["voters"]} == {"V1", "V3"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_free_text_search_and_list_restriction(client: AsyncClient, tenant):
    voters = await _seed(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id)
    await make_api_request(
        client, "POST", f"/api/lists/{voter_list.id}/voters", tenant.headers,
        json_data={"voterIds": [voters[2].id]}
    )

    found = await make_api_request(client, "GET", "/api/voters", tenant.headers, params={"search": "ng"})
    assert [v["stateVoterId"] for v in found["voters"]] == ["V2"]

    in_list = await make_api_request(client, "GET", "/api/voters", tenant.headers, params={"listId": voter_list.id})
    assert [v["stateVoterId"] for v in in_list["voters"]] == ["V3"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_support_level_filter_is_rejected(client: AsyncClient, tenant):
    response = await client.get("/api/voters", headers=tenant.headers, params={"supportLevel": "9"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_filter_options(client: AsyncClient, tenant, other_tenant):
    await _seed(tenant.organization_id)
    await create_voter(other_tenant.organization_id, "V9", congressional_district="8")

    options = await make_api_request(client, "GET", "/api/voters/filter-options", tenant.headers)
    assert sorted(options["congressionalDistricts"]) == ["4", "5"]
    assert sorted(options["counties"]) == ["27", "62"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_create_update_and_delete_voter(client: AsyncClient, tenant):
    response = await client.post(
        "/api/voters",
        headers=tenant.headers,
        json={"stateVoterId": "V10", "firstName": "Dee", "lastName": "Park", "dobYear": "1975", "supportLevel": 3}
    )
    assert response.status_code == 201
    created = response.json()
    assert created["dobYear"] == 1975
    assert created["organizationId"] == tenant.organization_id

    duplicate = await client.post("/api/voters", headers=tenant.headers, json={"stateVoterId": "V10"})
    assert duplicate.status_code == 409

    updated = await make_api_request(
        client, "PUT", f"/api/voters/{created['id']}", tenant.headers, json_data={"phone": "555-7777"}
    )
    assert updated["phone"] == "555-7777"
    assert updated["lastName"] == "Park"

    bad = await client.put(f"/api/voters/{created['id']}", headers=tenant.headers, json={"supportLevel": 0})
    assert bad.status_code == 400

    deleted = await client.delete(f"/api/voters/{created['id']}", headers=tenant.headers)
    assert deleted.status_code == 200
    assert await get_voter(created["id"]) is None
    assert (await client.delete(f"/api/voters/{created['id']}", headers=tenant.headers)).status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
async def test_voter_detail_includes_interactions_and_lists(client: AsyncClient, tenant):
    voter = (await _seed(tenant.organization_id))[0]
    voter_list = await create_list(tenant.organization_id, name="Door knock", type="canvass")
    await make_api_request(
        client, "POST", f"/api/lists/{voter_list.id}/voters", tenant.headers, json_data={"voterIds": [voter.id]}
    )
    await make_api_request(
        client, "POST", "/api/interactions", tenant.headers,
        json_data={"voterId": voter.id, "type": "canvass", "result": "contacted", "supportLevel": 2}
    )

    detail = await make_api_request(client, "GET", f"/api/voters/{voter.id}", tenant.headers)
    assert detail["supportLevel"] == 2
    assert detail["lists"] == [{"listId": voter_list.id, "listName": "Door knock", "listType": "canvass"}]
    assert detail["interactions"][0]["userName"] == "Test Admin"

    history = await make_api_request(client, "GET", f"/api/voters/{voter.id}/interactions", tenant.headers)
    assert history["pagination"]["total"] == 1
    assert history["interactions"][0]["result"] == "contacted"
