"""
Tests for dynamic list population
"""
import pytest

from voterpulse.services.list_populator import ListPopulator
from voterpulse.services.shared.exceptions import FilterCriteriaError, TenantAccessError
from tests.helpers.db_helpers import create_list, create_voter, get_list_member_ids, get_list_row


async def _seed_voters(organization_id: int):
    return {
        "cd4_dfl": await create_voter(organization_id, "V1", congressional_district="4", party="DFL", phone="555-0001"),
        "cd4_r": await create_voter(organization_id, "V2", congressional_district="4", party="R", phone=""),
        "cd5_dfl": await create_voter(organization_id, "V3", congressional_district="5", party="DFL", email="a@b.org"),
        "cd5_none": await create_voter(organization_id, "V4", congressional_district="5", support_level=1),
    }


@pytest.mark.integration
@pytest.mark.asyncio
async def test_populate_with_explicit_criteria(tenant):
    voters = await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id, is_dynamic=True)

    added = await ListPopulator().populate(
        tenant.organization_id, voter_list.id, {"congressionalDistrict": ["4"]}, user_id=tenant.user_id
    )

    assert added == 2
    assert await get_list_member_ids(voter_list.id) == sorted([voters["cd4_dfl"].id, voters["cd4_r"].id])
    stored = await get_list_row(voter_list.id)
    assert stored.filter_criteria == {"congressionalDistrict": ["4"]}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_second_populate_replaces_membership(tenant):
    """Members from the first evaluation and manual additions do not survive"""
    voters = await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id, is_dynamic=True)
    populator = ListPopulator(batch_size=1)

    await populator.populate(tenant.organization_id, voter_list.id, {"congressionalDistrict": "4"})
    added = await populator.populate(tenant.organization_id, voter_list.id, {"party": ["DFL"]})

    assert added == 2
    assert await get_list_member_ids(voter_list.id) == sorted([voters["cd4_dfl"].id, voters["cd5_dfl"].id])


@pytest.mark.integration
@pytest.mark.asyncio
async def test_populate_falls_back_to_stored_criteria(tenant):
    voters = await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id, is_dynamic=True, filter_criteria={"supportLevel": [1]})

    added = await ListPopulator().populate(tenant.organization_id, voter_list.id)

    assert added == 1
    assert await get_list_member_ids(voter_list.id) == [voters["cd5_none"].id]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_populate_without_any_criteria_is_rejected(tenant):
    await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id)

    with pytest.raises(FilterCriteriaError):
        await ListPopulator().populate(tenant.organization_id, voter_list.id)
    assert await get_list_member_ids(voter_list.id) == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_contact_flags_ignore_empty_strings(tenant):
    voters = await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id)

    assert await ListPopulator().populate(tenant.organization_id, voter_list.id, {"hasPhone": True}) == 1
    assert await get_list_member_ids(voter_list.id) == [voters["cd4_dfl"].id]

    assert await ListPopulator().populate(tenant.organization_id, voter_list.id, {"hasEmail": True}) == 1
    assert await get_list_member_ids(voter_list.id) == [voters["cd5_dfl"].id]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_populate_never_matches_other_tenants(tenant, other_tenant):
    """Colliding external ids in another tenant stay out of the list"""
    mine = await _seed_voters(tenant.organization_id)
    await _seed_voters(other_tenant.organization_id)
    voter_list = await create_list(tenant.organization_id)

    added = await ListPopulator().populate(tenant.organization_id, voter_list.id, {"congressionalDistrict": ["4", "5"]})

    assert added == 4
    assert await get_list_member_ids(voter_list.id) == sorted(v.id for v in mine.values())


@pytest.mark.integration
@pytest.mark.asyncio
async def test_populate_other_tenants_list_is_denied(tenant, other_tenant):
    foreign_list = await create_list(other_tenant.organization_id)
    with pytest.raises(TenantAccessError):
        await ListPopulator().populate(tenant.organization_id, foreign_list.id, {"party": ["DFL"]})


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_criteria_keep_previous_membership(tenant):
    voters = await _seed_voters(tenant.organization_id)
    voter_list = await create_list(tenant.organization_id)
    populator = ListPopulator()
    await populator.populate(tenant.organization_id, voter_list.id, {"party": "R"})

    with pytest.raises(FilterCriteriaError):
        await populator.populate(tenant.organization_id, voter_list.id, {"supportLevel": [9]})
    assert await get_list_member_ids(voter_list.id) == [voters["cd4_r"].id]
