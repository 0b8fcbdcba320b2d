"""
Voter record service: search, detail, manual create/edit and delete
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, distinct, select
from sqlalchemy.exc import IntegrityError

from voterpulse.db.database import (
    AsyncSessionLocal,
    ElectionHistory,
    Interaction,
    User,
    Voter,
    VoterList,
    VoterListMember,
)
from voterpulse.services.import_pipeline.column_mapper import (
    BOOLEAN_FIELDS,
    DATE_FIELDS,
    INTEGER_FIELDS,
    coerce_value,
)
from voterpulse.services.shared.exceptions import DuplicateRecordError, RecordValidationError
from voterpulse.services.shared.query_builders import VoterFilterCriteria, VoterQueryBuilder
from voterpulse.utils.field_mapping import map_payload_fields, model_to_dict

logger = logging.getLogger(__name__)

VOTER_COLUMNS = [column.key for column in Voter.__table__.columns]
PROTECTED_VOTER_COLUMNS = ("id", "organization_id", "created_at", "updated_at")

# Filter-option key -> voter column
FILTER_OPTION_COLUMNS = {
    "congressionalDistricts": Voter.congressional_district,
    "legislativeDistricts": Voter.legislative_district,
    "senateDistricts": Voter.state_senate_district,
    "counties": Voter.county_code,
    "cities": Voter.city,
    "zipCodes": Voter.zip_code,
    "precincts": Voter.precinct_code,
}
FILTER_OPTION_LIMIT = 500


def serialize_voter(voter: Voter) -> Dict[str, Any]:
    return model_to_dict(voter)


def validate_support_level(value: Any) -> Optional[int]:
    """None or an integer 1..5"""
    if value is None:
        return None
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise RecordValidationError("supportLevel must be an integer between 1 and 5", field="supportLevel")
    if level < 1 or level > 5:
        raise RecordValidationError("supportLevel must be between 1 and 5", field="supportLevel")
    return level


def clean_voter_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Map a camelCase body onto writable voter columns and coerce typed fields"""
    fields = map_payload_fields(payload, VOTER_COLUMNS, protected=PROTECTED_VOTER_COLUMNS)
    for name, value in list(fields.items()):
        if name == "support_level":
            fields[name] = validate_support_level(value)
        elif isinstance(value, str) and name in INTEGER_FIELDS | BOOLEAN_FIELDS | DATE_FIELDS:
            fields[name] = coerce_value(name, value) if value.strip() else None
        elif isinstance(value, str):
            fields[name] = value.strip() or None
    return fields


class VoterService:
    """Tenant-scoped voter operations"""

    async def search_voters(
        self,
        organization_id: int,
        criteria: Optional[VoterFilterCriteria] = None,
        search: Optional[str] = None,
        list_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Voter], int]:
        """
        Paginated voter search.

        Args:
            organization_id: Tenant
            criteria: Filter criteria (same predicate list population uses)
            search: Free-text term over names, phone, street, city and voter id
            list_id: Restrict to members of a list
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (voters on the page, total matching count)
        """
        builder = (
            VoterQueryBuilder(organization_id)
            .with_criteria(criteria)
            .with_search(search)
            .in_list(list_id)
        )
        offset = (max(page, 1) - 1) * limit
        async with AsyncSessionLocal() as session:
            total = (await session.execute(builder.count_query())).scalar() or 0
            result = await session.execute(builder.select_voters().limit(limit).offset(offset))
            return list(result.scalars().all()), total

    async def get_filter_options(self, organization_id: int) -> Dict[str, List[str]]:
        """Distinct non-empty district and geography values for the tenant"""
        options: Dict[str, List[str]] = {}
        async with AsyncSessionLocal() as session:
            for key, column in FILTER_OPTION_COLUMNS.items():
                result = await session.execute(
                    select(distinct(column))
                    .where(
                        Voter.organization_id == organization_id,
                        column.isnot(None),
                        column != ""
                    )
                    .order_by(column)
                    .limit(FILTER_OPTION_LIMIT)
                )
                options[key] = [value for value in result.scalars().all() if value]
        return options

    async def get_voter(self, organization_id: int, voter_id: int) -> Optional[Voter]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Voter).where(Voter.id == voter_id, Voter.organization_id == organization_id)
            )
            return result.scalar_one_or_none()

    async def get_voter_detail(self, organization_id: int, voter_id: int) -> Optional[Dict[str, Any]]:
        """Voter with election history, the 20 latest interactions and list memberships"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Voter).where(Voter.id == voter_id, Voter.organization_id == organization_id)
            )
            voter = result.scalar_one_or_none()
            if not voter:
                return None

            elections = await session.execute(
                select(ElectionHistory)
                .where(ElectionHistory.voter_id == voter_id)
                .order_by(desc(ElectionHistory.election_date))
            )
            interactions = await session.execute(
                select(Interaction, User.first_name, User.last_name)
                .outerjoin(User, Interaction.user_id == User.id)
                .where(Interaction.voter_id == voter_id, Interaction.organization_id == organization_id)
                .order_by(desc(Interaction.created_at), desc(Interaction.id))
                .limit(20)
            )
            lists = await session.execute(
                select(VoterList.id, VoterList.name, VoterList.type)
                .join(VoterListMember, VoterListMember.list_id == VoterList.id)
                .where(VoterListMember.voter_id == voter_id, VoterList.organization_id == organization_id)
            )

            data = serialize_voter(voter)
            data["electionHistory"] = [
                model_to_dict(e, exclude=("organization_id",)) for e in elections.scalars().all()
            ]
            data["interactions"] = [
                {
                    **model_to_dict(interaction),
                    "userName": f"{first or ''} {last or ''}".strip() or "Unknown",
                }
                for interaction, first, last in interactions.all()
            ]
            data["lists"] = [
                {"listId": list_id, "listName": name, "listType": list_type}
                for list_id, name, list_type in lists.all()
            ]
            return data

    async def create_voter(self, organization_id: int, payload: Dict[str, Any]) -> Voter:
        """
        Manually add a voter.

        Raises:
            DuplicateRecordError: If the state voter id already exists for the tenant
        """
        fields = clean_voter_fields(payload)
        async with AsyncSessionLocal() as session:
            voter = Voter(organization_id=organization_id, **fields)
            session.add(voter)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if fields.get("state_voter_id"):
                    raise DuplicateRecordError(
                        f"A voter with state voter id {fields['state_voter_id']} already exists",
                        key=fields["state_voter_id"]
                    ) from e
                raise
            await session.refresh(voter)
            return voter

    async def update_voter(self, organization_id: int, voter_id: int, payload: Dict[str, Any]) -> Optional[Voter]:
        """Patch editable fields; returns None when the voter is not in the tenant"""
        fields = clean_voter_fields(payload)
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Voter).where(Voter.id == voter_id, Voter.organization_id == organization_id)
            )
            voter = result.scalar_one_or_none()
            if not voter:
                return None

            for name, value in fields.items():
                setattr(voter, name, value)
            voter.updated_at = datetime.utcnow()
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateRecordError(
                    f"A voter with state voter id {fields.get('state_voter_id')} already exists",
                    key=fields.get("state_voter_id")
                ) from e
            await session.refresh(voter)
            return voter

    async def delete_voter(self, organization_id: int, voter_id: int) -> bool:
        """Delete a voter; history, memberships and interactions cascade"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Voter).where(Voter.id == voter_id, Voter.organization_id == organization_id)
            )
            voter = result.scalar_one_or_none()
            if not voter:
                return False
            await session.delete(voter)
            await session.commit()
            return True
