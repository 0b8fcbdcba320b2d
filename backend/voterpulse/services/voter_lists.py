"""
Voter list service: list CRUD and static membership changes
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select

from voterpulse.config import config
from voterpulse.db.database import AsyncSessionLocal, User, Voter, VoterList, VoterListMember
from voterpulse.services.shared.exceptions import RecordValidationError
from voterpulse.services.shared.query_builders import parse_criteria
from voterpulse.services.import_pipeline.upsert_engine import dialect_insert
from voterpulse.utils.field_mapping import model_to_dict

logger = logging.getLogger(__name__)

LIST_TYPES = ("canvass", "phonebank", "mailing", "custom")


def serialize_list(voter_list: VoterList, member_count: Optional[int] = None) -> Dict[str, Any]:
    data = model_to_dict(voter_list)
    if member_count is not None:
        data["memberCount"] = member_count
    return data


def _check_list_type(list_type: Optional[str]) -> None:
    if list_type is not None and list_type not in LIST_TYPES:
        raise RecordValidationError(f"type must be one of {', '.join(LIST_TYPES)}", field="type")


def _stored_criteria(filter_criteria: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    criteria = parse_criteria(filter_criteria)
    return criteria.to_stored() if criteria is not None else None


class VoterListService:
    """Tenant-scoped list operations"""

    async def list_lists(self, organization_id: int) -> List[Tuple[VoterList, int]]:
        """All lists of a tenant with their member counts, ordered by name"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList, func.count(VoterListMember.id))
                .outerjoin(VoterListMember, VoterListMember.list_id == VoterList.id)
                .where(VoterList.organization_id == organization_id)
                .group_by(VoterList.id)
                .order_by(VoterList.name)
            )
            return [(voter_list, count) for voter_list, count in result.all()]

    async def get_list(self, organization_id: int, list_id: int) -> Optional[VoterList]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList).where(
                    VoterList.id == list_id,
                    VoterList.organization_id == organization_id
                )
            )
            return result.scalar_one_or_none()

    async def get_list_detail(self, organization_id: int, list_id: int) -> Optional[Dict[str, Any]]:
        """List with member count and creator name"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList, User.first_name, User.last_name)
                .outerjoin(User, VoterList.created_by == User.id)
                .where(VoterList.id == list_id, VoterList.organization_id == organization_id)
            )
            row = result.first()
            if row is None:
                return None
            voter_list, first, last = row
            count = await session.execute(
                select(func.count(VoterListMember.id)).where(VoterListMember.list_id == list_id)
            )
            data = serialize_list(voter_list, count.scalar() or 0)
            data["creatorName"] = f"{first or ''} {last or ''}".strip() or "Unknown"
            return data

    async def create_list(
        self,
        organization_id: int,
        created_by: Optional[int],
        name: str,
        description: Optional[str] = None,
        list_type: str = "custom",
        is_public: bool = True,
        is_dynamic: bool = False,
        filter_criteria: Optional[Dict[str, Any]] = None,
    ) -> VoterList:
        if not name or not name.strip():
            raise RecordValidationError("Name is required", field="name")
        _check_list_type(list_type)

        async with AsyncSessionLocal() as session:
            voter_list = VoterList(
                organization_id=organization_id,
                created_by=created_by,
                name=name.strip(),
                description=description,
                type=list_type,
                is_public=is_public,
                is_dynamic=is_dynamic,
                filter_criteria=_stored_criteria(filter_criteria),
            )
            session.add(voter_list)
            await session.commit()
            await session.refresh(voter_list)
            logger.info(f"Created list {voter_list.id} '{voter_list.name}'", extra={"organization_id": organization_id})
            return voter_list

    async def update_list(self, organization_id: int, list_id: int, changes: Dict[str, Any]) -> Optional[VoterList]:
        """
        Apply the provided changes (keys: name, description, type, isPublic,
        isDynamic, filterCriteria). Absent keys are left alone.
        """
        if "type" in changes:
            _check_list_type(changes["type"])
        if "name" in changes and not (changes["name"] or "").strip():
            raise RecordValidationError("Name cannot be empty", field="name")

        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList).where(
                    VoterList.id == list_id,
                    VoterList.organization_id == organization_id
                )
            )
            voter_list = result.scalar_one_or_none()
            if not voter_list:
                return None

            if "name" in changes:
                voter_list.name = changes["name"].strip()
            if "description" in changes:
                voter_list.description = changes["description"]
            if "type" in changes:
                voter_list.type = changes["type"]
            if "isPublic" in changes:
                voter_list.is_public = bool(changes["isPublic"])
            if "isDynamic" in changes:
                voter_list.is_dynamic = bool(changes["isDynamic"])
            if "filterCriteria" in changes:
                voter_list.filter_criteria = _stored_criteria(changes["filterCriteria"])
            voter_list.updated_at = datetime.utcnow()

            await session.commit()
            await session.refresh(voter_list)
            return voter_list

    async def delete_list(self, organization_id: int, list_id: int) -> bool:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList).where(
                    VoterList.id == list_id,
                    VoterList.organization_id == organization_id
                )
            )
            voter_list = result.scalar_one_or_none()
            if not voter_list:
                return False
            await session.delete(voter_list)
            await session.commit()
            return True

    async def add_voters(
        self,
        organization_id: int,
        list_id: int,
        voter_ids: List[int],
        added_by: Optional[int] = None,
    ) -> Optional[int]:
        """
        Add voters to a list, ignoring ones already in it.

        Voter ids outside the tenant are dropped.

        Returns:
            Number of memberships created, or None if the list is not found
        """
        if not voter_ids:
            raise RecordValidationError("voterIds array is required", field="voterIds")

        async with AsyncSessionLocal() as session:
            async with session.begin():
                found = await session.execute(
                    select(VoterList.id).where(
                        VoterList.id == list_id,
                        VoterList.organization_id == organization_id
                    )
                )
                if found.scalar_one_or_none() is None:
                    return None

                owned = await session.execute(
                    select(Voter.id).where(
                        Voter.organization_id == organization_id,
                        Voter.id.in_(list(set(voter_ids)))
                    )
                )
                eligible = sorted(owned.scalars().all())
                now = datetime.utcnow()
                added = 0
                for start in range(0, len(eligible), config.LIST_POPULATE_BATCH_SIZE):
                    batch = eligible[start:start + config.LIST_POPULATE_BATCH_SIZE]
                    stmt = dialect_insert(session, VoterListMember.__table__).values([
                        {"list_id": list_id, "voter_id": voter_id, "added_by": added_by, "added_at": now}
                        for voter_id in batch
                    ])
                    result = await session.execute(stmt.on_conflict_do_nothing(index_elements=["list_id", "voter_id"]))
                    added += result.rowcount or 0
            return added

    async def remove_voters(self, organization_id: int, list_id: int, voter_ids: List[int]) -> Optional[int]:
        """Remove voters from a list; returns rows removed, or None if the list is not found"""
        if not voter_ids:
            raise RecordValidationError("voterIds array is required", field="voterIds")

        async with AsyncSessionLocal() as session:
            async with session.begin():
                found = await session.execute(
                    select(VoterList.id).where(
                        VoterList.id == list_id,
                        VoterList.organization_id == organization_id
                    )
                )
                if found.scalar_one_or_none() is None:
                    return None
                result = await session.execute(
                    delete(VoterListMember).where(
                        VoterListMember.list_id == list_id,
                        VoterListMember.voter_id.in_(list(set(voter_ids)))
                    )
                )
            return result.rowcount or 0

    async def get_members(
        self,
        organization_id: int,
        list_id: int,
        page: int = 1,
        limit: int = 50,
    ) -> Optional[Tuple[List[Dict[str, Any]], int]]:
        """Paginated members (voter plus addedAt); None if the list is not found"""
        offset = (max(page, 1) - 1) * limit
        async with AsyncSessionLocal() as session:
            found = await session.execute(
                select(VoterList.id).where(
                    VoterList.id == list_id,
                    VoterList.organization_id == organization_id
                )
            )
            if found.scalar_one_or_none() is None:
                return None

            total = await session.execute(
                select(func.count(VoterListMember.id)).where(VoterListMember.list_id == list_id)
            )
            result = await session.execute(
                select(Voter, VoterListMember.added_at)
                .join(VoterListMember, VoterListMember.voter_id == Voter.id)
                .where(VoterListMember.list_id == list_id, Voter.organization_id == organization_id)
                .order_by(Voter.last_name, Voter.first_name, Voter.id)
                .limit(limit)
                .offset(offset)
            )
            members = [
                {**model_to_dict(voter), "addedAt": added_at.isoformat() if added_at else None}
                for voter, added_at in result.all()
            ]
            return members, total.scalar() or 0
