"""
Interaction (contact log) service

Logging an interaction that captures a support level also writes that level
onto the voter, in the same transaction.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, func, select, update

from voterpulse.db.database import AsyncSessionLocal, Interaction, Script, User, Voter, VoterList
from voterpulse.services.shared.exceptions import RecordValidationError, TenantAccessError
from voterpulse.services.shared.retry import retry_on_db_lock
from voterpulse.services.voters import validate_support_level
from voterpulse.utils.field_mapping import model_to_dict

logger = logging.getLogger(__name__)

INTERACTION_TYPES = ("canvass", "phone", "text", "sms", "email", "other")
INTERACTION_RESULTS = (
    "contacted",
    "not_home",
    "moved",
    "refused",
    "busy",
    "wrong_number",
    "left_message",
    "deceased",
    "inaccessible",
    "other",
)


def _full_name(first: Optional[str], last: Optional[str]) -> str:
    return f"{first or ''} {last or ''}".strip() or "Unknown"


def serialize_interaction(interaction: Interaction, **extra: Any) -> Dict[str, Any]:
    data = model_to_dict(interaction)
    data.update(extra)
    return data


class InteractionService:
    """Tenant-scoped contact log"""

    @retry_on_db_lock()
    async def create_interaction(
        self,
        organization_id: int,
        user_id: Optional[int],
        voter_id: int,
        interaction_type: str,
        result: Optional[str] = None,
        support_level: Optional[int] = None,
        notes: Optional[str] = None,
        duration: Optional[int] = None,
        script_id: Optional[int] = None,
        list_id: Optional[int] = None,
    ) -> Interaction:
        """
        Record one outreach attempt.

        Raises:
            RecordValidationError: Unknown type/result or support level outside 1..5
            TenantAccessError: The voter, script or list does not belong to the organization
        """
        if interaction_type not in INTERACTION_TYPES:
            raise RecordValidationError(
                f"type must be one of {', '.join(INTERACTION_TYPES)}", field="type"
            )
        if result is not None and result not in INTERACTION_RESULTS:
            raise RecordValidationError(
                f"result must be one of {', '.join(INTERACTION_RESULTS)}", field="result"
            )
        support_level = validate_support_level(support_level)

        async with AsyncSessionLocal() as session:
            async with session.begin():
                found = await session.execute(
                    select(Voter.id).where(Voter.id == voter_id, Voter.organization_id == organization_id)
                )
                if found.scalar_one_or_none() is None:
                    raise TenantAccessError("Voter not found", organization_id=organization_id)
                if script_id is not None:
                    found = await session.execute(
                        select(Script.id).where(Script.id == script_id, Script.organization_id == organization_id)
                    )
                    if found.scalar_one_or_none() is None:
                        raise TenantAccessError("Script not found", organization_id=organization_id)
                if list_id is not None:
                    found = await session.execute(
                        select(VoterList.id).where(VoterList.id == list_id, VoterList.organization_id == organization_id)
                    )
                    if found.scalar_one_or_none() is None:
                        raise TenantAccessError("List not found", organization_id=organization_id)

                now = datetime.utcnow()
                interaction = Interaction(
                    organization_id=organization_id,
                    voter_id=voter_id,
                    user_id=user_id,
                    type=interaction_type,
                    result=result,
                    support_level=support_level,
                    notes=notes,
                    duration=duration,
                    script_id=script_id,
                    list_id=list_id,
                    created_at=now,
                )
                session.add(interaction)

                if support_level is not None:
                    await session.execute(
                        update(Voter)
                        .where(Voter.id == voter_id, Voter.organization_id == organization_id)
                        .values(support_level=support_level, updated_at=now)
                    )

            await session.refresh(interaction)
            return interaction

    async def get_voter_interactions(
        self,
        organization_id: int,
        voter_id: int,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Interactions for one voter, newest first, with user and script names"""
        offset = (max(page, 1) - 1) * limit
        conditions = (Interaction.voter_id == voter_id, Interaction.organization_id == organization_id)
        async with AsyncSessionLocal() as session:
            total = await session.execute(select(func.count(Interaction.id)).where(*conditions))
            result = await session.execute(
                select(Interaction, User.first_name, User.last_name, Script.name)
                .outerjoin(User, Interaction.user_id == User.id)
                .outerjoin(Script, Interaction.script_id == Script.id)
                .where(*conditions)
                .order_by(desc(Interaction.created_at), desc(Interaction.id))
                .limit(limit)
                .offset(offset)
            )
            items = [
                serialize_interaction(i, userName=_full_name(first, last), scriptName=script_name)
                for i, first, last, script_name in result.all()
            ]
            return items, total.scalar() or 0

    async def get_recent(
        self,
        organization_id: int,
        limit: int = 50,
        interaction_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Latest interactions for the organization"""
        voter_first = Voter.first_name.label("voter_first_name")
        voter_last = Voter.last_name.label("voter_last_name")
        query = (
            select(Interaction, User.first_name, User.last_name, voter_first, voter_last)
            .outerjoin(User, Interaction.user_id == User.id)
            .outerjoin(Voter, Interaction.voter_id == Voter.id)
            .where(Interaction.organization_id == organization_id)
        )
        if interaction_type:
            query = query.where(Interaction.type == interaction_type)

        async with AsyncSessionLocal() as session:
            result = await session.execute(
                query.order_by(desc(Interaction.created_at), desc(Interaction.id)).limit(limit)
            )
            return [
                {
                    "id": i.id,
                    "type": i.type,
                    "result": i.result,
                    "supportLevel": i.support_level,
                    "notes": i.notes,
                    "createdAt": i.created_at.isoformat() if i.created_at else None,
                    "userName": _full_name(first, last),
                    "voterName": _full_name(v_first, v_last),
                    "voterId": i.voter_id,
                }
                for i, first, last, v_first, v_last in result.all()
            ]

    async def get_user_activity(
        self,
        organization_id: int,
        user_id: int,
        page: int = 1,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Interactions logged by one user"""
        offset = (max(page, 1) - 1) * limit
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Interaction, Voter.first_name, Voter.last_name)
                .outerjoin(Voter, Interaction.voter_id == Voter.id)
                .where(Interaction.user_id == user_id, Interaction.organization_id == organization_id)
                .order_by(desc(Interaction.created_at), desc(Interaction.id))
                .limit(limit)
                .offset(offset)
            )
            return [
                serialize_interaction(i, voterName=_full_name(first, last))
                for i, first, last in result.all()
            ]

    async def get_stats(self, organization_id: int, days: int = 7) -> Dict[str, Any]:
        """Counts by type and result plus the ten most active volunteers over a window"""
        since = datetime.utcnow() - timedelta(days=days)
        window = (Interaction.organization_id == organization_id, Interaction.created_at >= since)

        async with AsyncSessionLocal() as session:
            total = await session.execute(select(func.count(Interaction.id)).where(*window))
            by_type = await session.execute(
                select(Interaction.type, func.count(Interaction.id)).where(*window).group_by(Interaction.type)
            )
            by_result = await session.execute(
                select(Interaction.result, func.count(Interaction.id)).where(*window).group_by(Interaction.result)
            )
            count_col = func.count(Interaction.id).label("count")
            volunteers = await session.execute(
                select(Interaction.user_id, User.first_name, User.last_name, count_col)
                .join(User, Interaction.user_id == User.id)
                .where(*window)
                .group_by(Interaction.user_id, User.first_name, User.last_name)
                .order_by(desc(count_col))
                .limit(10)
            )

            return {
                "total": total.scalar() or 0,
                "byType": [{"type": t, "count": c} for t, c in by_type.all()],
                "byResult": [{"result": r, "count": c} for r, c in by_result.all()],
                "topVolunteers": [
                    {"userId": uid, "name": _full_name(first, last), "count": c}
                    for uid, first, last, c in volunteers.all()
                ],
            }
