"""Dashboard aggregates for one organization"""
import logging
from datetime import datetime, time, timedelta
from typing import Any, Dict, List

from sqlalchemy import desc, func, select

from voterpulse.db.database import AsyncSessionLocal, Interaction, User, Voter, VoterList, VoterListMember

logger = logging.getLogger(__name__)


class DashboardService:

    async def get_metrics(self, organization_id: int) -> Dict[str, Any]:
        one_week_ago = datetime.utcnow() - timedelta(days=7)
        weekly = (Interaction.organization_id == organization_id, Interaction.created_at >= one_week_ago)

        async with AsyncSessionLocal() as session:
            total_voters = await session.execute(
                select(func.count(Voter.id)).where(Voter.organization_id == organization_id)
            )
            contacted = await session.execute(
                select(func.count(Interaction.id)).where(*weekly, Interaction.result == "contacted")
            )
            with_phone = await session.execute(
                select(func.count(Voter.id)).where(
                    Voter.organization_id == organization_id,
                    Voter.phone.isnot(None),
                    Voter.phone != ""
                )
            )
            total_lists = await session.execute(
                select(func.count(VoterList.id)).where(VoterList.organization_id == organization_id)
            )
            weekly_interactions = await session.execute(select(func.count(Interaction.id)).where(*weekly))
            distribution = await session.execute(
                select(Voter.support_level, func.count(Voter.id))
                .where(Voter.organization_id == organization_id, Voter.support_level.isnot(None))
                .group_by(Voter.support_level)
                .order_by(Voter.support_level)
            )

            return {
                "totalVoters": total_voters.scalar() or 0,
                "contactedThisWeek": contacted.scalar() or 0,
                "votersWithPhone": with_phone.scalar() or 0,
                "totalLists": total_lists.scalar() or 0,
                "weeklyInteractions": weekly_interactions.scalar() or 0,
                "supportDistribution": [
                    {"level": level, "count": count} for level, count in distribution.all()
                ],
            }

    async def get_activity(self, organization_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent interactions phrased for an activity feed"""
        voter_first = Voter.first_name.label("voter_first_name")
        voter_last = Voter.last_name.label("voter_last_name")
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Interaction, User.first_name, User.last_name, voter_first, voter_last)
                .outerjoin(User, Interaction.user_id == User.id)
                .outerjoin(Voter, Interaction.voter_id == Voter.id)
                .where(Interaction.organization_id == organization_id)
                .order_by(desc(Interaction.created_at), desc(Interaction.id))
                .limit(limit)
            )
            activity = []
            for interaction, first, last, v_first, v_last in result.all():
                verb = "canvassed" if interaction.type == "canvass" else "called"
                voter_name = f"{v_first or ''} {v_last or 'Unknown'}".strip()
                activity.append({
                    "id": interaction.id,
                    "type": interaction.type,
                    "result": interaction.result,
                    "description": f"{first or 'Unknown'} {verb} {voter_name}",
                    "userName": f"{first or ''} {last or ''}".strip() or "Unknown",
                    "voterName": voter_name,
                    "createdAt": interaction.created_at.isoformat() if interaction.created_at else None,
                })
            return activity

    async def get_top_lists(self, organization_id: int, limit: int = 5) -> List[Dict[str, Any]]:
        member_count = func.count(VoterListMember.id).label("member_count")
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(VoterList.id, VoterList.name, VoterList.type, member_count)
                .outerjoin(VoterListMember, VoterListMember.list_id == VoterList.id)
                .where(VoterList.organization_id == organization_id)
                .group_by(VoterList.id, VoterList.name, VoterList.type)
                .order_by(desc(member_count), VoterList.name)
                .limit(limit)
            )
            return [
                {"id": list_id, "name": name, "type": list_type, "memberCount": count}
                for list_id, name, list_type, count in result.all()
            ]

    async def get_trends(self, organization_id: int, days: int = 7) -> List[Dict[str, Any]]:
        """
        Interactions per UTC day, oldest first.

        Covers today and the ``days - 1`` days before it; days without
        interactions are reported with a zero count.
        """
        start = datetime.utcnow().date() - timedelta(days=days - 1)
        day = func.date(Interaction.created_at)
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(day, func.count(Interaction.id))
                .where(
                    Interaction.organization_id == organization_id,
                    Interaction.created_at >= datetime.combine(start, time.min)
                )
                .group_by(day)
            )
            counts = {str(bucket): count for bucket, count in result.all()}

        window = (start + timedelta(days=offset) for offset in range(days))
        return [{"date": d.isoformat(), "count": counts.get(d.isoformat(), 0)} for d in window]
