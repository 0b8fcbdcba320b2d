"""
Database helper functions for tests
"""
from datetime import datetime, timedelta

from sqlalchemy import select, func
from typing import Any, Dict, List, Optional

from voterpulse.db.database import (
    AsyncSessionLocal, Voter, ElectionHistory, VoterListMember, VoterList, ImportJob, Script,
    Interaction, CustomFieldValue, TeamInvitation
)


async def create_voter(organization_id: int, state_voter_id: Optional[str], **fields: Any) -> Voter:
    """Insert a voter directly"""
    async with AsyncSessionLocal() as session:
        voter = Voter(organization_id=organization_id, state_voter_id=state_voter_id, **fields)
        session.add(voter)
        await session.commit()
        await session.refresh(voter)
        return voter


async def create_list(organization_id: int, name: str = "Test List", **fields: Any) -> VoterList:
    async with AsyncSessionLocal() as session:
        voter_list = VoterList(organization_id=organization_id, name=name, **fields)
        session.add(voter_list)
        await session.commit()
        await session.refresh(voter_list)
        return voter_list


async def create_script(organization_id: int, name: str = "Door intro", **fields: Any) -> Script:
    async with AsyncSessionLocal() as session:
        script = Script(organization_id=organization_id, name=name, content=fields.pop("content", "Hello"),
                        type=fields.pop("type", "canvass"), **fields)
        session.add(script)
        await session.commit()
        await session.refresh(script)
        return script


async def get_voter_by_state_id(organization_id: int, state_voter_id: str) -> Optional[Voter]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Voter).where(
                Voter.organization_id == organization_id,
                Voter.state_voter_id == state_voter_id
            )
        )
        return result.scalar_one_or_none()


async def get_voter(voter_id: int) -> Optional[Voter]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Voter).where(Voter.id == voter_id))
        return result.scalar_one_or_none()


async def count_voters(organization_id: int) -> int:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(func.count()).select_from(Voter).where(Voter.organization_id == organization_id)
        )
        return result.scalar_one()


async def get_election_history(voter_id: int) -> List[ElectionHistory]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(ElectionHistory)
            .where(ElectionHistory.voter_id == voter_id)
            .order_by(ElectionHistory.election_date)
        )
        return list(result.scalars().all())


async def get_list_member_ids(list_id: int) -> List[int]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(VoterListMember.voter_id)
            .where(VoterListMember.list_id == list_id)
            .order_by(VoterListMember.voter_id)
        )
        return list(result.scalars().all())


async def get_list_row(list_id: int) -> Optional[VoterList]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(VoterList).where(VoterList.id == list_id))
        return result.scalar_one_or_none()


async def get_import_job(job_id: str) -> Optional[ImportJob]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(ImportJob).where(ImportJob.id == job_id))
        return result.scalar_one_or_none()


def job_counts(job: ImportJob) -> Dict[str, int]:
    """Persisted counters of a job as a plain dict"""
    return {
        "total": job.total_rows,
        "imported": job.imported_rows,
        "updated": job.updated_rows,
        "skipped": job.skipped_rows,
        "errored": job.error_rows,
        "processed": job.processed_rows,
        "success": job.success_rows,
    }


async def create_interaction(organization_id: int, voter_id: int, **fields: Any) -> Interaction:
    """Insert an interaction directly (``created_at`` may be backdated)"""
    async with AsyncSessionLocal() as session:
        interaction = Interaction(organization_id=organization_id, voter_id=voter_id,
                                  type=fields.pop("type", "canvass"), **fields)
        session.add(interaction)
        await session.commit()
        await session.refresh(interaction)
        return interaction


async def count_custom_field_values(field_id: int) -> int:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(func.count(CustomFieldValue.id)).where(CustomFieldValue.field_id == field_id)
        )
        return result.scalar() or 0


async def expire_invitation(token: str) -> None:
    """Move an invitation's expiry into the past"""
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(TeamInvitation).where(TeamInvitation.token == token))
        invitation = result.scalar_one()
        invitation.expires_at = datetime.utcnow() - timedelta(minutes=1)
        await session.commit()
