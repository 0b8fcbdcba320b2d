"""
Dynamic list population

Re-materializes a list's membership from filter criteria: every existing
member is removed, the full matching voter set is inserted in batches and the
criteria are stored back on the list. All of it happens in one transaction, so
a failure leaves the previous membership in place.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from voterpulse.config import config
from voterpulse.db.database import AsyncSessionLocal, VoterList, VoterListMember
from voterpulse.services.shared.exceptions import FilterCriteriaError, TenantAccessError
from voterpulse.services.shared.query_builders import (
    VoterFilterCriteria,
    VoterQueryBuilder,
    parse_criteria,
)

logger = logging.getLogger(__name__)


class ListPopulator:
    """Clear-and-repopulate for dynamic voter lists"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, batch_size: Optional[int] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self.batch_size = batch_size or config.LIST_POPULATE_BATCH_SIZE

    async def populate(
        self,
        organization_id: int,
        list_id: int,
        criteria: Optional[Union[Dict[str, Any], VoterFilterCriteria]] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """
        Replace a list's membership with the voters matching its criteria.

        Args:
            organization_id: Tenant owning the list
            list_id: List to populate
            criteria: Override criteria; falls back to the list's stored criteria
            user_id: Recorded as ``added_by`` on the new memberships

        Returns:
            Number of voters now in the list

        Raises:
            TenantAccessError: If the list does not exist for the tenant
            FilterCriteriaError: If no criteria are supplied or stored
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(VoterList).where(
                        VoterList.id == list_id,
                        VoterList.organization_id == organization_id
                    )
                )
                voter_list = result.scalar_one_or_none()
                if voter_list is None:
                    raise TenantAccessError(f"List {list_id} not found", organization_id=organization_id)

                effective = parse_criteria(criteria if criteria is not None else voter_list.filter_criteria)
                if effective is None:
                    raise FilterCriteriaError("No filter criteria provided")

                matching = await session.execute(
                    VoterQueryBuilder(organization_id).with_criteria(effective).select_ids()
                )
                voter_ids = list(matching.scalars().all())

                await session.execute(delete(VoterListMember).where(VoterListMember.list_id == list_id))

                now = datetime.utcnow()
                added = 0
                for start in range(0, len(voter_ids), self.batch_size):
                    batch = voter_ids[start:start + self.batch_size]
                    await session.execute(
                        insert(VoterListMember),
                        [
                            {"list_id": list_id, "voter_id": voter_id, "added_by": user_id, "added_at": now}
                            for voter_id in batch
                        ]
                    )
                    added += len(batch)

                voter_list.filter_criteria = effective.to_stored()
                voter_list.updated_at = now

        logger.info(
            f"Populated list {list_id} with {added} voters",
            extra={"organization_id": organization_id}
        )
        return added
