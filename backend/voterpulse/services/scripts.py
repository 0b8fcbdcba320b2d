from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from sqlalchemy import select

from voterpulse.db.database import AsyncSessionLocal, Script
from voterpulse.services.shared.exceptions import RecordValidationError

logger = logging.getLogger(__name__)

SCRIPT_TYPES = ("canvass", "phone", "phonebank", "email", "text")


class ScriptService:
    """Service for canvass and phone-bank scripts"""

    async def list_scripts(
        self,
        organization_id: int,
        script_type: Optional[str] = None,
        active_only: bool = True
    ) -> List[Script]:
        async with AsyncSessionLocal() as session:
            query = select(Script).where(Script.organization_id == organization_id)
            if script_type:
                query = query.where(Script.type == script_type)
            if active_only:
                query = query.where(Script.is_active.is_(True))
            result = await session.execute(query.order_by(Script.name))
            return list(result.scalars().all())

    async def create_script(
        self,
        organization_id: int,
        created_by: Optional[int],
        name: str,
        content: str,
        script_type: str
    ) -> Script:
        """Create a script (name, content and type are required)"""
        if not name or not content or not script_type:
            raise RecordValidationError("name, content, and type are required")
        if script_type not in SCRIPT_TYPES:
            raise RecordValidationError(f"type must be one of {', '.join(SCRIPT_TYPES)}", field="type")

        async with AsyncSessionLocal() as session:
            script = Script(
                organization_id=organization_id,
                created_by=created_by,
                name=name,
                content=content,
                type=script_type,
                is_active=True
            )
            session.add(script)
            await session.commit()
            await session.refresh(script)
            return script

    async def get_script(self, organization_id: int, script_id: int) -> Optional[Script]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Script).where(Script.id == script_id, Script.organization_id == organization_id)
            )
            return result.scalar_one_or_none()

    async def update_script(self, organization_id: int, script_id: int, changes: Dict[str, Any]) -> Optional[Script]:
        """Update name, content, type and/or isActive"""
        if changes.get("type") is not None and changes["type"] not in SCRIPT_TYPES:
            raise RecordValidationError(f"type must be one of {', '.join(SCRIPT_TYPES)}", field="type")

        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Script).where(Script.id == script_id, Script.organization_id == organization_id)
            )
            script = result.scalar_one_or_none()
            if not script:
                return None

            if changes.get("name"):
                script.name = changes["name"]
            if changes.get("content"):
                script.content = changes["content"]
            if changes.get("type"):
                script.type = changes["type"]
            if changes.get("isActive") is not None:
                script.is_active = bool(changes["isActive"])
            script.updated_at = datetime.utcnow()

            await session.commit()
            await session.refresh(script)
            return script

    async def delete_script(self, organization_id: int, script_id: int) -> bool:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Script).where(Script.id == script_id, Script.organization_id == organization_id)
            )
            script = result.scalar_one_or_none()
            if not script:
                return False
            await session.delete(script)
            await session.commit()
            return True
