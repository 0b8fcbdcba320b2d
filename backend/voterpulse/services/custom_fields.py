"""
Organization-defined voter fields

Definitions belong to one organization; values are keyed by (field, voter) and
validated against the definition's type before they are stored.
"""
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from voterpulse.db.database import AsyncSessionLocal, CustomFieldDefinition, CustomFieldValue, Voter
from voterpulse.services.import_pipeline.column_mapper import parse_date
from voterpulse.services.import_pipeline.upsert_engine import chunked, dialect_insert
from voterpulse.services.shared.exceptions import DuplicateRecordError, RecordValidationError, TenantAccessError
from voterpulse.utils.field_mapping import model_to_dict

logger = logging.getLogger(__name__)

FIELD_TYPES = ("text", "number", "date", "boolean", "select", "multiselect")
CHOICE_TYPES = ("select", "multiselect")

# Rows per INSERT when setting one value on many voters
BULK_VALUE_BATCH_SIZE = 500

_FIELD_NAME = re.compile(r"^[a-z][a-z0-9_]{0,99}$")
_TRUE_TOKENS = frozenset({"true", "yes", "y", "1"})
_FALSE_TOKENS = frozenset({"false", "no", "n", "0"})


def serialize_definition(definition: CustomFieldDefinition) -> Dict[str, Any]:
    data = model_to_dict(definition)
    data["options"] = definition.options or []
    return data


def _check_options(field_type: str, options: Optional[List[str]]) -> Optional[List[str]]:
    if field_type not in CHOICE_TYPES:
        return None
    if not options or not all(isinstance(option, str) and option for option in options):
        raise RecordValidationError(f"{field_type} fields need a non-empty list of options", field="options")
    return list(dict.fromkeys(options))


def coerce_field_value(definition: CustomFieldDefinition, value: Any) -> Any:
    """
    Validate a value against its definition and return the form that is stored.

    Raises:
        RecordValidationError: The value does not fit the field type
    """
    field_type = definition.field_type
    invalid = RecordValidationError(
        f"Invalid value for {field_type} field '{definition.field_name}'", field=definition.field_name
    )

    if field_type == "text":
        if isinstance(value, (dict, list)):
            raise invalid
        return str(value)

    if field_type == "number":
        if isinstance(value, bool):
            raise invalid
        if isinstance(value, int):
            return value
        try:
            number = float(value if isinstance(value, float) else str(value).strip())
        except ValueError:
            raise invalid
        if not math.isfinite(number):
            raise invalid
        return int(number) if number.is_integer() else number

    if field_type == "date":
        parsed = parse_date(value) if isinstance(value, str) else None
        if parsed is None:
            raise invalid
        return parsed

    if field_type == "boolean":
        if isinstance(value, bool):
            return value
        token = str(value).strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
        raise invalid

    options = definition.options or []
    if field_type == "select":
        if value not in options:
            raise invalid
        return value

    # multiselect
    if not isinstance(value, list) or any(choice not in options for choice in value):
        raise invalid
    return list(dict.fromkeys(value))


class CustomFieldService:
    """Custom field definitions and per-voter values"""

    async def list_definitions(self, organization_id: int) -> List[CustomFieldDefinition]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(CustomFieldDefinition)
                .where(CustomFieldDefinition.organization_id == organization_id)
                .order_by(CustomFieldDefinition.sort_order, CustomFieldDefinition.created_at, CustomFieldDefinition.id)
            )
            return list(result.scalars().all())

    async def create_definition(
        self,
        organization_id: int,
        field_name: str,
        field_label: str,
        field_type: str,
        options: Optional[List[str]] = None,
        is_required: bool = False,
        sort_order: int = 0,
    ) -> CustomFieldDefinition:
        """
        Create a field definition.

        ``field_name`` is the stable key (lowercase letters, digits and
        underscores) and cannot be changed later, nor can ``field_type``.

        Raises:
            RecordValidationError: Missing or malformed name, label, type or options
            DuplicateRecordError: The organization already has a field with this name
        """
        if not field_name or not field_label or not field_type:
            raise RecordValidationError("fieldName, fieldLabel, and fieldType are required")
        if not _FIELD_NAME.match(field_name):
            raise RecordValidationError(
                "fieldName must start with a letter and use only lowercase letters, digits and underscores",
                field="fieldName"
            )
        if field_type not in FIELD_TYPES:
            raise RecordValidationError(f"fieldType must be one of {', '.join(FIELD_TYPES)}", field="fieldType")

        definition = CustomFieldDefinition(
            organization_id=organization_id,
            field_name=field_name,
            field_label=field_label.strip(),
            field_type=field_type,
            options=_check_options(field_type, options),
            is_required=bool(is_required),
            sort_order=sort_order or 0,
        )
        async with AsyncSessionLocal() as session:
            try:
                session.add(definition)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateRecordError(f"A field named '{field_name}' already exists", key=field_name) from e
            await session.refresh(definition)

        logger.info(f"Created custom field '{field_name}' ({field_type})", extra={"organization_id": organization_id})
        return definition

    async def update_definition(
        self,
        organization_id: int,
        field_id: int,
        changes: Dict[str, Any],
    ) -> Optional[CustomFieldDefinition]:
        """Update label, options, isRequired and/or sortOrder; None if not found"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(CustomFieldDefinition).where(
                    CustomFieldDefinition.id == field_id,
                    CustomFieldDefinition.organization_id == organization_id
                )
            )
            definition = result.scalar_one_or_none()
            if definition is None:
                return None

            if changes.get("fieldLabel"):
                definition.field_label = changes["fieldLabel"].strip()
            if changes.get("options") is not None:
                definition.options = _check_options(definition.field_type, changes["options"])
            if changes.get("isRequired") is not None:
                definition.is_required = bool(changes["isRequired"])
            if changes.get("sortOrder") is not None:
                definition.sort_order = changes["sortOrder"]
            definition.updated_at = datetime.utcnow()

            await session.commit()
            await session.refresh(definition)
            return definition

    async def delete_definition(self, organization_id: int, field_id: int) -> bool:
        """Delete a definition and every stored value for it"""
        async with AsyncSessionLocal() as session:
            async with session.begin():
                result = await session.execute(
                    select(CustomFieldDefinition).where(
                        CustomFieldDefinition.id == field_id,
                        CustomFieldDefinition.organization_id == organization_id
                    )
                )
                definition = result.scalar_one_or_none()
                if definition is None:
                    return False
                await session.execute(delete(CustomFieldValue).where(CustomFieldValue.field_id == field_id))
                await session.delete(definition)
            return True

    async def _owned_definition(self, session, organization_id: int, field_id: int) -> CustomFieldDefinition:
        result = await session.execute(
            select(CustomFieldDefinition).where(
                CustomFieldDefinition.id == field_id,
                CustomFieldDefinition.organization_id == organization_id
            )
        )
        definition = result.scalar_one_or_none()
        if definition is None:
            raise TenantAccessError("Custom field not found", organization_id=organization_id)
        return definition

    async def _check_voter(self, session, organization_id: int, voter_id: int) -> None:
        owned = await session.execute(
            select(Voter.id).where(Voter.id == voter_id, Voter.organization_id == organization_id)
        )
        if owned.scalar_one_or_none() is None:
            raise TenantAccessError("Voter not found", organization_id=organization_id)

    async def get_voter_values(self, organization_id: int, voter_id: int) -> List[Dict[str, Any]]:
        """
        Every definition of the organization with the voter's value (None when unset).

        Raises:
            TenantAccessError: The voter does not belong to the organization
        """
        async with AsyncSessionLocal() as session:
            await self._check_voter(session, organization_id, voter_id)
            result = await session.execute(
                select(CustomFieldDefinition, CustomFieldValue.value)
                .outerjoin(
                    CustomFieldValue,
                    (CustomFieldValue.field_id == CustomFieldDefinition.id) & (CustomFieldValue.voter_id == voter_id)
                )
                .where(CustomFieldDefinition.organization_id == organization_id)
                .order_by(CustomFieldDefinition.sort_order, CustomFieldDefinition.created_at, CustomFieldDefinition.id)
            )
            return [
                {
                    "fieldId": definition.id,
                    "fieldName": definition.field_name,
                    "fieldLabel": definition.field_label,
                    "fieldType": definition.field_type,
                    "options": definition.options or [],
                    "isRequired": bool(definition.is_required),
                    "value": value,
                }
                for definition, value in result.all()
            ]

    async def set_voter_value(self, organization_id: int, voter_id: int, field_id: int, value: Any) -> Dict[str, Any]:
        """
        Set (or clear, with None) one voter's value for a field.

        Raises:
            TenantAccessError: The voter or field does not belong to the organization
            RecordValidationError: The value does not fit the field, or clears a required field
        """
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await self._check_voter(session, organization_id, voter_id)
                definition = await self._owned_definition(session, organization_id, field_id)
                stored = await self._write_values(session, definition, [voter_id], value)
        return {"fieldId": field_id, "voterId": voter_id, "value": stored}

    async def bulk_set_values(
        self,
        organization_id: int,
        field_id: int,
        voter_ids: List[int],
        value: Any,
    ) -> Dict[str, int]:
        """
        Set one field to the same value on many voters.

        Voter ids outside the tenant are dropped and reported as skipped.

        Returns:
            {"updated": n, "skipped": m}
        """
        if not voter_ids:
            raise RecordValidationError("voterIds array is required", field="voterIds")

        requested = sorted(set(voter_ids))
        async with AsyncSessionLocal() as session:
            async with session.begin():
                definition = await self._owned_definition(session, organization_id, field_id)
                eligible: List[int] = []
                for batch in chunked(requested, BULK_VALUE_BATCH_SIZE):
                    owned = await session.execute(
                        select(Voter.id).where(Voter.organization_id == organization_id, Voter.id.in_(batch))
                    )
                    eligible.extend(owned.scalars().all())
                await self._write_values(session, definition, sorted(eligible), value)

        logger.info(
            f"Set custom field {field_id} on {len(eligible)} voters",
            extra={"organization_id": organization_id}
        )
        return {"updated": len(eligible), "skipped": len(requested) - len(eligible)}

    async def _write_values(self, session, definition: CustomFieldDefinition, voter_ids: List[int], value: Any) -> Any:
        """Upsert (or delete, for None) the value rows of ``voter_ids``; returns the stored value"""
        if value is None or value == "":
            if definition.is_required:
                raise RecordValidationError(
                    f"Field '{definition.field_name}' is required", field=definition.field_name
                )
            for batch in chunked(voter_ids, BULK_VALUE_BATCH_SIZE):
                await session.execute(
                    delete(CustomFieldValue).where(
                        CustomFieldValue.field_id == definition.id,
                        CustomFieldValue.voter_id.in_(batch)
                    )
                )
            return None

        stored = coerce_field_value(definition, value)
        now = datetime.utcnow()
        for batch in chunked(voter_ids, BULK_VALUE_BATCH_SIZE):
            stmt = dialect_insert(session, CustomFieldValue.__table__).values([
                {"field_id": definition.id, "voter_id": voter_id, "value": stored, "created_at": now, "updated_at": now}
                for voter_id in batch
            ])
            await session.execute(stmt.on_conflict_do_update(
                index_elements=["field_id", "voter_id"],
                set_={"value": stmt.excluded.value, "updated_at": now}
            ))
        return stored
