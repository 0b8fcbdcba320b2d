"""
Query builders for voter filtering

Filter criteria are first turned into plain predicate objects (no SQLAlchemy
involved) by ``build_voter_predicate``; ``to_sqlalchemy`` translates those into
a WHERE clause. The same predicate drives the voter search listing and dynamic
list population.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from sqlalchemy import and_, func, or_, select
from sqlalchemy.sql import Select

from voterpulse.db.database import Voter, VoterListMember
from voterpulse.services.shared.exceptions import FilterCriteriaError, TenantAccessError

logger = logging.getLogger(__name__)

# Criteria attribute -> voter column
CRITERIA_COLUMNS: Dict[str, str] = {
    "congressional_district": "congressional_district",
    "legislative_district": "legislative_district",
    "state_senate_district": "state_senate_district",
    "county": "county_code",
    "city": "city",
    "zip_code": "zip_code",
    "precinct_code": "precinct_code",
    "party": "party",
    "support_level": "support_level",
}

SEARCH_COLUMNS = ("first_name", "last_name", "phone", "street_name", "city", "state_voter_id")


class VoterFilterCriteria(BaseModel):
    """
    Conjunction of optional voter constraints.

    List fields match any of their values; a missing or empty field imposes no
    constraint. A scalar is accepted wherever a list is expected.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    congressional_district: Optional[List[str]] = Field(default=None, alias="congressionalDistrict")
    legislative_district: Optional[List[str]] = Field(default=None, alias="legislativeDistrict")
    state_senate_district: Optional[List[str]] = Field(default=None, alias="stateSenateDistrict")
    county: Optional[List[str]] = None
    city: Optional[List[str]] = None
    zip_code: Optional[List[str]] = Field(default=None, alias="zipCode")
    precinct_code: Optional[List[str]] = Field(default=None, alias="precinctCode")
    party: Optional[List[str]] = None
    support_level: Optional[List[int]] = Field(default=None, alias="supportLevel")
    has_phone: Optional[bool] = Field(default=None, alias="hasPhone")
    has_email: Optional[bool] = Field(default=None, alias="hasEmail")

    @field_validator(
        "congressional_district", "legislative_district", "state_senate_district", "county",
        "city", "zip_code", "precinct_code", "party", "support_level",
        mode="before",
    )
    @classmethod
    def _as_list(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return None
        if not isinstance(value, (list, tuple, set)):
            value = [value]
        values = [v for v in value if v is not None and v != ""]
        if info.field_name == "support_level":
            return values
        # District and zip codes may arrive as numbers
        return [str(v) for v in values]

    @field_validator("support_level")
    @classmethod
    def _support_level_range(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value:
            for level in value:
                if level < 1 or level > 5:
                    raise ValueError("supportLevel values must be between 1 and 5")
        return value

    def is_empty(self) -> bool:
        """True when no field constrains anything"""
        return not any(
            getattr(self, name) for name in list(CRITERIA_COLUMNS) + ["has_phone", "has_email"]
        )

    def to_stored(self) -> Dict[str, Any]:
        """camelCase form persisted on a list"""
        return {
            key: value
            for key, value in self.model_dump(by_alias=True, exclude_none=True).items()
            if value != []
        }


def parse_criteria(data: Optional[Union[Dict[str, Any], VoterFilterCriteria]]) -> Optional[VoterFilterCriteria]:
    """Validate raw criteria; None stays None"""
    if data is None or isinstance(data, VoterFilterCriteria):
        return data
    if not isinstance(data, dict):
        raise FilterCriteriaError("Filter criteria must be an object")
    try:
        return VoterFilterCriteria.model_validate(data)
    except ValueError as e:
        raise FilterCriteriaError(f"Invalid filter criteria: {e}") from e


# Store-agnostic predicates

@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class NonEmpty:
    """Column is neither NULL nor the empty string"""
    field: str


@dataclass(frozen=True)
class TextSearch:
    """Case-insensitive substring match on any of the fields"""
    fields: Tuple[str, ...]
    term: str


@dataclass(frozen=True)
class And:
    predicates: Tuple[Any, ...]


Predicate = Union[FieldEquals, FieldIn, NonEmpty, TextSearch, And]


def build_voter_predicate(
    organization_id: int,
    criteria: Optional[VoterFilterCriteria] = None,
    search: Optional[str] = None,
) -> And:
    """
    Translate filter criteria into a predicate restricted to one tenant.

    Args:
        organization_id: Tenant (mandatory, always the first conjunct)
        criteria: Optional filter criteria
        search: Optional free-text term

    Returns:
        Conjunction of predicates
    """
    if organization_id is None:
        raise TenantAccessError("An organization is required to query voters")

    predicates: List[Predicate] = [FieldEquals("organization_id", organization_id)]

    if criteria is not None:
        for attribute, column in CRITERIA_COLUMNS.items():
            values = getattr(criteria, attribute)
            if values:
                predicates.append(FieldIn(column, tuple(values)))
        if criteria.has_phone:
            predicates.append(NonEmpty("phone"))
        if criteria.has_email:
            predicates.append(NonEmpty("email"))

    if search and search.strip():
        predicates.append(TextSearch(SEARCH_COLUMNS, search.strip()))

    return And(tuple(predicates))


def to_sqlalchemy(predicate: Predicate, model=Voter):
    """Translate a predicate into a SQLAlchemy boolean clause over ``model``"""
    if isinstance(predicate, And):
        return and_(*(to_sqlalchemy(p, model) for p in predicate.predicates))
    if isinstance(predicate, FieldEquals):
        return getattr(model, predicate.field) == predicate.value
    if isinstance(predicate, FieldIn):
        return getattr(model, predicate.field).in_(predicate.values)
    if isinstance(predicate, NonEmpty):
        column = getattr(model, predicate.field)
        return and_(column.isnot(None), column != "")
    if isinstance(predicate, TextSearch):
        pattern = f"%{predicate.term}%"
        return or_(*(getattr(model, f).ilike(pattern) for f in predicate.fields))
    raise TypeError(f"Unsupported predicate: {predicate!r}")


class VoterQueryBuilder:
    """Builder for tenant-scoped voter queries"""

    def __init__(self, organization_id: int):
        self.organization_id = organization_id
        self._criteria: Optional[VoterFilterCriteria] = None
        self._search: Optional[str] = None
        self._list_id: Optional[int] = None

    def with_criteria(self, criteria: Optional[VoterFilterCriteria]) -> 'VoterQueryBuilder':
        self._criteria = criteria
        return self

    def with_search(self, search: Optional[str]) -> 'VoterQueryBuilder':
        self._search = search
        return self

    def in_list(self, list_id: Optional[int]) -> 'VoterQueryBuilder':
        """Restrict to members of a list"""
        self._list_id = list_id
        return self

    def build_predicate(self) -> And:
        return build_voter_predicate(self.organization_id, self._criteria, self._search)

    def build_where_clause(self):
        return to_sqlalchemy(self.build_predicate())

    def _apply(self, query: Select) -> Select:
        if self._list_id is not None:
            query = query.join(
                VoterListMember,
                and_(VoterListMember.voter_id == Voter.id, VoterListMember.list_id == self._list_id)
            )
        return query.where(self.build_where_clause())

    def select_ids(self) -> Select:
        return self._apply(select(Voter.id)).order_by(Voter.id)

    def select_voters(self) -> Select:
        return self._apply(select(Voter)).order_by(Voter.last_name, Voter.first_name, Voter.id)

    def count_query(self) -> Select:
        return self._apply(select(func.count(Voter.id)))

    def reset(self) -> 'VoterQueryBuilder':
        self._criteria = None
        self._search = None
        self._list_id = None
        return self
