"""
Column mapping for voter-file and election-history imports

Translates source-file headers into canonical voter / election fields and
coerces raw string values into the types the store expects.

Two lookup tables are exposed as data (the preview endpoint and the
``/mn-mapping`` endpoint return them verbatim). ``suggest_column_mapping`` only
seeds the mapping UI; an explicit user-confirmed mapping always wins and is what
``map_row`` applies.
"""
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from voterpulse.services.shared.exceptions import ColumnMappingError
from voterpulse.utils.field_mapping import to_snake

SKIP = "skip"

IMPORT_TYPE_VOTERS = "voters"
IMPORT_TYPE_ELECTION_HISTORY = "election_history"
IMPORT_TYPES = (IMPORT_TYPE_VOTERS, IMPORT_TYPE_ELECTION_HISTORY)

# Minnesota Secretary of State voter file header -> canonical voter field
VOTER_FILE_COLUMNS: Dict[str, str] = {
    "VoterId": "state_voter_id",
    "CountyCode": "county_code",
    "FirstName": "first_name",
    "MiddleName": "middle_name",
    "LastName": "last_name",
    "NameSuffix": "name_suffix",
    "HouseNumber": "house_number",
    "StreetName": "street_name",
    "UnitType": "unit_type",
    "UnitNumber": "unit_number",
    "Address2": "address2",
    "City": "city",
    "State": "state",
    "ZipCode": "zip_code",
    "MailAddress": "mail_address",
    "MailCity": "mail_city",
    "MailState": "mail_state",
    "MailZipCode": "mail_zip_code",
    "PhoneNumber": "phone",
    "RegistrationDate": "registration_date",
    "DOBYear": "dob_year",
    "StateMcdCode": "state_mcd_code",
    "McdName": "mcd_name",
    "PrecinctCode": "precinct_code",
    "PrecinctName": "precinct_name",
    "WardCode": "ward_code",
    "School": "school_district",
    "SchSub": "school_sub_district",
    "Judicial": "judicial_district",
    "Legislative": "legislative_district",
    "StateSen": "state_senate_district",
    "Congressional": "congressional_district",
    "Commissioner": "commissioner_district",
    "Park": "park_district",
    "SoilWater": "soil_water_district",
    "Hospital": "hospital_district",
    "LegacyId": "legacy_id",
    "PermanentAbsentee": "permanent_absentee",
}

# Election history file header -> canonical election field
ELECTION_FILE_COLUMNS: Dict[str, str] = {
    "VoterId": "state_voter_id",
    "ElectionDate": "election_date",
    "ElectionDescription": "election_description",
    "VotingMethod": "voting_method",
}

# Fields a manual mapping may target beyond the ones the state file carries
EXTRA_VOTER_FIELDS = ("county_name", "email", "gender", "party", "notes")
EXTRA_ELECTION_FIELDS = ("election_type",)

TARGET_FIELDS: Dict[str, frozenset] = {
    IMPORT_TYPE_VOTERS: frozenset(VOTER_FILE_COLUMNS.values()) | frozenset(EXTRA_VOTER_FIELDS),
    IMPORT_TYPE_ELECTION_HISTORY: frozenset(ELECTION_FILE_COLUMNS.values()) | frozenset(EXTRA_ELECTION_FIELDS),
}

INTEGER_FIELDS = frozenset({"dob_year"})
BOOLEAN_FIELDS = frozenset({"permanent_absentee"})
DATE_FIELDS = frozenset({"registration_date", "election_date"})
TRUTHY_TOKENS = frozenset({"Y", "true", "1"})

DEFAULT_ELECTION_TYPE = "General"

_INDEXED_ELECTION_DATE = re.compile(r"^ElectionDate_(\d+)$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def suggest_column_mapping(headers: Iterable[str]) -> Dict[str, str]:
    """
    Suggest canonical fields for source headers.

    Exact, case-sensitive lookup against the voter table first, then the
    election table. Headers with no match are left out.

    Args:
        headers: Source-file header names

    Returns:
        Mapping of header -> canonical field
    """
    mapping: Dict[str, str] = {}
    for header in headers:
        normalized = header.strip()
        if normalized in VOTER_FILE_COLUMNS:
            mapping[normalized] = VOTER_FILE_COLUMNS[normalized]
        elif normalized in ELECTION_FILE_COLUMNS:
            mapping[normalized] = ELECTION_FILE_COLUMNS[normalized]
    return mapping


def validate_column_mapping(column_mapping: Dict[str, str], import_type: str) -> Dict[str, str]:
    """
    Check an explicit mapping before an import starts.

    Args:
        column_mapping: sourceColumn -> target field or "skip"
        import_type: "voters" or "election_history"

    Returns:
        The mapping with "skip" entries removed

    Raises:
        ColumnMappingError: unknown import type, non-string entries, or a
            target that is not a canonical field for the import type
    """
    if import_type not in IMPORT_TYPES:
        raise ColumnMappingError(f"Unknown import type: {import_type}")
    if not isinstance(column_mapping, dict):
        raise ColumnMappingError("Column mapping must be an object of sourceColumn -> targetField")

    allowed = TARGET_FIELDS[import_type]
    effective: Dict[str, str] = {}
    for source, target in column_mapping.items():
        if not isinstance(source, str) or not isinstance(target, str):
            raise ColumnMappingError("Column mapping keys and values must be strings", source_column=str(source))
        if target == SKIP or target == "":
            continue
        target = to_snake(target)
        if target not in allowed:
            raise ColumnMappingError(
                f"Unknown target field '{target}' for {import_type} import",
                source_column=source,
                target_field=target
            )
        effective[source] = target

    if import_type == IMPORT_TYPE_ELECTION_HISTORY and "state_voter_id" not in effective.values():
        raise ColumnMappingError("Election history imports must map a column to state_voter_id")

    return effective


def parse_date(value: str) -> Optional[str]:
    """
    Normalize a date to ISO ``YYYY-MM-DD``.

    Accepts ISO input (a trailing time part is dropped) and ``M/D/YYYY`` or
    ``MM/DD/YYYY``. Anything else returns None.
    """
    value = value.strip()
    match = _US_DATE.match(value)
    if match:
        month, day, year = (int(part) for part in match.groups())
    else:
        match = _ISO_DATE.match(value)
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())

    try:
        return datetime(year, month, day).strftime("%Y-%m-%d")
    except ValueError:
        return None


def parse_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return None


def coerce_value(field: str, value: str) -> Any:
    """Coerce a raw string value for a canonical target field"""
    if field in INTEGER_FIELDS:
        return parse_int(value)
    if field in BOOLEAN_FIELDS:
        return value.strip() in TRUTHY_TOKENS
    if field in DATE_FIELDS:
        return parse_date(value)
    return value


def map_row(
    row: Dict[str, str],
    column_mapping: Dict[str, str],
) -> Optional[Dict[str, Any]]:
    """
    Apply an explicit mapping and type coercion to one source record.

    Empty source values are omitted; a row where nothing maps returns None
    so the caller can count it as skipped.

    Args:
        row: header -> raw value
        column_mapping: validated sourceColumn -> canonical field

    Returns:
        canonical field -> coerced value, or None
    """
    mapped: Dict[str, Any] = {}
    for source, target in column_mapping.items():
        raw = row.get(source)
        if raw is None or raw == "":
            continue
        value = coerce_value(target, raw)
        if value is None:
            continue
        mapped[target] = value

    return mapped or None


def extract_election_history(row: Dict[str, str]) -> List[Dict[str, Any]]:
    """
    Pull election participation embedded in a voter-file row.

    Supports a flat ``ElectionDate/ElectionType/VotingMethod`` triple and the
    indexed group ``ElectionDate_N/ElectionType_N/VotingMethod_N``. Entries
    whose date does not parse are dropped.

    Returns:
        List of {election_date, election_type, voting_method?}
    """
    elections: List[Dict[str, Any]] = []

    indexed = []
    for header in row:
        match = _INDEXED_ELECTION_DATE.match(header)
        if match:
            indexed.append(int(match.group(1)))

    candidates = [
        (f"ElectionDate_{i}", f"ElectionType_{i}", f"VotingMethod_{i}")
        for i in sorted(indexed)
    ]
    candidates.append(("ElectionDate", "ElectionType", "VotingMethod"))

    for date_key, type_key, method_key in candidates:
        raw_date = row.get(date_key)
        if not raw_date:
            continue
        election_date = parse_date(raw_date)
        if not election_date:
            continue
        election = {
            "election_date": election_date,
            "election_type": row.get(type_key) or DEFAULT_ELECTION_TYPE,
        }
        if row.get(method_key):
            election["voting_method"] = row[method_key]
        elections.append(election)

    return elections
