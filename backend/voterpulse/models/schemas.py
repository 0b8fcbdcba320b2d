from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (snake_case also accepted)"""
    model_config = ConfigDict(populate_by_name=True)


class ImportPreview(BaseModel):
    headers: List[str]
    sampleRows: List[List[str]]
    suggestedMapping: Dict[str, str]


class VoterListCreate(CamelModel):
    name: str
    description: Optional[str] = None
    type: str = "custom"
    is_public: bool = Field(default=True, alias="isPublic")
    is_dynamic: bool = Field(default=False, alias="isDynamic")
    filter_criteria: Optional[Dict[str, Any]] = Field(default=None, alias="filterCriteria")


class VoterListUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    is_public: Optional[bool] = Field(default=None, alias="isPublic")
    is_dynamic: Optional[bool] = Field(default=None, alias="isDynamic")
    filter_criteria: Optional[Dict[str, Any]] = Field(default=None, alias="filterCriteria")


class VoterIdsRequest(CamelModel):
    voter_ids: List[int] = Field(default_factory=list, alias="voterIds")


class PopulateListRequest(CamelModel):
    # Falls back to the list's stored criteria when omitted
    filter_criteria: Optional[Dict[str, Any]] = Field(default=None, alias="filterCriteria")


class InteractionCreate(CamelModel):
    voter_id: int = Field(alias="voterId")
    type: str
    result: Optional[str] = None
    support_level: Optional[int] = Field(default=None, alias="supportLevel")
    notes: Optional[str] = None
    duration: Optional[int] = None
    script_id: Optional[int] = Field(default=None, alias="scriptId")
    list_id: Optional[int] = Field(default=None, alias="listId")


class ScriptCreate(CamelModel):
    name: str
    content: str
    type: str


class ScriptUpdate(CamelModel):
    name: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class OrganizationCreate(CamelModel):
    name: str


class MemberCreate(CamelModel):
    email: str
    role: str = "volunteer"
    permissions: Optional[Dict[str, bool]] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")


class OrganizationUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class MemberUpdate(CamelModel):
    role: Optional[str] = None
    status: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None


class InvitationCreate(CamelModel):
    email: str
    role: str = "volunteer"


class CustomFieldCreate(CamelModel):
    field_name: str = Field(alias="fieldName")
    field_label: str = Field(alias="fieldLabel")
    field_type: str = Field(alias="fieldType")
    options: Optional[List[str]] = None
    is_required: bool = Field(default=False, alias="isRequired")
    sort_order: int = Field(default=0, alias="sortOrder")


class CustomFieldUpdate(CamelModel):
    field_label: Optional[str] = Field(default=None, alias="fieldLabel")
    options: Optional[List[str]] = None
    is_required: Optional[bool] = Field(default=None, alias="isRequired")
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")


class CustomFieldValueSet(CamelModel):
    field_id: int = Field(alias="fieldId")
    value: Any = None


class CustomFieldBulkSet(CamelModel):
    field_id: int = Field(alias="fieldId")
    voter_ids: List[int] = Field(default_factory=list, alias="voterIds")
    value: Any = None
