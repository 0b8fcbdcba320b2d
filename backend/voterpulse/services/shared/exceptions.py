"""
Custom exceptions for VoterPulse services
"""
from typing import Optional


class VoterPulseError(Exception):
    """Base exception for all service errors"""
    pass


class DatabaseLockError(VoterPulseError):
    """Database is locked error"""
    def __init__(self, message: str = "Database is locked", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class TenantAccessError(VoterPulseError):
    """A record was requested outside the caller's organization"""
    def __init__(self, message: str = "Resource does not belong to this organization", organization_id: Optional[int] = None):
        super().__init__(message)
        self.organization_id = organization_id


class ImportPipelineError(VoterPulseError):
    """Error in the bulk import pipeline"""
    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class MalformedRowError(ImportPipelineError):
    """A single source line could not be tokenized (row-level, recoverable)"""
    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None):
        super().__init__(message)
        self.row = row
        self.field = field


class ImportStreamError(ImportPipelineError):
    """The upload stream failed; the job cannot continue"""
    pass


class ImportCancelledError(ImportStreamError):
    """The import was cancelled by request"""
    def __init__(self, message: str = "Import cancelled", job_id: Optional[str] = None):
        super().__init__(message, job_id=job_id)


class ColumnMappingError(ImportPipelineError):
    """The explicit column mapping names an unknown target field"""
    def __init__(self, message: str, source_column: Optional[str] = None, target_field: Optional[str] = None):
        super().__init__(message)
        self.source_column = source_column
        self.target_field = target_field


class InvalidJobTransitionError(ImportPipelineError):
    """Import job state machine violation"""
    def __init__(self, from_status: str, to_status: str, job_id: Optional[str] = None):
        super().__init__(f"Cannot move import job from '{from_status}' to '{to_status}'", job_id=job_id)
        self.from_status = from_status
        self.to_status = to_status


class FilterCriteriaError(VoterPulseError):
    """Filter criteria are missing or invalid"""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class RecordValidationError(VoterPulseError):
    """A field value in a request is out of range or malformed"""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateRecordError(VoterPulseError):
    """A record with the same natural key already exists for the organization"""
    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class PermissionDeniedError(VoterPulseError):
    """The caller may not perform this action on the organization"""
    pass
