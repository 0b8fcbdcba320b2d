"""
Shared utilities for VoterPulse services
"""
from .exceptions import (
    VoterPulseError,
    DatabaseLockError,
    TenantAccessError,
    ImportPipelineError,
    ColumnMappingError,
    FilterCriteriaError,
)
from .retry import retry_on_db_lock

__all__ = [
    "VoterPulseError",
    "DatabaseLockError",
    "TenantAccessError",
    "ImportPipelineError",
    "ColumnMappingError",
    "FilterCriteriaError",
    "retry_on_db_lock",
]
