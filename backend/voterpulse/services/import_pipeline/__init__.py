"""
Bulk voter-file import pipeline
"""
from voterpulse.services.import_pipeline.job_tracker import (
    ImportCounters,
    ImportJobTracker,
    ProgressCache,
)
from voterpulse.services.import_pipeline.runner import ImportRunner, _running_tasks
from voterpulse.services.import_pipeline.upsert_engine import BatchUpsertEngine

__all__ = [
    "BatchUpsertEngine",
    "ImportCounters",
    "ImportJobTracker",
    "ImportRunner",
    "ProgressCache",
    "_running_tasks",
]
