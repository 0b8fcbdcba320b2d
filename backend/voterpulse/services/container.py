"""
Service container for dependency injection
"""
import logging
from typing import Optional

from voterpulse.services.custom_fields import CustomFieldService
from voterpulse.services.dashboard import DashboardService
from voterpulse.services.import_pipeline.job_tracker import ImportJobTracker, ProgressCache
from voterpulse.services.import_pipeline.runner import ImportRunner
from voterpulse.services.interactions import InteractionService
from voterpulse.services.list_populator import ListPopulator
from voterpulse.services.organizations import OrganizationService
from voterpulse.services.scripts import ScriptService
from voterpulse.services.voter_lists import VoterListService
from voterpulse.services.voters import VoterService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Centralized service container for dependency injection"""

    def __init__(self):
        self._progress_cache: Optional[ProgressCache] = None
        self._import_tracker: Optional[ImportJobTracker] = None

    def get_progress_cache(self) -> ProgressCache:
        """Process-wide live import progress (shared by the tracker and the purge task)"""
        if self._progress_cache is None:
            self._progress_cache = ProgressCache()
        return self._progress_cache

    def get_import_tracker(self) -> ImportJobTracker:
        if self._import_tracker is None:
            self._import_tracker = ImportJobTracker(progress_cache=self.get_progress_cache())
        return self._import_tracker

    def get_import_runner(self) -> ImportRunner:
        return ImportRunner(tracker=self.get_import_tracker())

    def get_list_populator(self) -> ListPopulator:
        return ListPopulator()

    def get_voter_service(self) -> VoterService:
        return VoterService()

    def get_voter_list_service(self) -> VoterListService:
        return VoterListService()

    def get_interaction_service(self) -> InteractionService:
        return InteractionService()

    def get_script_service(self) -> ScriptService:
        return ScriptService()

    def get_dashboard_service(self) -> DashboardService:
        return DashboardService()

    def get_organization_service(self) -> OrganizationService:
        return OrganizationService()

    def get_custom_field_service(self) -> CustomFieldService:
        return CustomFieldService()

    def reset(self):
        """Drop cached singletons (used by tests)"""
        if self._progress_cache is not None:
            self._progress_cache.clear()
        self._progress_cache = None
        self._import_tracker = None


# Global service container instance
_service_container: Optional[ServiceContainer] = None


def get_service_container() -> ServiceContainer:
    """Get the global service container instance"""
    global _service_container
    if _service_container is None:
        _service_container = ServiceContainer()
    return _service_container
