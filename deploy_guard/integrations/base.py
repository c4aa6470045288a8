"""
Collaborator Interfaces

The scorer, gate and monitor only talk to the outside world through these
abstractions. Concrete implementations live next to this module.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from deploy_guard.models import ChangeDescriptor, MetricsSample


class MetricsQueryError(Exception):
    """The metrics backend could not answer. Distinct from zero traffic."""


class ChangeLookupError(Exception):
    """Version-control data for a change could not be retrieved"""


class MetricsSource(ABC):
    """Request and error counts for a deployable over a time window"""
    
    name = "metrics"
    
    @abstractmethod
    async def query(
        self,
        deployable_name: str,
        window_start: datetime,
        window_end: datetime
    ) -> MetricsSample:
        """
        Return counts for the window. A window without traffic returns a
        zero sample; any failure raises MetricsQueryError.
        """


class RollbackDispatcher(ABC):
    """Triggers an external remediation workflow"""
    
    @abstractmethod
    async def trigger(self, service_name: str, environment: str) -> bool:
        """Request a rollback. Returns True if the request was accepted."""


class ChangeSource(ABC):
    """Diff statistics for a commit"""
    
    @abstractmethod
    async def get_change(
        self,
        repository: str,
        commit_ref: str,
        affected_service_count: int = 0
    ) -> ChangeDescriptor:
        """Raises ChangeLookupError when the commit cannot be analysed"""


class DeploymentHistory(ABC):
    """Production deployment history for a deployable"""
    
    @abstractmethod
    async def days_since_last_production_deploy(self, repository: str) -> float:
        """Elapsed days, or ``float('inf')`` when nothing was ever deployed"""
