"""
deploy-guard
Confidence scoring, canary gating and post-deploy rollback supervision
"""

from .config import CanaryConfig, ConfigurationError, MonitorConfig, RollbackTarget, ScoreConfig
from .deployment import CanaryGate, RiskScorer, RollbackSupervisor
from .models import (
    CanaryResult,
    ChangeDescriptor,
    ConfidenceResult,
    DegradedReason,
    MetricsSample,
    PollRecord,
    PollStatus,
    RiskFactor,
    SupervisionOutcome,
    SupervisionStatus,
)
from .summary import OutputWriter, SummaryWriter

__version__ = "0.1.0"

__all__ = [
    # Config
    'CanaryConfig',
    'ConfigurationError',
    'MonitorConfig',
    'RollbackTarget',
    'ScoreConfig',
    
    # Components
    'CanaryGate',
    'RiskScorer',
    'RollbackSupervisor',
    
    # Models
    'CanaryResult',
    'ChangeDescriptor',
    'ConfidenceResult',
    'DegradedReason',
    'MetricsSample',
    'PollRecord',
    'PollStatus',
    'RiskFactor',
    'SupervisionOutcome',
    'SupervisionStatus',
    
    # Reporting
    'OutputWriter',
    'SummaryWriter',
]
