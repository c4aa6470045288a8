"""
Deployment Module
=================
Deployment risk controls for progressive rollouts.

Features:
- Pre-approval confidence scoring
- Canary error rate gate
- Post-deploy monitoring with automatic rollback
"""

from .canary_gate import CanaryGate, sample_passes
from .risk_scorer import RiskScorer, count_services_affected
from .rollback_supervisor import RollbackSupervisor, is_breach

__all__ = [
    "CanaryGate",
    "RiskScorer",
    "RollbackSupervisor",
    "count_services_affected",
    "is_breach",
    "sample_passes",
]
