"""Coordination between scout runs and the supervisor."""

from civic_scout.coordination.backoff import ExponentialBackoff
from civic_scout.coordination.config import SupervisorConfig
from civic_scout.coordination.lock import LockStore, ScoutLockManager
from civic_scout.coordination.supervisor import FeedbackGate, compute_quality_penalty

__all__ = [
    "ExponentialBackoff",
    "FeedbackGate",
    "LockStore",
    "ScoutLockManager",
    "SupervisorConfig",
    "compute_quality_penalty",
]
