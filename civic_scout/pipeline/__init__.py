"""Scout run pipeline: scheduling, scraping, discovery, expansion, metrics."""

from civic_scout.pipeline.budget import BudgetTracker, Operation
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import DiscoveryBudget, RunContext, RunStats
from civic_scout.pipeline.discovery import Discovery
from civic_scout.pipeline.errors import ScoutAlreadyRunningError, ScoutError, SetupError
from civic_scout.pipeline.expansion import Expansion, jaccard_similarity
from civic_scout.pipeline.orchestrator import Orchestrator, RunState, Synthesizer
from civic_scout.pipeline.scheduler import Scheduler, ScrapePlan
from civic_scout.pipeline.scrape_phase import ContentItem, ScrapePhase
from civic_scout.pipeline.source_metrics import SourceMetrics, SourceUpdate, compute_source_update
from civic_scout.pipeline.weights import cadence_for_weight, cadence_with_backoff, compute_weight

__all__ = [
    "BudgetTracker",
    "ContentItem",
    "Discovery",
    "DiscoveryBudget",
    "Expansion",
    "Operation",
    "Orchestrator",
    "RunContext",
    "RunState",
    "RunStats",
    "ScoutAlreadyRunningError",
    "ScoutConfig",
    "ScoutError",
    "Scheduler",
    "ScrapePhase",
    "ScrapePlan",
    "SetupError",
    "SourceMetrics",
    "SourceUpdate",
    "Synthesizer",
    "cadence_for_weight",
    "cadence_with_backoff",
    "compute_source_update",
    "compute_weight",
    "jaccard_similarity",
]
