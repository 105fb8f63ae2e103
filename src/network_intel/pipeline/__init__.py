"""Enrichment pipeline: staged, partially parallel, gated by the persisted sync state."""

from .batching import BatchOutcome, run_in_batches
from .orchestrator import PIPELINE_STAGES, PipelineOrchestrator, PipelineRunReport, StageReport
from .stages import EnrichmentStages

__all__ = [
    "BatchOutcome",
    "EnrichmentStages",
    "PIPELINE_STAGES",
    "PipelineOrchestrator",
    "PipelineRunReport",
    "StageReport",
    "run_in_batches",
]
