"""Pipeline for StakeScope.

- batching: Rate-limited, chunked fetching with retries and a run budget
- processor: Snapshots → scores → store records
- orchestrator: collect / fetch-all runs
- sources: Layered validator listing (store → remote → synthetic)
"""

from stakescope.pipeline.batching import BatchFetcher, BatchResult, RunBudget
from stakescope.pipeline.orchestrator import Orchestrator, PipelineRunResult
from stakescope.pipeline.processor import NetworkState, Processor, build_snapshots
from stakescope.pipeline.sources import (
    LayeredSource,
    RemoteSource,
    SourceResult,
    SourceUnavailableError,
    StoreSource,
    SyntheticSource,
    ValidatorSummary,
)

__all__ = [
    "BatchFetcher",
    "BatchResult",
    "RunBudget",
    "Orchestrator",
    "PipelineRunResult",
    "NetworkState",
    "Processor",
    "build_snapshots",
    "LayeredSource",
    "RemoteSource",
    "SourceResult",
    "SourceUnavailableError",
    "StoreSource",
    "SyntheticSource",
    "ValidatorSummary",
]
