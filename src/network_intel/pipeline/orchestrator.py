from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import ConflictError
from ..graph.models import SyncStatus
from ..graph.store import GraphStore
from ..graph.util import to_iso, utcnow
from .stages import EnrichmentStages

logger = logging.getLogger(__name__)

# A tuple is a fork-join group: its stages run concurrently and are joined before the
# next entry. Everything else is a sequential barrier.
PIPELINE_STAGES: tuple[str | tuple[str, ...], ...] = (
    "pre_cleanup",
    ("external_sync", "enrichment"),
    "relationship_inference",
    "flag_propagation",
    "post_cleanup",
    "metrics_refresh",
)


@dataclass(slots=True)
class StageReport:
    name: str
    status: str
    started_at: datetime
    duration_ms: float
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "started_at": to_iso(self.started_at),
            "duration_ms": round(self.duration_ms, 1),
            "details": self.details,
            "error": self.error,
        }


@dataclass(slots=True)
class PipelineRunReport:
    run_id: str
    status: SyncStatus = SyncStatus.RUNNING
    message: str = ""
    stages: list[StageReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.IDLE


class StageFailed(Exception):
    def __init__(self, failures: list[tuple[str, BaseException]]):
        self.failures = failures
        super().__init__(
            "; ".join(f"{name}: {type(e).__name__}: {e}" if str(e) else f"{name}: {type(e).__name__}" for name, e in failures)
        )


class PipelineOrchestrator:
    """Runs the enrichment stages as a state machine over the persisted sync state.

    idle -> running -> idle (success) | error (stage failure, store failure, timeout)

    Entry to `running` is a compare-and-swap on the sync state row, so at most one run
    executes at a time across processes. Stage failures stop the run but keep the writes
    of earlier stages; every stage is an idempotent upsert, so re-running is safe.
    """

    def __init__(
        self,
        store: GraphStore,
        stages: EnrichmentStages,
        *,
        timeout_s: float = 3600.0,
        stale_after_s: float | None = None,
        plan: tuple[str | tuple[str, ...], ...] = PIPELINE_STAGES,
    ):
        self.store = store
        self.stages = stages
        self.timeout_s = timeout_s
        self.stale_after_s = stale_after_s
        self.plan = plan
        self._active: list[str] = []

    async def run(self, *, run_id: str | None = None) -> PipelineRunReport:
        run_id = run_id or uuid.uuid4().hex
        if not self.store.try_begin_run(run_id, "Pipeline started", stale_after_s=self.stale_after_s):
            state = self.store.get_sync_state()
            raise ConflictError(f"pipeline run {state.run_id} is already running ({state.message})")

        logger.info("Pipeline run %s started", run_id)
        report = PipelineRunReport(run_id=run_id)
        try:
            await asyncio.wait_for(self._run_plan(run_id, report), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            report.status = SyncStatus.ERROR
            report.message = f"timeout after {self.timeout_s:g}s (stage: {'+'.join(self._active) or '-'})"
        except StageFailed as e:
            report.status = SyncStatus.ERROR
            report.message = str(e)
        except Exception as e:
            # store failures between stages, e.g. the heartbeat write
            logger.exception("Pipeline run %s failed outside a stage", run_id)
            report.status = SyncStatus.ERROR
            report.message = f"{'+'.join(self._active) or '-'}: {type(e).__name__}: {e}"
        except asyncio.CancelledError:
            self._finish(run_id, report, SyncStatus.ERROR, f"cancelled (stage: {'+'.join(self._active) or '-'})")
            raise
        else:
            report.status = SyncStatus.IDLE
            report.message = "completed"

        self._finish(run_id, report, report.status, report.message)
        return report

    def _finish(self, run_id: str, report: PipelineRunReport, status: SyncStatus, message: str) -> None:
        report.status = status
        report.message = message
        self.store.finish_run(run_id, status, message, [s.as_dict() for s in report.stages])
        if status == SyncStatus.IDLE:
            logger.info("Pipeline run %s completed", run_id)
        else:
            logger.error("Pipeline run %s ended in error: %s", run_id, message)

    async def _run_plan(self, run_id: str, report: PipelineRunReport) -> None:
        for step in self.plan:
            names = list(step) if isinstance(step, tuple) else [step]
            self._active = names
            self.store.touch_run(run_id, f"stage {'+'.join(names)}")
            results = await asyncio.gather(
                *(self._run_stage(name, report) for name in names), return_exceptions=True
            )
            failures: list[tuple[str, BaseException]] = []
            for name, res in zip(names, results):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                if isinstance(res, BaseException):
                    failures.append((name, res))
            if failures:
                raise StageFailed(failures)
        self._active = []

    async def _run_stage(self, name: str, report: PipelineRunReport) -> None:
        started = utcnow()
        t0 = time.perf_counter()
        logger.info("Stage %s started", name)
        try:
            details = await getattr(self.stages, name)()
        except Exception as e:
            report.stages.append(
                StageReport(
                    name=name,
                    status="failed",
                    started_at=started,
                    duration_ms=(time.perf_counter() - t0) * 1000.0,
                    error=f"{type(e).__name__}: {e}",
                )
            )
            logger.exception("Stage %s failed", name)
            raise
        report.stages.append(
            StageReport(
                name=name,
                status="ok",
                started_at=started,
                duration_ms=(time.perf_counter() - t0) * 1000.0,
                details=details or {},
            )
        )
        logger.info("Stage %s finished in %.0f ms", name, (time.perf_counter() - t0) * 1000.0)
