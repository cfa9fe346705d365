from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List


@dataclass
class Pagination:
    current_batch: int = 0
    total_batches: int = 0
    records_processed: int = 0
    has_more: bool = False


@dataclass
class SyncJobResult:
    brand_name: str
    brand_code: str
    country_code: str
    source_table: str
    target_table: str
    success: bool = False
    processed: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    pagination: Pagination = field(default_factory=Pagination)
    summary_rows: int = 0
    cancelled: bool = False
    error_message: str | None = None

    @property
    def status(self) -> str:
        if not self.success:
            return "error"
        if self.errors or self.cancelled:
            return "warning"
        return "ok"

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status
        return payload


@dataclass
class SyncRunSummary:
    run_id: str
    run_env: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    results: List[SyncJobResult] = field(default_factory=list)
    phases: dict[str, Dict[str, int]] = field(
        default_factory=lambda: {
            "discover": {"ok": 0, "warning": 0, "error": 0},
            "job": {"ok": 0, "warning": 0, "error": 0},
        }
    )
    cancelled: bool = False
    notes: list[str] = field(default_factory=list)

    def mark_phase(self, phase: str, status: str) -> None:
        counters = self.phases.setdefault(phase, {"ok": 0, "warning": 0, "error": 0})
        normalized = "warning" if status in {"warn", "warning"} else status
        if normalized not in counters:
            normalized = "ok"
        counters[normalized] += 1

    def record_job(self, result: SyncJobResult) -> None:
        self.results.append(result)
        self.mark_phase("job", result.status)
        if result.cancelled:
            self.cancelled = True

    @property
    def total_jobs(self) -> int:
        return len(self.results)

    @property
    def successful_jobs(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed_jobs(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def total_processed(self) -> int:
        return sum(result.processed for result in self.results)

    @property
    def total_errors(self) -> int:
        return sum(result.errors for result in self.results)

    def overall_status(self) -> str:
        if not self.results:
            return "ok"
        if self.failed_jobs == self.total_jobs:
            return "failed"
        if self.failed_jobs or self.total_errors or self.cancelled:
            return "partial"
        return "ok"

    def summary_text(self) -> str:
        return (
            f"Order sync: {self.successful_jobs}/{self.total_jobs} jobs succeeded, "
            f"{self.total_processed} orders upserted, {self.total_errors} row errors"
        )

    def build_record(self, *, finished_at: datetime) -> Dict[str, Any]:
        total_seconds = max(0, int((finished_at - self.started_at).total_seconds()))
        hh = total_seconds // 3600
        mm = (total_seconds % 3600) // 60
        ss = total_seconds % 60
        return {
            "run_id": self.run_id,
            "run_env": self.run_env,
            "started_at": self.started_at.isoformat(),
            "finished_at": finished_at.isoformat(),
            "total_time_taken": f"{hh:02d}:{mm:02d}:{ss:02d}",
            "overall_status": self.overall_status(),
            "summary_text": self.summary_text(),
            "total_jobs": self.total_jobs,
            "successful_jobs": self.successful_jobs,
            "failed_jobs": self.failed_jobs,
            "total_processed": self.total_processed,
            "total_errors": self.total_errors,
            "cancelled": self.cancelled,
            "phases": self.phases,
            "notes": list(self.notes),
            "results": [result.as_dict() for result in self.results],
        }
