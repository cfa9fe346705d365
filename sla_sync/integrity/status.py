from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from sla_sync.catalog.discovery import discover
from sla_sync.catalog.naming import DEFAULT_CATALOG_SETTINGS, CatalogSettings
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.integrity.validator import ValidationReport, validate

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"


@dataclass
class StatusReport:
    health: str
    validation: ValidationReport
    source_tables: int = 0
    synced_tables: int = 0
    pending_tables: int = 0
    recommendations: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "health": self.health,
            "checked_at": self.checked_at.isoformat(),
            "discovery": {
                "source_tables": self.source_tables,
                "synced_tables": self.synced_tables,
                "pending_tables": self.pending_tables,
            },
            "validation": self.validation.as_dict(),
            "recommendations": list(self.recommendations),
        }


def health_for(report: ValidationReport) -> str:
    if report.orphaned or report.missing_tables:
        return CRITICAL
    if report.tat_issues:
        return WARNING
    return HEALTHY


def recommendations_for(report: ValidationReport) -> List[str]:
    lines: List[str] = []
    if report.missing_tables:
        lines.append(
            f"{len(report.missing_tables)} source tables have no order table yet; "
            "check the source tables and run a sync"
        )
    if report.orphaned:
        lines.append(
            f"{report.orphaned_records} summary records need cleanup; run cleanup to remove orphaned partitions"
        )
    if report.tat_issues:
        for issue in report.tat_issues:
            lines.append(f"{issue.brand_name} ({issue.country_code}): {issue.issue}")
        lines.append("Add missing TAT configurations to tat_config table")
    if not lines:
        lines.append("System is operating normally")
    return lines


async def system_status(
    *,
    source_database_url: str,
    database_url: str,
    logger: JsonLogger,
    settings: CatalogSettings = DEFAULT_CATALOG_SETTINGS,
) -> StatusReport:
    """Combine validation findings with discovery totals into one health report."""

    report = await validate(
        database_url=database_url,
        source_database_url=source_database_url,
        logger=logger,
        settings=settings,
    )
    discoveries = await discover(
        source_database_url=source_database_url,
        database_url=database_url,
        logger=logger,
        settings=settings,
    )
    synced = sum(1 for discovery in discoveries if discovery.exists_in_target)
    status = StatusReport(
        health=health_for(report),
        validation=report,
        source_tables=len(discoveries),
        synced_tables=synced,
        pending_tables=len(discoveries) - synced,
        recommendations=recommendations_for(report),
    )
    log_event(
        logger=logger,
        phase="status",
        status={HEALTHY: "ok", WARNING: "warn", CRITICAL: "error"}[status.health],
        message=f"System health: {status.health}",
        source_tables=status.source_tables,
        synced_tables=status.synced_tables,
        pending_tables=status.pending_tables,
        total_issues=report.total_issues,
    )
    return status
