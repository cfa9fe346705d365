"""Per-stage SLA classification, severity and current-stage rules.

Each stage is measured from order placement to that stage's milestone (or to
now while the milestone is pending) and compared with the stage SLA and its
risk threshold. Stages are independent: a breach while syncing to OMS says
nothing about shipping or delivery.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping

from sla_sync.sla.durations import format_duration, parse_duration, risk_threshold, threshold_minutes
from sla_sync.sla.local_time import DEFAULT_TIME_SETTINGS, TimeSettings, elapsed_between
from sla_sync.sla.tat_config import TatConfig

ON_TIME = "On Time"
AT_RISK = "At Risk"
BREACHED = "Breached"
NOT_APPLICABLE = "N/A"

STAGE_NOT_PROCESSED = "Not Processed"
STAGE_PROCESSED = "Processed"
STAGE_SHIPPED = "Shipped"
STAGE_DELIVERED = "Delivered"

SEVERITY_NONE = "None"
SEVERITY_URGENT = "Urgent"
SEVERITY_CRITICAL = "Critical"

OMS_SYNC = "OMS Sync"
SHIPPING = "Shipping"
DELIVERY = "Delivery"


@dataclass(frozen=True)
class OrderMilestones:
    placed_time: datetime | None
    processed_time: datetime | None = None
    shipped_time: datetime | None = None
    delivered_time: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OrderMilestones":
        return cls(
            placed_time=row.get("placed_time"),
            processed_time=row.get("processed_time"),
            shipped_time=row.get("shipped_time"),
            delivered_time=row.get("delivered_time"),
        )


@dataclass(frozen=True)
class StageResult:
    stage: str
    status: str
    sla: str
    risk_threshold: str | None
    actual_minutes: int | None = None
    exceeded_minutes: int = 0
    pending: bool = False
    description: str = ""

    @property
    def actual(self) -> str | None:
        if self.actual_minutes is None:
            return None
        formatted = format_duration(self.actual_minutes)
        return f"{formatted} (elapsed)" if self.pending else formatted

    @property
    def exceeded_by(self) -> str | None:
        if self.status != BREACHED:
            return None
        return format_duration(self.exceeded_minutes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status,
            "actual_time": self.actual,
            "sla_threshold": self.sla,
            "risk_threshold": self.risk_threshold,
            "exceeded_by": self.exceeded_by,
            "pending": self.pending,
            "description": self.description,
        }


def status_for(actual_minutes: int, sla_minutes: int, risk_minutes: int) -> str:
    if actual_minutes > sla_minutes:
        return BREACHED
    if actual_minutes > risk_minutes:
        return AT_RISK
    return ON_TIME


_DESCRIPTIONS = {
    OMS_SYNC: ("to sync to OMS", "pending OMS sync", "synced to OMS", "OMS sync"),
    SHIPPING: ("to ship", "pending shipping", "shipped", "shipping"),
    DELIVERY: ("to deliver", "pending delivery", "delivered", "delivery"),
}


def _describe(stage: str, status: str, actual: str, sla: str, exceeded_by: str | None, pending: bool) -> str:
    took, waiting, done, noun = _DESCRIPTIONS.get(stage, ("to complete", "pending", "completed", stage.lower()))
    if pending:
        if status == BREACHED:
            return f"Order has been {waiting} for {actual}, exceeding SLA of {sla} by {exceeded_by}"
        if status == AT_RISK:
            return f"Order has been {waiting} for {actual}, approaching SLA limit of {sla}"
        return f"Order is within {noun} SLA ({actual} elapsed)"
    if status == BREACHED:
        return f"Order took {actual} {took}, exceeding SLA of {sla} by {exceeded_by}"
    if status == AT_RISK:
        return f"Order took {actual} {took}, approaching SLA limit of {sla}"
    return f"Order {done} within SLA in {actual}"


def not_applicable(stage: str, sla: str, risk_pct: int | float, reason: str) -> StageResult:
    return StageResult(
        stage=stage,
        status=NOT_APPLICABLE,
        sla=sla,
        risk_threshold=risk_threshold(sla, risk_pct) if parse_duration(sla) else None,
        description=reason,
    )


def classify_stage(
    placed: datetime | None,
    milestone: datetime | None,
    sla: str,
    risk_pct: int | float,
    *,
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
    stage: str = "",
) -> StageResult:
    """Classify one stage against its SLA.

    With ``milestone`` set the stage is complete and measured placed to
    milestone; otherwise it is pending and measured placed to now.
    """

    sla_minutes = parse_duration(sla)
    if placed is None:
        return not_applicable(stage, sla, risk_pct, "Order has no placement time")
    if sla_minutes <= 0:
        return not_applicable(stage, sla, risk_pct, "SLA not configured")

    risk_minutes = threshold_minutes(sla_minutes, risk_pct)
    actual_minutes, pending = elapsed_between(placed, milestone, country_code, settings, now=now)
    status = status_for(actual_minutes, sla_minutes, risk_minutes)
    exceeded_minutes = actual_minutes - sla_minutes if status == BREACHED else 0
    actual = format_duration(actual_minutes)
    exceeded_by = format_duration(exceeded_minutes) if status == BREACHED else None
    return StageResult(
        stage=stage,
        status=status,
        sla=sla,
        risk_threshold=format_duration(risk_minutes),
        actual_minutes=actual_minutes,
        exceeded_minutes=exceeded_minutes,
        pending=pending,
        description=_describe(stage, status, actual, sla, exceeded_by, pending),
    )


def current_stage(order: OrderMilestones) -> str:
    if order.delivered_time is not None:
        return STAGE_DELIVERED
    if order.shipped_time is not None:
        return STAGE_SHIPPED
    if order.processed_time is not None:
        return STAGE_PROCESSED
    return STAGE_NOT_PROCESSED


def pending_stage_sla(order: OrderMilestones, tat: TatConfig) -> str | None:
    """SLA of the stage the order is currently waiting on (None once delivered)."""

    stage = current_stage(order)
    if stage == STAGE_DELIVERED:
        return None
    if stage == STAGE_SHIPPED:
        return tat.delivered_tat
    if stage == STAGE_PROCESSED:
        return tat.shipped_tat
    return tat.processed_tat


def severity(
    order: OrderMilestones,
    tat: TatConfig,
    *,
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
) -> str:
    stage_sla = pending_stage_sla(order, tat)
    if stage_sla is None or order.placed_time is None:
        return SEVERITY_NONE
    sla_minutes = parse_duration(stage_sla)
    if sla_minutes <= 0:
        return SEVERITY_NONE
    elapsed, _ = elapsed_between(order.placed_time, None, country_code, settings, now=now)
    if elapsed > threshold_minutes(sla_minutes, tat.critical_pct):
        return SEVERITY_CRITICAL
    if elapsed > threshold_minutes(sla_minutes, tat.urgent_pct):
        return SEVERITY_URGENT
    return SEVERITY_NONE


def overall_status(stages: List[StageResult]) -> str:
    statuses = {stage.status for stage in stages}
    if BREACHED in statuses:
        return BREACHED
    if AT_RISK in statuses:
        return AT_RISK
    return ON_TIME


@dataclass(frozen=True)
class OrderAnalysis:
    current_stage: str
    stages: List[StageResult]
    overall_status: str
    severity: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "current_stage": self.current_stage,
            "stages": [stage.as_dict() for stage in self.stages],
            "overall_sla_status": self.overall_status,
            "breach_severity": self.severity,
        }


def analyze_order(
    order: OrderMilestones,
    tat: TatConfig,
    *,
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
) -> OrderAnalysis:
    common = {"country_code": country_code, "settings": settings, "now": now}

    stages = [
        classify_stage(order.placed_time, order.processed_time, tat.processed_tat, tat.risk_pct, stage=OMS_SYNC, **common)
    ]

    if order.shipped_time is None and order.processed_time is None:
        stages.append(
            not_applicable(SHIPPING, tat.shipped_tat, tat.risk_pct, "Order must be synced to OMS before shipping analysis")
        )
    else:
        stages.append(
            classify_stage(order.placed_time, order.shipped_time, tat.shipped_tat, tat.risk_pct, stage=SHIPPING, **common)
        )

    if order.delivered_time is None and order.shipped_time is None:
        stages.append(
            not_applicable(DELIVERY, tat.delivered_tat, tat.risk_pct, "Order must be shipped before delivery analysis")
        )
    else:
        stages.append(
            classify_stage(
                order.placed_time, order.delivered_time, tat.delivered_tat, tat.risk_pct, stage=DELIVERY, **common
            )
        )

    return OrderAnalysis(
        current_stage=current_stage(order),
        stages=stages,
        overall_status=overall_status(stages),
        severity=severity(order, tat, **common),
    )
