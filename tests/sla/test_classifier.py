from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from sla_sync.sla.classifier import (
    AT_RISK,
    BREACHED,
    DELIVERY,
    NOT_APPLICABLE,
    OMS_SYNC,
    ON_TIME,
    SEVERITY_CRITICAL,
    SEVERITY_NONE,
    SEVERITY_URGENT,
    SHIPPING,
    STAGE_DELIVERED,
    STAGE_NOT_PROCESSED,
    STAGE_PROCESSED,
    STAGE_SHIPPED,
    OrderMilestones,
    analyze_order,
    classify_stage,
    current_stage,
    severity,
)
from sla_sync.sla.tat_config import TatConfig

PLACED = datetime(2025, 5, 10, 0, 0)
INGESTION_LAG = timedelta(hours=8)


def _tat(**overrides) -> TatConfig:
    values = dict(
        brand_name="Victoria's Secret",
        country_code="MY",
        processed_tat="2h",
        shipped_tat="2d",
        delivered_tat="7d",
    )
    values.update(overrides)
    return TatConfig(**values)


@pytest.mark.parametrize(
    "minutes, status, exceeded_by",
    [
        (90, ON_TIME, None),
        (96, ON_TIME, None),
        (100, AT_RISK, None),
        (120, AT_RISK, None),
        (130, BREACHED, "10m"),
    ],
)
def test_completed_stage_thresholds(minutes: int, status: str, exceeded_by) -> None:
    result = classify_stage(PLACED, PLACED + timedelta(minutes=minutes), "2h", 80, country_code="MY", stage=OMS_SYNC)

    assert result.status == status
    assert result.exceeded_by == exceeded_by
    assert result.pending is False
    assert result.risk_threshold == "1h 36m"


def test_pending_stage_measures_to_now() -> None:
    now = PLACED + INGESTION_LAG + timedelta(minutes=150)

    result = classify_stage(PLACED, None, "2h", 80, country_code="MY", now=now, stage=OMS_SYNC)

    assert result.pending is True
    assert result.status == BREACHED
    assert result.actual == "2h 30m (elapsed)"
    assert result.exceeded_by == "30m"
    assert "pending OMS sync" in result.description


def test_missing_placed_time_and_zero_sla_are_not_applicable() -> None:
    assert classify_stage(None, PLACED, "2h", 80, country_code="MY").status == NOT_APPLICABLE
    assert classify_stage(PLACED, PLACED, "garbage", 80, country_code="MY").status == NOT_APPLICABLE


def test_current_stage_uses_highest_milestone() -> None:
    assert current_stage(OrderMilestones(PLACED)) == STAGE_NOT_PROCESSED
    assert current_stage(OrderMilestones(PLACED, processed_time=PLACED)) == STAGE_PROCESSED
    # A shipped order with no processed time is still Shipped.
    assert current_stage(OrderMilestones(PLACED, shipped_time=PLACED)) == STAGE_SHIPPED
    assert current_stage(OrderMilestones(PLACED, delivered_time=PLACED)) == STAGE_DELIVERED


def test_severity_tracks_pending_stage_only() -> None:
    tat = _tat()
    not_processed = OrderMilestones(PLACED)

    def at(minutes: int) -> datetime:
        return PLACED + INGESTION_LAG + timedelta(minutes=minutes)

    assert severity(not_processed, tat, country_code="MY", now=at(120)) == SEVERITY_NONE
    assert severity(not_processed, tat, country_code="MY", now=at(121)) == SEVERITY_URGENT
    assert severity(not_processed, tat, country_code="MY", now=at(181)) == SEVERITY_CRITICAL

    processed = OrderMilestones(PLACED, processed_time=PLACED + timedelta(hours=1))
    assert severity(processed, tat, country_code="MY", now=at(181)) == SEVERITY_NONE

    delivered = OrderMilestones(PLACED, delivered_time=PLACED + timedelta(days=30))
    assert severity(delivered, tat, country_code="MY", now=at(100_000)) == SEVERITY_NONE


def test_analyze_order_marks_unreached_stages_not_applicable() -> None:
    order = OrderMilestones(PLACED, processed_time=PLACED + timedelta(minutes=130))
    now = PLACED + INGESTION_LAG + timedelta(hours=3)

    analysis = analyze_order(order, _tat(), country_code="MY", now=now)
    by_stage = {stage.stage: stage for stage in analysis.stages}

    assert analysis.current_stage == STAGE_PROCESSED
    assert by_stage[OMS_SYNC].status == BREACHED
    assert by_stage[SHIPPING].status == ON_TIME
    assert by_stage[SHIPPING].pending is True
    assert by_stage[DELIVERY].status == NOT_APPLICABLE
    assert analysis.overall_status == BREACHED

    payload = analysis.as_dict()
    assert payload["overall_sla_status"] == BREACHED
    assert payload["breach_severity"] == SEVERITY_NONE
    assert [stage["stage"] for stage in payload["stages"]] == [OMS_SYNC, SHIPPING, DELIVERY]


def test_delivered_order_is_on_time_overall() -> None:
    order = OrderMilestones(
        PLACED,
        processed_time=PLACED + timedelta(minutes=30),
        shipped_time=PLACED + timedelta(days=1),
        delivered_time=PLACED + timedelta(days=3),
    )

    analysis = analyze_order(order, _tat(), country_code="MY", now=PLACED + timedelta(days=10))

    assert analysis.current_stage == STAGE_DELIVERED
    assert {stage.status for stage in analysis.stages} == {ON_TIME}
    assert analysis.overall_status == ON_TIME
    assert analysis.severity == SEVERITY_NONE
