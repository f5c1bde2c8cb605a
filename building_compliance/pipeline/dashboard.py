"""Portfolio roll-up: critical buildings, balances, trends and alerts."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from building_compliance.common.models import (
    CENTS,
    ComplianceSnapshot,
    PortfolioAlert,
    PortfolioSummary,
    Trend,
    ViolationStatus,
)
from building_compliance.common.time_utils import utc_now

ALERT_LEVEL_ORDER = {"critical": 0, "warning": 1}


def is_critical(snapshot: ComplianceSnapshot, critical_threshold: int = 70) -> bool:
    return snapshot.score < critical_threshold or snapshot.has_defaulted


def trend_for(current: int, previous: int | None, trend_delta: int = 5) -> Trend:
    if previous is None:
        return Trend.STABLE
    change = current - previous
    if change > trend_delta:
        return Trend.IMPROVING
    if change < -trend_delta:
        return Trend.DECLINING
    return Trend.STABLE


def alerts_for(
    snapshot: ComplianceSnapshot,
    trend: Trend,
    critical_threshold: int = 70,
) -> list[PortfolioAlert]:
    alerts: list[PortfolioAlert] = []
    building_id = snapshot.building_id
    if snapshot.has_defaulted:
        defaulted = sum(1 for v in snapshot.violations if v.status is ViolationStatus.DEFAULTED)
        alerts.append(
            PortfolioAlert(building_id, "critical", "DEFAULTED_VIOLATION", f"{defaulted} defaulted violation(s)")
        )
    if snapshot.score < critical_threshold:
        alerts.append(
            PortfolioAlert(
                building_id,
                "critical",
                "LOW_SCORE",
                f"score {snapshot.score} is below {critical_threshold}",
            )
        )
    if trend is Trend.DECLINING:
        alerts.append(PortfolioAlert(building_id, "warning", "SCORE_DECLINING", "score declined since last review"))
    if snapshot.stale:
        alerts.append(PortfolioAlert(building_id, "warning", "STALE_DATA", snapshot.staleness_note or "stale data"))
    return alerts


def summarize(
    snapshots: Iterable[ComplianceSnapshot],
    *,
    previous_scores: Mapping[str, int] | None = None,
    critical_threshold: int = 70,
    trend_delta: int = 5,
    now: datetime | None = None,
) -> PortfolioSummary:
    """Recompute the portfolio view from current snapshots.

    A later snapshot for the same building replaces an earlier one.
    """
    previous_scores = previous_scores or {}
    by_building: dict[str, ComplianceSnapshot] = {}
    for snapshot in snapshots:
        by_building[snapshot.building_id] = snapshot
    ordered = [by_building[key] for key in sorted(by_building)]

    trends: dict[str, Trend] = {}
    alerts: list[PortfolioAlert] = []
    for snapshot in ordered:
        trend = trend_for(snapshot.score, previous_scores.get(snapshot.building_id), trend_delta)
        trends[snapshot.building_id] = trend
        alerts.extend(alerts_for(snapshot, trend, critical_threshold))

    alerts.sort(key=lambda alert: (ALERT_LEVEL_ORDER[alert.level], alert.building_id, alert.code))

    if ordered:
        average = (Decimal(sum(s.score for s in ordered)) / Decimal(len(ordered))).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
    else:
        average = Decimal("0.00")

    return PortfolioSummary(
        generated_at=now or utc_now(),
        total_buildings=len(ordered),
        average_score=average,
        critical_building_ids=frozenset(s.building_id for s in ordered if is_critical(s, critical_threshold)),
        total_outstanding_balance=sum((s.outstanding_balance for s in ordered), Decimal("0.00")),
        stale_building_ids=frozenset(s.building_id for s in ordered if s.stale),
        trends=trends,
        alerts=tuple(alerts),
    )
