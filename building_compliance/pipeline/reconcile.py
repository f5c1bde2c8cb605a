"""Merge per-source results into one deterministic compliance snapshot."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from building_compliance.common.models import (
    ComplianceSnapshot,
    SourceResult,
    SourceStatus,
    SourceSystem,
    ViolationRecord,
)
from building_compliance.common.time_utils import utc_now
from building_compliance.pipeline.scoring import DEFAULT_RULES, ScoringRules, score_violations


def _combined_status(statuses: list[SourceStatus]) -> SourceStatus:
    usable = [status for status in statuses if status is not SourceStatus.FAILED]
    if not usable:
        return SourceStatus.FAILED
    if SourceStatus.STALE in usable:
        return SourceStatus.STALE
    return SourceStatus.OK


def violation_sort_key(violation: ViolationRecord) -> tuple:
    return (-violation.issued_at.timestamp(), violation.external_id, violation.source_system.value)


def merge_violations(results: Iterable[SourceResult]) -> list[ViolationRecord]:
    unique: dict[tuple[str, str], ViolationRecord] = {}
    for result in results:
        if result.status is SourceStatus.FAILED:
            continue
        for violation in result.violations:
            unique.setdefault(violation.dedupe_key, violation)
    return sorted(unique.values(), key=violation_sort_key)


def reconcile(
    building_id: str,
    per_source_results: Iterable[SourceResult],
    *,
    rules: ScoringRules = DEFAULT_RULES,
    fetched_at: datetime | None = None,
    expected_sources: Iterable[SourceSystem] = tuple(SourceSystem),
) -> ComplianceSnapshot | None:
    """Build a snapshot, or ``None`` when every source failed.

    Sources listed in ``expected_sources`` but absent from the results are
    recorded as FAILED. A source reported more than once is FAILED only if
    every report failed.
    """
    results = sorted(per_source_results, key=lambda result: result.source_system.value)

    statuses_by_source: dict[SourceSystem, list[SourceStatus]] = defaultdict(list)
    for result in results:
        statuses_by_source[result.source_system].append(result.status)
    for source in expected_sources:
        statuses_by_source.setdefault(source, [SourceStatus.FAILED])

    per_source_status = {
        source: _combined_status(statuses)
        for source, statuses in sorted(statuses_by_source.items(), key=lambda item: item[0].value)
    }
    if all(status is SourceStatus.FAILED for status in per_source_status.values()):
        return None

    violations = merge_violations(results)
    scored = score_violations(violations, rules)
    return ComplianceSnapshot(
        building_id=building_id,
        fetched_at=fetched_at or utc_now(),
        per_source_status=per_source_status,
        violations=tuple(violations),
        score=scored.score,
        grade=scored.grade,
        outstanding_balance=scored.outstanding_balance,
        stale=any(status is not SourceStatus.OK for status in per_source_status.values()),
    )
