from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from building_compliance.common.models import (
    Borough,
    ComplianceSnapshot,
    Grade,
    SourceStatus,
    SourceSystem,
    to_money,
)


def test_balance_above_fine_is_rejected(make_violation):
    with pytest.raises(ValueError, match="exceeds fine_amount"):
        make_violation(fine="100", balance="150")


def test_negative_amount_is_rejected(make_violation):
    with pytest.raises(ValueError):
        make_violation(fine="-1")


def test_empty_external_id_is_rejected(make_violation):
    with pytest.raises(ValueError):
        make_violation("")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, "0.00"),
        ("", "0.00"),
        ("$1,250.5", "1250.50"),
        ("-40", "0.00"),
        ("n/a", "0.00"),
        (12.345, "12.35"),
    ],
)
def test_to_money(raw, expected):
    assert to_money(raw) == Decimal(expected)


def test_borough_codes():
    assert Borough.BROOKLYN.code == 3
    assert Borough.from_code("5") is Borough.STATEN_ISLAND
    with pytest.raises(ValueError):
        Borough.from_code(9)


def test_snapshot_score_range_enforced():
    with pytest.raises(ValueError):
        ComplianceSnapshot(
            building_id="b",
            fetched_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            per_source_status={},
            violations=(),
            score=101,
            grade=Grade.A_PLUS,
        )


def test_snapshot_dict_round_trip_keeps_staleness(make_violation):
    snapshot = ComplianceSnapshot(
        building_id="bbl-1",
        fetched_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        per_source_status={SourceSystem.SANITATION: SourceStatus.FAILED, SourceSystem.HOUSING: SourceStatus.OK},
        violations=(make_violation("1", fine="10", balance="10"),),
        score=98,
        grade=Grade.A_PLUS,
        outstanding_balance=Decimal("10.00"),
        stale=True,
    )

    payload = snapshot.to_dict()

    assert list(payload["per_source_status"]) == ["HOUSING", "SANITATION"]
    assert payload["staleness_note"] == "data as of 2026-03-01T12:00:00+00:00, one or more sources unavailable"
    assert ComplianceSnapshot.from_dict(payload) == snapshot


def test_as_stale_marks_copy_only():
    snapshot = ComplianceSnapshot(
        building_id="b",
        fetched_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        per_source_status={},
        violations=(),
        score=100,
        grade=Grade.A_PLUS,
    )
    stale = snapshot.as_stale()
    assert stale.stale is True
    assert snapshot.stale is False
    assert snapshot.staleness_note is None


def test_snapshot_source_statuses_are_read_only():
    statuses = {SourceSystem.HOUSING: SourceStatus.OK}
    snapshot = ComplianceSnapshot(
        building_id="b",
        fetched_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        per_source_status=statuses,
        violations=(),
        score=100,
        grade=Grade.A_PLUS,
    )

    statuses[SourceSystem.HOUSING] = SourceStatus.FAILED
    with pytest.raises(TypeError):
        snapshot.per_source_status[SourceSystem.HOUSING] = SourceStatus.FAILED
    assert snapshot.per_source_status == {SourceSystem.HOUSING: SourceStatus.OK}
    assert snapshot.as_stale().per_source_status == snapshot.per_source_status
