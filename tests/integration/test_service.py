from __future__ import annotations

import threading
from dataclasses import replace
from decimal import Decimal

import pytest

from building_compliance.common.errors import AllSourcesFailed, IdentityMismatchError
from building_compliance.common.models import (
    Borough,
    Grade,
    SourceResult,
    SourceStatus,
    SourceSystem,
    Trend,
    ViolationStatus,
)
from building_compliance.identity.resolver import IdentifierResolver
from building_compliance.pipeline.cache import AggregationCache
from building_compliance.pipeline.scoring import score_violations
from building_compliance.pipeline.service import ComplianceService
from building_compliance.sources.base import SourceAdapter
from building_compliance.sources.housing import HousingAdapter
from building_compliance.sources.permits import PermitsAdapter
from building_compliance.sources.sanitation import SanitationAdapter

PERRY_68 = "68 Perry Street, New York, NY 10014"
PERRY_REGISTRY_ROW = {
    "boroid": "1",
    "block": "614",
    "lot": "44",
    "housenumber": "68",
    "streetname": "PERRY STREET",
    "bin": "1011234",
    "legalclassa": "20",
}


def ticket(number, result, *, penalty="100", balance="100"):
    return {
        "ticket_number": f"0{number:08d}",
        "issuing_agency": "DSNY - SANITATION ENFORCEMENT AGENTS",
        "violation_location_house": "68",
        "violation_location_street_name": "PERRY ST",
        "violation_location_borough": "MANHATTAN",
        "violation_date": f"2025-{1 + number % 12:02d}-10T00:00:00.000",
        "hearing_result": result,
        "penalty_imposed": penalty,
        "balance_due": balance,
        "charge_1_code": "AS4",
    }


def perry_sanitation_rows():
    rows = [ticket(0, "DEFAULTED", penalty="300", balance="300")]
    rows += [ticket(n, "IN VIOLATION") for n in range(1, 13)]
    rows += [ticket(n, "PAID IN FULL", balance="0") for n in range(13, 19)]
    return rows


def build_service(fetch, urls, **kwargs):
    adapters = [
        HousingAdapter(fetch, url=urls["housing"]),
        PermitsAdapter(fetch, url=urls["permits"]),
        SanitationAdapter(fetch, url=urls["sanitation"]),
    ]
    return ComplianceService(
        IdentifierResolver(fetch, registry_url=urls["registry"]),
        adapters,
        kwargs.pop("cache", AggregationCache()),
        zip_boroughs={"100": Borough.MANHATTAN},
        **kwargs,
    )


@pytest.mark.integration
def test_perry_street_with_defaulted_sanitation_ticket(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW], urls["sanitation"]: perry_sanitation_rows()})
    service = build_service(fetch, urls)

    snapshot = service.check_address(PERRY_68)

    assert snapshot.building_id == "bbl-1006140044-bin-1011234"
    assert len(snapshot.violations) == 19
    assert snapshot.score == 64
    assert snapshot.grade is Grade.C
    assert score_violations(snapshot.violations).status_band == "warning"
    assert snapshot.outstanding_balance == Decimal("1500.00")
    assert snapshot.has_defaulted
    assert snapshot.stale is False

    summary = service.summarize([snapshot])
    assert summary.critical_building_ids == frozenset({snapshot.building_id})
    assert [alert.code for alert in summary.alerts] == ["DEFAULTED_VIOLATION", "LOW_SCORE"]


@pytest.mark.integration
def test_building_without_violations_scores_perfectly(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW]})
    service = build_service(fetch, urls)

    snapshot = service.check_address(PERRY_68)

    assert (snapshot.score, snapshot.grade) == (100, Grade.A_PLUS)
    assert snapshot.outstanding_balance == Decimal("0.00")
    assert service.summarize([snapshot]).critical_building_ids == frozenset()


@pytest.mark.integration
def test_failed_source_degrades_to_partial_snapshot(fake_fetch_cls, urls):
    rows = [{"violationid": "H1", "class": "B", "currentstatus": "OPEN", "novissueddate": "2026-01-01T00:00:00.000"}]
    fetch = fake_fetch_cls(
        {urls["registry"]: [PERRY_REGISTRY_ROW], urls["housing"]: rows},
        fail_urls=[urls["sanitation"]],
    )
    snapshot = build_service(fetch, urls).check_address(PERRY_68)

    assert snapshot.per_source_status == {
        SourceSystem.HOUSING: SourceStatus.OK,
        SourceSystem.PERMITS: SourceStatus.OK,
        SourceSystem.SANITATION: SourceStatus.FAILED,
    }
    assert snapshot.stale is True
    assert snapshot.score == 96
    assert snapshot.staleness_note.endswith("one or more sources unavailable")


@pytest.mark.integration
def test_all_sources_down_falls_back_to_last_snapshot(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW], urls["sanitation"]: perry_sanitation_rows()})
    service = build_service(fetch, urls)
    fresh = service.check_address(PERRY_68)

    fetch.fail_urls.update({urls["housing"], urls["permits"], urls["sanitation"]})
    served = service.force_refresh(fresh.building_id)

    assert served.stale is True
    assert served.score == fresh.score
    assert served.violations == fresh.violations


@pytest.mark.integration
def test_all_sources_down_without_history_raises(fake_fetch_cls, urls):
    fetch = fake_fetch_cls(
        {urls["registry"]: [PERRY_REGISTRY_ROW]},
        fail_urls=[urls["housing"], urls["permits"], urls["sanitation"]],
    )
    with pytest.raises(AllSourcesFailed):
        build_service(fetch, urls).check_address(PERRY_68)


class BlockingAdapter(SourceAdapter):
    source_system = SourceSystem.PERMITS

    def __init__(self, release: threading.Event):
        super().__init__(lambda _url, _query: [], url="https://registry.test/blocked")
        self.release = release

    def fetch_violations(self, identity):
        self.release.wait(timeout=5)
        return SourceResult(source_system=self.source_system, status=SourceStatus.OK)


@pytest.mark.integration
def test_slow_adapter_times_out_without_blocking_others(fake_fetch_cls, urls, perry_identity):
    fetch = fake_fetch_cls({urls["sanitation"]: perry_sanitation_rows()})
    release = threading.Event()
    service = ComplianceService(
        IdentifierResolver(fetch, registry_url=urls["registry"]),
        [HousingAdapter(fetch, url=urls["housing"]), BlockingAdapter(release), SanitationAdapter(fetch, url=urls["sanitation"])],
        AggregationCache(),
        adapter_timeout=0.2,
    )
    try:
        snapshot = service.aggregate(perry_identity)
    finally:
        release.set()

    assert snapshot.per_source_status[SourceSystem.PERMITS] is SourceStatus.FAILED
    assert snapshot.per_source_status[SourceSystem.SANITATION] is SourceStatus.OK
    assert len(snapshot.violations) == 19


@pytest.mark.integration
def test_concurrent_checks_fetch_each_source_once(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW], urls["sanitation"]: perry_sanitation_rows()})
    service = build_service(fetch, urls)
    identity = service.resolve_address(PERRY_68)

    results = []
    threads = [threading.Thread(target=lambda: results.append(service.snapshot_for(identity))) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 6
    assert len(fetch.calls_for(urls["sanitation"])) == 1
    assert len(fetch.calls_for(urls["housing"])) == 1


@pytest.mark.integration
def test_portfolio_refresh_stops_dispatch_on_cancel(fake_fetch_cls, urls, perry_identity):
    cancel = threading.Event()
    inner = fake_fetch_cls()

    def cancelling_fetch(url, query):
        cancel.set()
        return inner(url, query)

    service = build_service(cancelling_fetch, urls, max_workers=1)
    identities = [replace(perry_identity, building_id=f"bbl-{n}") for n in range(4)]

    refresh = service.refresh_portfolio(identities, cancel_event=cancel)

    assert list(refresh.snapshots) == ["bbl-0"]
    assert refresh.skipped == ("bbl-1", "bbl-2", "bbl-3")
    assert refresh.cancelled is True
    assert service.cache.peek("bbl-0") is not None


@pytest.mark.integration
def test_portfolio_refresh_isolates_building_failures(fake_fetch_cls, urls, perry_identity):
    fetch = fake_fetch_cls(fail_urls=[urls["housing"], urls["permits"], urls["sanitation"]])
    service = build_service(fetch, urls, max_workers=2)
    healthy = replace(perry_identity, building_id="bbl-healthy")
    service.cache.get_or_fetch(
        healthy.building_id,
        lambda: build_service(fake_fetch_cls(), urls).aggregate(healthy),
    )

    refresh = service.refresh_portfolio([healthy, replace(perry_identity, building_id="bbl-broken")])

    assert refresh.errors == {"bbl-broken": "ALL_SOURCES_FAILED"}
    assert list(refresh.snapshots) == ["bbl-healthy"]
    assert refresh.complete is False


@pytest.mark.integration
def test_force_refresh_reverify_detects_wrong_building(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW]})
    service = build_service(fetch, urls)
    identity = service.resolve_address(PERRY_68)

    fetch.rows_by_url[urls["registry"]] = [dict(PERRY_REGISTRY_ROW, lot="45", bin="1011235")]

    with pytest.raises(IdentityMismatchError):
        service.force_refresh(identity.building_id, reverify=True)
    assert service.resolve_address(PERRY_68).property_key == "1006140045"


@pytest.mark.integration
def test_summaries_track_trend_between_runs(fake_fetch_cls, urls):
    fetch = fake_fetch_cls({urls["registry"]: [PERRY_REGISTRY_ROW]})
    service = build_service(fetch, urls)
    first = service.check_address(PERRY_68)
    assert service.summarize().trends[first.building_id] is Trend.STABLE

    fetch.rows_by_url[urls["sanitation"]] = perry_sanitation_rows()
    service.invalidate(first.building_id)
    second = service.check_address(PERRY_68)

    assert second.score == 64
    assert service.summarize().trends[first.building_id] is Trend.DECLINING
    assert any(v.status is ViolationStatus.DEFAULTED for v in second.violations)
