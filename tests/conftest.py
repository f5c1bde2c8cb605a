from __future__ import annotations

import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from building_compliance.common.http import HttpRequestError
from building_compliance.common.models import (
    Borough,
    BuildingIdentity,
    NormalizedAddress,
    Severity,
    SourceSystem,
    ViolationRecord,
    ViolationStatus,
)

REGISTRY_URL = "https://registry.test/resource/kj4p-ruqc.json"
HOUSING_URL = "https://registry.test/resource/wvxf-dwi5.json"
PERMITS_URL = "https://registry.test/resource/3h2n-5cm9.json"
SANITATION_URL = "https://registry.test/resource/jz4z-kudi.json"


class FakeFetch:
    """Serves fixed rows per URL, honouring $limit/$offset, and records every call."""

    def __init__(self, rows_by_url=None, *, fail_urls=()):
        self.rows_by_url = dict(rows_by_url or {})
        self.fail_urls = set(fail_urls)
        self.calls = []
        self.lock = threading.Lock()

    def __call__(self, url, query):
        with self.lock:
            self.calls.append((url, dict(query)))
        if url in self.fail_urls:
            raise HttpRequestError("HTTP status: 503")
        rows = self.rows_by_url.get(url, [])
        if not isinstance(rows, list):
            return rows
        offset = int(query.get("$offset", 0))
        limit = int(query.get("$limit", 1000))
        return [dict(row) for row in rows[offset : offset + limit]]

    def calls_for(self, url):
        return [query for called_url, query in self.calls if called_url == url]


@pytest.fixture
def fake_fetch_cls():
    return FakeFetch


@pytest.fixture
def urls():
    return {
        "registry": REGISTRY_URL,
        "housing": HOUSING_URL,
        "permits": PERMITS_URL,
        "sanitation": SANITATION_URL,
    }


@pytest.fixture
def perry_identity():
    return BuildingIdentity(
        building_id="bbl-1006140044-bin-1011234",
        property_key="1006140044",
        structure_key="1011234",
        normalized_address=NormalizedAddress("68", "PERRY STREET", Borough.MANHATTAN, "10014"),
        residential_units=20,
    )


@pytest.fixture
def make_violation():
    def _make(
        external_id="V1",
        *,
        source=SourceSystem.HOUSING,
        severity=Severity.MEDIUM,
        status=ViolationStatus.OPEN,
        issued_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        fine="0.00",
        balance="0.00",
    ):
        return ViolationRecord(
            source_system=source,
            external_id=external_id,
            category="TEST",
            description="",
            severity=severity,
            status=status,
            issued_at=issued_at,
            fine_amount=Decimal(fine),
            balance_due=Decimal(balance),
        )

    return _make
