"""Canned registry payloads served in place of live HTTP when demo mode is on."""

from __future__ import annotations

import re
from typing import Any, Mapping

from building_compliance.common.errors import SourceFetchFailed

_EQUALITY_RE = re.compile(r"\b([a-z_]+)='((?:[^']|'')*)'")
_UPPER_IN_RE = re.compile(r"upper\(([a-z_]+)\) in\(((?:'(?:[^']|'')*'(?:, )?)+)\)")
_LITERAL_RE = re.compile(r"'((?:[^']|'')*)'")

DEMO_DATASETS: dict[str, list[dict[str, Any]]] = {
    "kj4p-ruqc": [
        {
            "boroid": "1",
            "block": "99901",
            "lot": "1",
            "housenumber": "100",
            "streetname": "SAMPLE STREET",
            "bin": "1999001",
            "legalclassa": "24",
            "legalclassb": "0",
        },
        {
            "boroid": "3",
            "block": "99902",
            "lot": "7",
            "housenumber": "200",
            "streetname": "EXAMPLE AVE",
            "bin": "3999002",
            "legalclassa": "8",
            "legalclassb": "0",
        },
    ],
    "wvxf-dwi5": [
        {
            "violationid": "DEMO-H-1",
            "bbl": "1999010001",
            "class": "B",
            "currentstatus": "VIOLATION OPEN",
            "novissueddate": "2026-03-02T00:00:00.000",
            "originalcertifybydate": "2026-05-01T00:00:00.000",
            "novdescription": "Demo: repair broken plaster in public hallway",
        },
        {
            "violationid": "DEMO-H-2",
            "bbl": "1999010001",
            "class": "C",
            "currentstatus": "NOV CERTIFIED ON TIME",
            "novissueddate": "2025-11-14T00:00:00.000",
            "novdescription": "Demo: provide smoke detector in apartment",
        },
    ],
    "3h2n-5cm9": [
        {
            "isn_dob_bis_viol": "DEMO-P-1",
            "bin": "3999002",
            "violation_type_code": "E",
            "violation_type": "E-ELEVATOR",
            "violation_category": "V-DOB VIOLATION - ACTIVE",
            "issue_date": "20260115",
            "description": "Demo: annual elevator inspection not filed",
        },
    ],
    "jz4z-kudi": [
        {
            "ticket_number": "DEMO-S-1",
            "issuing_agency": "SANITATION POLICE",
            "violation_location_house": "100",
            "violation_location_street_name": "SAMPLE ST",
            "violation_location_borough": "MANHATTAN",
            "violation_date": "2026-02-20T00:00:00.000",
            "hearing_date": "2026-04-10T00:00:00.000",
            "hearing_result": "DEFAULTED",
            "penalty_imposed": "300",
            "balance_due": "300",
            "charge_1_code": "AS4",
            "charge_1_code_description": "Demo: failure to clean sidewalk",
        },
    ],
}


def _dataset_id(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1]
    return name[: -len(".json")] if name.endswith(".json") else name


def _matches(row: Mapping[str, Any], where: str) -> bool:
    for field, literal in _EQUALITY_RE.findall(where):
        if field not in row:
            continue
        if str(row[field]).strip().upper() != literal.replace("''", "'").upper():
            return False
    for field, literals in _UPPER_IN_RE.findall(where):
        if field not in row:
            continue
        allowed = {literal.replace("''", "'").upper() for literal in _LITERAL_RE.findall(literals)}
        if str(row[field]).strip().upper() not in allowed:
            return False
    return True


class DemoFetcher:
    """Drop-in ``fetch`` capability backed by ``DEMO_DATASETS``.

    Plain ``field='value'`` and ``upper(field) in(...)`` clauses filter rows;
    every other clause is left to the local re-checks the resolver and adapters
    already perform.
    """

    def __init__(self, datasets: Mapping[str, list[dict[str, Any]]] | None = None) -> None:
        self.datasets = datasets if datasets is not None else DEMO_DATASETS

    def __call__(self, url: str, query: Mapping[str, Any]) -> list[dict[str, Any]]:
        dataset = _dataset_id(url)
        if dataset not in self.datasets:
            raise SourceFetchFailed(f"No demo payload for dataset {dataset}")
        where = str(query.get("$where") or "")
        rows = [dict(row) for row in self.datasets[dataset] if _matches(row, where)]
        offset = int(query.get("$offset", 0))
        limit = int(query.get("$limit", len(rows)))
        return rows[offset : offset + limit]
