"""Housing maintenance code violations (HPD), keyed by BBL."""

from __future__ import annotations

from typing import Any, Mapping

from building_compliance.common.models import (
    BuildingIdentity,
    Severity,
    SourceSystem,
    ViolationRecord,
    ViolationStatus,
)
from building_compliance.common.time_utils import parse_upstream_datetime
from building_compliance.common.http import soql_literal
from building_compliance.sources.base import SourceAdapter, lookup_first, vocabulary_key

OPEN = ViolationStatus.OPEN
PENDING = ViolationStatus.PENDING
CLOSED = ViolationStatus.CLOSED

HOUSING_STATUS_MAP: dict[str, ViolationStatus] = {
    "OPEN": OPEN,
    "VIOLATION OPEN": OPEN,
    "VIOLATION REOPEN": OPEN,
    "NOV SENT OUT": OPEN,
    "INFO NOV SENT OUT": OPEN,
    "NOT COMPLIED WITH": OPEN,
    "INVALID CERTIFICATION": OPEN,
    "DEFECT LETTER ISSUED": OPEN,
    "CIV14 MAILED": OPEN,
    "CERTIFICATION POSTPONMENT DENIED": OPEN,
    "FIRST NO ACCESS TO RE- INSPECT VIOLATION": OPEN,
    "FIRST NO ACCESS TO RE-INSPECT VIOLATION": OPEN,
    "SECOND NO ACCESS TO RE-INSPECT VIOLATION": OPEN,
    "PENDING": PENDING,
    "IN PROGRESS": PENDING,
    "CERTIFICATION POSTPONMENT GRANTED": PENDING,
    "VIOLATION WILL BE REINSPECTED": PENDING,
    "LEAD DOCS SUBMITTED, ACCEPTABLE": PENDING,
    "NOV CERTIFIED ON TIME": CLOSED,
    "NOV CERTIFIED LATE": CLOSED,
    "VIOLATION CLOSED": CLOSED,
    "VIOLATION DISMISSED": CLOSED,
    "COMPLIED IN ACCESS AREA": CLOSED,
    "CLOSE": CLOSED,
    "CLOSED": CLOSED,
    "RESOLVED": CLOSED,
}

CLASS_SEVERITY = {
    "A": Severity.CRITICAL,
    "B": Severity.HIGH,
    "C": Severity.MEDIUM,
}


class HousingAdapter(SourceAdapter):
    source_system = SourceSystem.HOUSING
    status_map = HOUSING_STATUS_MAP
    order_field = "inspectiondate"

    def build_where(self, identity: BuildingIdentity) -> str | None:
        if not identity.property_key:
            return None
        return f"bbl={soql_literal(identity.property_key)}"

    def translate(self, row: Mapping[str, Any], identity: BuildingIdentity) -> ViolationRecord | None:
        external_id = str(row.get("violationid") or "").strip()
        issued_at = parse_upstream_datetime(lookup_first(row, ("novissueddate", "inspectiondate")))
        if not external_id or issued_at is None:
            return None

        violation_class = vocabulary_key(row.get("class") or row.get("violationclass"))
        raw_status = lookup_first(row, ("currentstatus", "violationstatus"))
        return ViolationRecord(
            source_system=self.source_system,
            external_id=external_id,
            category=f"CLASS {violation_class}" if violation_class else "UNCLASSIFIED",
            description=str(row.get("novdescription") or "").strip(),
            severity=CLASS_SEVERITY.get(violation_class, Severity.LOW),
            status=self.map_status(raw_status, building_id=identity.building_id),
            issued_at=issued_at,
            due_at=parse_upstream_datetime(row.get("originalcertifybydate")),
        )
