"""Buildings department violations (DOB), keyed by BIN."""

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
from building_compliance.sources.base import SourceAdapter, vocabulary_key

PERMITS_STATUS_MAP: dict[str, ViolationStatus] = {
    "V-DOB VIOLATION - ACTIVE": ViolationStatus.OPEN,
    "V*-DOB VIOLATION - ACTIVE": ViolationStatus.OPEN,
    "V-DOB VIOLATION - RESOLVED": ViolationStatus.CLOSED,
    "V*-DOB VIOLATION - RESOLVED": ViolationStatus.CLOSED,
    "V-DOB VIOLATION - DISMISSED": ViolationStatus.CLOSED,
    "V*-DOB VIOLATION - DISMISSED": ViolationStatus.CLOSED,
    "ACTIVE": ViolationStatus.OPEN,
    "RESOLVED": ViolationStatus.CLOSED,
    "DISMISSED": ViolationStatus.CLOSED,
}

TYPE_SEVERITY = {
    "IMEGNCY": Severity.CRITICAL,
    "UB": Severity.CRITICAL,
    "C": Severity.HIGH,
    "HBLVIO": Severity.HIGH,
    "LBLVIO": Severity.HIGH,
    "LL1080": Severity.HIGH,
    "E": Severity.MEDIUM,
    "EARCX": Severity.MEDIUM,
    "P": Severity.MEDIUM,
    "Z": Severity.MEDIUM,
    "ACC1": Severity.MEDIUM,
    "LANDMK": Severity.MEDIUM,
}


class PermitsAdapter(SourceAdapter):
    source_system = SourceSystem.PERMITS
    status_map = PERMITS_STATUS_MAP
    order_field = "issue_date"

    def build_where(self, identity: BuildingIdentity) -> str | None:
        if not identity.structure_key:
            return None
        return f"bin={soql_literal(identity.structure_key)}"

    def translate(self, row: Mapping[str, Any], identity: BuildingIdentity) -> ViolationRecord | None:
        external_id = str(row.get("isn_dob_bis_viol") or row.get("number") or "").strip()
        issued_at = parse_upstream_datetime(row.get("issue_date"))
        if not external_id or issued_at is None:
            return None

        violation_type = str(row.get("violation_type") or "").strip()
        type_code = vocabulary_key(row.get("violation_type_code") or violation_type.split("-")[0])
        return ViolationRecord(
            source_system=self.source_system,
            external_id=external_id,
            category=violation_type or type_code or "DOB VIOLATION",
            description=str(row.get("description") or violation_type).strip(),
            severity=TYPE_SEVERITY.get(type_code, Severity.LOW),
            status=self.map_status(row.get("violation_category"), building_id=identity.building_id),
            issued_at=issued_at,
        )
