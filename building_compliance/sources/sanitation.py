"""Sanitation enforcement summonses from OATH hearings, keyed by location."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

from building_compliance.common.http import FetchFn, soql_literal
from building_compliance.common.models import (
    BuildingIdentity,
    Severity,
    SourceSystem,
    ViolationRecord,
    ViolationStatus,
    to_money,
)
from building_compliance.common.time_utils import parse_upstream_datetime
from building_compliance.identity.address import normalize_street, street_variants, tokenize
from building_compliance.sources.base import SourceAdapter, lookup_first, vocabulary_key

# Every spelling OATH uses for the sanitation department. Matching is exact:
# a prefix or substring test would pull in other agencies' tickets.
SANITATION_AGENCIES = frozenset(
    {
        "SANITATION OTHERS",
        "SANITATION DEPT",
        "SANITATION POLICE",
        "DSNY - SANITATION ENFORCEMENT AGENTS",
        "DSNY - SANITATION OTHERS",
        "SANITATION PIU",
        "SANITATION RECYCLING",
        "SANITATION VENDOR ENFORCEMENT",
        "SANITATION ENVIRON. POLICE",
        "SANITATION COMMERC.WASTE ZONE",
        "DOS - ENFORCEMENT AGENTS",
    }
)

SANITATION_STATUS_MAP: dict[str, ViolationStatus] = {
    "DEFAULTED": ViolationStatus.DEFAULTED,
    "DEFAULT": ViolationStatus.DEFAULTED,
    "IN VIOLATION": ViolationStatus.OPEN,
    "PENALTY DUE": ViolationStatus.OPEN,
    "DOCKETED": ViolationStatus.PENDING,
    "NEW ISSUANCE": ViolationStatus.PENDING,
    "HEARING PENDING": ViolationStatus.PENDING,
    "HEARING SCHEDULED": ViolationStatus.PENDING,
    "RESCHEDULED": ViolationStatus.PENDING,
    "ADJOURNED": ViolationStatus.PENDING,
    "STIPULATION": ViolationStatus.PENDING,
    "PAID": ViolationStatus.CLOSED,
    "PAID IN FULL": ViolationStatus.CLOSED,
    "DISMISSED": ViolationStatus.CLOSED,
    "CURED": ViolationStatus.CLOSED,
    "WRITTEN OFF": ViolationStatus.CLOSED,
    "ALL TERMS MET": ViolationStatus.CLOSED,
}

# compliance_status is authoritative once a penalty has been settled.
COMPLIANCE_OVERRIDES: dict[str, ViolationStatus] = {
    "ALL TERMS MET": ViolationStatus.CLOSED,
}

DEFAULT_HIGH_SEVERITY_FINE = Decimal("1000")


def is_sanitation_agency(value: object) -> bool:
    return vocabulary_key(value) in SANITATION_AGENCIES


class SanitationAdapter(SourceAdapter):
    source_system = SourceSystem.SANITATION
    status_map = SANITATION_STATUS_MAP
    order_field = "violation_date"

    def __init__(
        self,
        fetch: FetchFn,
        *,
        url: str,
        page_size: int = 200,
        max_records: int = 1000,
        high_severity_fine: Decimal | int | str = DEFAULT_HIGH_SEVERITY_FINE,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(fetch, url=url, page_size=page_size, max_records=max_records, logger=logger)
        self.high_severity_fine = Decimal(str(high_severity_fine))

    def build_where(self, identity: BuildingIdentity) -> str | None:
        address = identity.normalized_address
        agencies = ", ".join(soql_literal(agency) for agency in sorted(SANITATION_AGENCIES))
        streets = ", ".join(soql_literal(street) for street in street_variants(address.street_name))
        return " AND ".join(
            [
                f"issuing_agency in({agencies})",
                f"violation_location_house={soql_literal(address.house_number)}",
                f"upper(violation_location_street_name) in({streets})",
                f"upper(violation_location_borough)={soql_literal(address.borough.value)}",
            ]
        )

    def accept_row(self, row: Mapping[str, Any], identity: BuildingIdentity) -> bool:
        if not is_sanitation_agency(row.get("issuing_agency")):
            return False
        address = identity.normalized_address
        house = vocabulary_key(row.get("violation_location_house"))
        street = normalize_street(tokenize(str(row.get("violation_location_street_name") or "")))
        borough = vocabulary_key(row.get("violation_location_borough"))
        return house == address.house_number and street == address.street_name and borough == address.borough.value

    def resolve_status(self, row: Mapping[str, Any], *, building_id: str | None = None) -> ViolationStatus:
        override = COMPLIANCE_OVERRIDES.get(vocabulary_key(row.get("compliance_status")))
        if override is not None:
            return override
        raw_status = lookup_first(row, ("hearing_result", "hearing_status"))
        return self.map_status(raw_status, building_id=building_id)

    def translate(self, row: Mapping[str, Any], identity: BuildingIdentity) -> ViolationRecord | None:
        external_id = str(row.get("ticket_number") or "").strip()
        issued_at = parse_upstream_datetime(row.get("violation_date"))
        if not external_id or issued_at is None:
            return None

        balance_due = to_money(row.get("balance_due"))
        # Accrued interest can push the balance past the imposed penalty.
        fine_amount = max(to_money(row.get("penalty_imposed")), balance_due)
        charge_code = str(row.get("charge_1_code") or "").strip()

        return ViolationRecord(
            source_system=self.source_system,
            external_id=external_id,
            category=f"SANITATION {charge_code}".strip(),
            description=str(row.get("charge_1_code_description") or "").strip(),
            severity=Severity.HIGH if fine_amount >= self.high_severity_fine else Severity.MEDIUM,
            status=self.resolve_status(row, building_id=identity.building_id),
            issued_at=issued_at,
            due_at=parse_upstream_datetime(row.get("hearing_date")),
            fine_amount=fine_amount,
            balance_due=balance_due,
        )
