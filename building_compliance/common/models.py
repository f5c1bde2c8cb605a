"""Data models shared across the compliance pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from building_compliance.common.time_utils import from_iso, to_iso

CENTS = Decimal("0.01")


class Borough(str, Enum):
    MANHATTAN = "MANHATTAN"
    BRONX = "BRONX"
    BROOKLYN = "BROOKLYN"
    QUEENS = "QUEENS"
    STATEN_ISLAND = "STATEN ISLAND"

    @property
    def code(self) -> int:
        return _BOROUGH_CODES[self]

    @classmethod
    def from_code(cls, code: object) -> "Borough":
        try:
            return _BOROUGHS_BY_CODE[int(str(code).strip())]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown borough code: {code!r}") from exc


_BOROUGH_CODES = {
    Borough.MANHATTAN: 1,
    Borough.BRONX: 2,
    Borough.BROOKLYN: 3,
    Borough.QUEENS: 4,
    Borough.STATEN_ISLAND: 5,
}
_BOROUGHS_BY_CODE = {code: borough for borough, code in _BOROUGH_CODES.items()}


class SourceSystem(str, Enum):
    HOUSING = "HOUSING"
    PERMITS = "PERMITS"
    SANITATION = "SANITATION"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ViolationStatus(str, Enum):
    OPEN = "OPEN"
    PENDING = "PENDING"
    CLOSED = "CLOSED"
    DEFAULTED = "DEFAULTED"


class SourceStatus(str, Enum):
    OK = "OK"
    STALE = "STALE"
    FAILED = "FAILED"


class Grade(str, Enum):
    A_PLUS = "A+"
    A = "A"
    A_MINUS = "A-"
    B_PLUS = "B+"
    B = "B"
    B_MINUS = "B-"
    C_PLUS = "C+"
    C = "C"
    D = "D"
    F = "F"


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


def to_money(value: object) -> Decimal:
    """Coerce an upstream amount to a non-negative two-place Decimal."""
    if value is None or value == "":
        return Decimal("0.00")
    try:
        amount = Decimal(str(value).replace("$", "").replace(",", "").strip())
    except InvalidOperation:
        return Decimal("0.00")
    if not amount.is_finite() or amount < 0:
        return Decimal("0.00")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class NormalizedAddress:
    house_number: str
    street_name: str
    borough: Borough
    zip_code: str | None = None

    @property
    def key(self) -> str:
        return f"{self.house_number}|{self.street_name}|{self.borough.value}"

    def display(self) -> str:
        return f"{self.house_number} {self.street_name}, {self.borough.value}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "house_number": self.house_number,
            "street_name": self.street_name,
            "borough": self.borough.value,
            "zip_code": self.zip_code,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "NormalizedAddress":
        return cls(
            house_number=payload["house_number"],
            street_name=payload["street_name"],
            borough=Borough(payload["borough"]),
            zip_code=payload.get("zip_code"),
        )


@dataclass(frozen=True)
class BuildingIdentity:
    building_id: str
    property_key: str
    structure_key: str | None
    normalized_address: NormalizedAddress
    residential_units: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "building_id": self.building_id,
            "property_key": self.property_key,
            "structure_key": self.structure_key,
            "normalized_address": self.normalized_address.to_dict(),
            "residential_units": self.residential_units,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BuildingIdentity":
        return cls(
            building_id=payload["building_id"],
            property_key=payload["property_key"],
            structure_key=payload.get("structure_key"),
            normalized_address=NormalizedAddress.from_dict(payload["normalized_address"]),
            residential_units=payload.get("residential_units"),
        )


@dataclass(frozen=True)
class ViolationRecord:
    source_system: SourceSystem
    external_id: str
    category: str
    description: str
    severity: Severity
    status: ViolationStatus
    issued_at: datetime
    due_at: datetime | None = None
    fine_amount: Decimal = Decimal("0.00")
    balance_due: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValueError("external_id must be non-empty")
        if self.fine_amount < 0 or self.balance_due < 0:
            raise ValueError(f"negative amount on {self.source_system.value}:{self.external_id}")
        if self.balance_due > self.fine_amount:
            raise ValueError(
                f"balance_due {self.balance_due} exceeds fine_amount {self.fine_amount} "
                f"on {self.source_system.value}:{self.external_id}"
            )

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.source_system.value, self.external_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_system": self.source_system.value,
            "external_id": self.external_id,
            "category": self.category,
            "description": self.description,
            "severity": self.severity.value,
            "status": self.status.value,
            "issued_at": to_iso(self.issued_at),
            "due_at": to_iso(self.due_at),
            "fine_amount": str(self.fine_amount),
            "balance_due": str(self.balance_due),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ViolationRecord":
        return cls(
            source_system=SourceSystem(payload["source_system"]),
            external_id=payload["external_id"],
            category=payload.get("category", ""),
            description=payload.get("description", ""),
            severity=Severity(payload["severity"]),
            status=ViolationStatus(payload["status"]),
            issued_at=from_iso(payload["issued_at"]),
            due_at=from_iso(payload.get("due_at")),
            fine_amount=Decimal(payload.get("fine_amount", "0.00")),
            balance_due=Decimal(payload.get("balance_due", "0.00")),
        )


@dataclass(frozen=True)
class SourceResult:
    source_system: SourceSystem
    status: SourceStatus
    violations: tuple[ViolationRecord, ...] = ()
    error_code: str | None = None
    truncated: bool = False

    @classmethod
    def failed(cls, source_system: SourceSystem, error_code: str) -> "SourceResult":
        return cls(source_system=source_system, status=SourceStatus.FAILED, error_code=error_code)


@dataclass(frozen=True)
class ComplianceSnapshot:
    building_id: str
    fetched_at: datetime
    per_source_status: Mapping[SourceSystem, SourceStatus]
    violations: tuple[ViolationRecord, ...]
    score: int
    grade: Grade
    outstanding_balance: Decimal = Decimal("0.00")
    stale: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "per_source_status", MappingProxyType(dict(self.per_source_status)))
        if not 0 <= self.score <= 100:
            raise ValueError(f"score out of range: {self.score}")

    @property
    def has_defaulted(self) -> bool:
        return any(v.status is ViolationStatus.DEFAULTED for v in self.violations)

    @property
    def staleness_note(self) -> str | None:
        if not self.stale:
            return None
        return f"data as of {to_iso(self.fetched_at)}, one or more sources unavailable"

    def as_stale(self) -> "ComplianceSnapshot":
        if self.stale:
            return self
        return replace(self, stale=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "building_id": self.building_id,
            "fetched_at": to_iso(self.fetched_at),
            "per_source_status": {
                source.value: status.value
                for source, status in sorted(self.per_source_status.items(), key=lambda item: item[0].value)
            },
            "violations": [v.to_dict() for v in self.violations],
            "score": self.score,
            "grade": self.grade.value,
            "outstanding_balance": str(self.outstanding_balance),
            "stale": self.stale,
            "staleness_note": self.staleness_note,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ComplianceSnapshot":
        return cls(
            building_id=payload["building_id"],
            fetched_at=from_iso(payload["fetched_at"]),
            per_source_status={
                SourceSystem(source): SourceStatus(status)
                for source, status in payload.get("per_source_status", {}).items()
            },
            violations=tuple(ViolationRecord.from_dict(v) for v in payload.get("violations", [])),
            score=int(payload["score"]),
            grade=Grade(payload["grade"]),
            outstanding_balance=Decimal(payload.get("outstanding_balance", "0.00")),
            stale=bool(payload.get("stale", False)),
        )


@dataclass(frozen=True)
class PortfolioAlert:
    building_id: str
    level: str
    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "building_id": self.building_id,
            "level": self.level,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class PortfolioSummary:
    generated_at: datetime
    total_buildings: int
    average_score: Decimal
    critical_building_ids: frozenset[str]
    total_outstanding_balance: Decimal
    stale_building_ids: frozenset[str] = frozenset()
    trends: dict[str, Trend] = field(default_factory=dict)
    alerts: tuple[PortfolioAlert, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": to_iso(self.generated_at),
            "total_buildings": self.total_buildings,
            "average_score": str(self.average_score),
            "critical_building_ids": sorted(self.critical_building_ids),
            "total_outstanding_balance": str(self.total_outstanding_balance),
            "stale_building_ids": sorted(self.stale_building_ids),
            "trends": {key: self.trends[key].value for key in sorted(self.trends)},
            "alerts": [alert.to_dict() for alert in self.alerts],
        }
