"""Config-driven compliance scoring."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from building_compliance.common.models import Grade, Severity, ViolationRecord, ViolationStatus

GradeBands = tuple[tuple[int, Grade], ...]
StatusBands = tuple[tuple[int, str], ...]

DEFAULT_GRADE_BANDS: GradeBands = (
    (95, Grade.A_PLUS),
    (90, Grade.A),
    (85, Grade.A_MINUS),
    (80, Grade.B_PLUS),
    (75, Grade.B),
    (70, Grade.B_MINUS),
    (65, Grade.C_PLUS),
    (60, Grade.C),
    (50, Grade.D),
    (0, Grade.F),
)
DEFAULT_STATUS_BANDS: StatusBands = (
    (90, "excellent"),
    (70, "good"),
    (50, "warning"),
    (0, "critical"),
)


@dataclass(frozen=True)
class ScoringRules:
    open_penalty: Mapping[Severity, int]
    pending_penalty: Mapping[Severity, int]
    defaulted_penalty: int
    grade_bands: GradeBands = DEFAULT_GRADE_BANDS
    status_bands: StatusBands = DEFAULT_STATUS_BANDS
    critical_threshold: int = 70
    trend_delta: int = 5

    @classmethod
    def from_config(cls, cfg: dict) -> "ScoringRules":
        return cls(
            open_penalty={Severity(key): int(value) for key, value in cfg["open_penalty"].items()},
            pending_penalty={Severity(key): int(value) for key, value in cfg["pending_penalty"].items()},
            defaulted_penalty=int(cfg["defaulted_penalty"]),
            grade_bands=tuple((int(band["min"]), Grade(band["grade"])) for band in cfg["grade_bands"]),
            status_bands=tuple((int(band["min"]), str(band["band"])) for band in cfg["status_bands"]),
            critical_threshold=int(cfg["critical_threshold"]),
            trend_delta=int(cfg["trend_delta"]),
        )


DEFAULT_RULES = ScoringRules(
    open_penalty={Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 4, Severity.CRITICAL: 8},
    pending_penalty={Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 4},
    defaulted_penalty=10,
)


@dataclass(frozen=True)
class ScoreResult:
    score: int
    grade: Grade
    outstanding_balance: Decimal
    status_band: str
    deductions: int


def clamp(value: int, *, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


def _band_lookup(score: int, bands: tuple[tuple[int, object], ...]):
    for minimum, label in bands:
        if score >= minimum:
            return label
    return bands[-1][1]


def grade_for(score: int, bands: GradeBands = DEFAULT_GRADE_BANDS) -> Grade:
    return _band_lookup(score, bands)


def status_band_for(score: int, bands: StatusBands = DEFAULT_STATUS_BANDS) -> str:
    return _band_lookup(score, bands)


def penalty_for(violation: ViolationRecord, rules: ScoringRules = DEFAULT_RULES) -> int:
    if violation.status is ViolationStatus.OPEN:
        return rules.open_penalty[violation.severity]
    if violation.status is ViolationStatus.PENDING:
        return rules.pending_penalty[violation.severity]
    if violation.status is ViolationStatus.DEFAULTED:
        return rules.open_penalty[violation.severity] + rules.defaulted_penalty
    return 0


def outstanding_balance(violations: Iterable[ViolationRecord]) -> Decimal:
    total = Decimal("0.00")
    for violation in violations:
        if violation.status is not ViolationStatus.CLOSED:
            total += violation.balance_due
    return total


def score_violations(violations: Iterable[ViolationRecord], rules: ScoringRules = DEFAULT_RULES) -> ScoreResult:
    items = list(violations)
    deductions = sum(penalty_for(violation, rules) for violation in items)
    final_score = clamp(100 - deductions, minimum=0, maximum=100)
    return ScoreResult(
        score=final_score,
        grade=grade_for(final_score, rules.grade_bands),
        outstanding_balance=outstanding_balance(items),
        status_band=status_band_for(final_score, rules.status_bands),
        deductions=deductions,
    )


def score(violations: Iterable[ViolationRecord], rules: ScoringRules = DEFAULT_RULES) -> tuple[int, Grade]:
    result = score_violations(violations, rules)
    return result.score, result.grade
