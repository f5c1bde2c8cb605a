"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from building_compliance.common.errors import ConfigError
from building_compliance.common.models import Borough, Grade, Severity, SourceSystem

SOURCE_KEYS = {source.value.lower() for source in SourceSystem}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_severity_table(table: dict, ctx: str) -> None:
    _assert_required_keys(table, {severity.value for severity in Severity}, ctx)
    for key, value in table.items():
        if not isinstance(value, int) or value < 0:
            raise ConfigError(f"{ctx}.{key} must be a non-negative integer")


def _assert_descending_bands(bands: list, label_key: str, ctx: str) -> None:
    if not isinstance(bands, list) or not bands:
        raise ConfigError(f"{ctx} must be a non-empty list")
    previous = None
    for idx, band in enumerate(bands):
        _assert_required_keys(band, {"min", label_key}, f"{ctx}[{idx}]")
        if previous is not None and band["min"] >= previous:
            raise ConfigError(f"{ctx} thresholds must be strictly descending")
        previous = band["min"]
    if bands[-1]["min"] != 0:
        raise ConfigError(f"{ctx} must end with a band at min 0")


def validate_compliance_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    top_required = {"registry", "sources", "cache", "concurrency", "scoring", "demo_mode"}
    _assert_required_keys(cfg, top_required, "compliance config")
    _assert_no_unknown_keys(cfg, top_required, "compliance config", allow_unknown)

    _assert_required_keys(cfg["registry"], {"url"}, "registry")

    _assert_required_keys(cfg["sources"], SOURCE_KEYS, "sources")
    _assert_no_unknown_keys(cfg["sources"], SOURCE_KEYS, "sources", allow_unknown)
    for name in sorted(SOURCE_KEYS):
        source = cfg["sources"][name]
        _assert_required_keys(source, {"enabled", "url", "page_size", "max_records"}, f"sources.{name}")
        if int(source["page_size"]) <= 0 or int(source["max_records"]) <= 0:
            raise ConfigError(f"sources.{name} page_size and max_records must be positive")
    _assert_required_keys(cfg["sources"]["sanitation"], {"high_severity_fine"}, "sources.sanitation")

    _assert_required_keys(cfg["cache"], {"ttl_seconds", "stale_while_revalidate"}, "cache")
    if int(cfg["cache"]["ttl_seconds"]) <= 0:
        raise ConfigError("cache.ttl_seconds must be positive")
    _assert_required_keys(cfg["concurrency"], {"adapter_timeout_seconds", "max_workers"}, "concurrency")
    if int(cfg["concurrency"]["max_workers"]) <= 0:
        raise ConfigError("concurrency.max_workers must be positive")

    validate_scoring_config(cfg["scoring"])
    if not isinstance(cfg["demo_mode"], bool):
        raise ConfigError("demo_mode must be a boolean")
    return cfg


def validate_scoring_config(cfg: dict) -> dict:
    _assert_required_keys(
        cfg,
        {
            "open_penalty",
            "pending_penalty",
            "defaulted_penalty",
            "grade_bands",
            "status_bands",
            "critical_threshold",
            "trend_delta",
        },
        "scoring",
    )
    _assert_severity_table(cfg["open_penalty"], "scoring.open_penalty")
    _assert_severity_table(cfg["pending_penalty"], "scoring.pending_penalty")
    _assert_descending_bands(cfg["grade_bands"], "grade", "scoring.grade_bands")
    _assert_descending_bands(cfg["status_bands"], "band", "scoring.status_bands")

    known_grades = {grade.value for grade in Grade}
    for band in cfg["grade_bands"]:
        if band["grade"] not in known_grades:
            raise ConfigError(f"Unknown grade in scoring.grade_bands: {band['grade']}")
    return cfg


def validate_borough_config(cfg: dict) -> dict:
    _assert_required_keys(cfg, {"zip_prefixes"}, "boroughs")
    known = {borough.value for borough in Borough}
    for prefix, borough in cfg["zip_prefixes"].items():
        if not str(prefix).isdigit():
            raise ConfigError(f"ZIP prefix must be numeric: {prefix}")
        if borough not in known:
            raise ConfigError(f"Unknown borough for ZIP prefix {prefix}: {borough}")
    return cfg
