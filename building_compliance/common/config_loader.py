"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from building_compliance.common.fs import read_yaml
from building_compliance.common.models import Borough
from building_compliance.common.schema import validate_borough_config, validate_compliance_config


@dataclass(frozen=True)
class ConfigBundle:
    compliance: dict
    zip_boroughs: dict[str, Borough]


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    return _deep_merge(base, overlay)


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ConfigBundle:
    def _overlay(name: str) -> Path | None:
        return (overlay_config_dir / name) if overlay_config_dir is not None else None

    compliance = validate_compliance_config(
        _load_yaml_with_overlay(config_dir / "compliance.yml", _overlay("compliance.yml")),
        allow_unknown=allow_unknown,
    )
    boroughs = validate_borough_config(
        _load_yaml_with_overlay(config_dir / "boroughs.yml", _overlay("boroughs.yml"))
    )
    zip_boroughs = {str(prefix): Borough(name) for prefix, name in boroughs["zip_prefixes"].items()}
    return ConfigBundle(compliance=compliance, zip_boroughs=zip_boroughs)
