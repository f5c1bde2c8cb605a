"""Run and building identifier helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def generate_run_id() -> str:
    now = datetime.now(tz=timezone.utc)
    return now.strftime("run-%Y%m%dT%H%M%S%fZ")


def building_id_for(property_key: str, structure_key: str | None) -> str:
    if structure_key:
        return f"bbl-{property_key}-bin-{structure_key}"
    return f"bbl-{property_key}"
