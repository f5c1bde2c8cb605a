"""Shared fetch, pagination and translation plumbing for upstream registries."""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Mapping

from building_compliance.common.constants import DEFAULT_MAX_RECORDS, DEFAULT_PAGE_SIZE
from building_compliance.common.errors import ComplianceError, SourceFetchFailed
from building_compliance.common.http import FetchFn
from building_compliance.common.logging import default_logger, log_event, log_warning
from building_compliance.common.models import (
    BuildingIdentity,
    SourceResult,
    SourceStatus,
    SourceSystem,
    ViolationRecord,
    ViolationStatus,
)

_WHITESPACE_RE = re.compile(r"\s+")


class MalformedPayloadError(SourceFetchFailed):
    error_code = "MALFORMED_PAYLOAD"


def vocabulary_key(value: object) -> str:
    return _WHITESPACE_RE.sub(" ", str(value or "")).strip().upper()


def lookup_first(row: Mapping[str, Any], candidates: tuple[str, ...]) -> Any | None:
    for key in candidates:
        if key in row and row[key] not in (None, ""):
            return row[key]
    return None


class SourceAdapter:
    """Fetches one registry's rows for a building and translates them.

    Subclasses set ``source_system``, ``status_map`` and ``order_field`` and
    implement ``build_where`` and ``translate``. ``fetch_violations`` never
    raises: failures come back as a FAILED ``SourceResult``.
    """

    source_system: SourceSystem
    status_map: Mapping[str, ViolationStatus] = {}
    order_field: str = ":id"

    def __init__(
        self,
        fetch: FetchFn,
        *,
        url: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_records: int = DEFAULT_MAX_RECORDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.fetch = fetch
        self.url = url
        self.page_size = page_size
        self.max_records = max_records
        self.logger = logger or default_logger()

    @property
    def name(self) -> str:
        return self.source_system.value.lower()

    def build_where(self, identity: BuildingIdentity) -> str | None:
        raise NotImplementedError

    def translate(self, row: Mapping[str, Any], identity: BuildingIdentity) -> ViolationRecord | None:
        raise NotImplementedError

    def accept_row(self, row: Mapping[str, Any], identity: BuildingIdentity) -> bool:
        return True

    def map_status(self, raw_status: object, *, building_id: str | None = None) -> ViolationStatus:
        key = vocabulary_key(raw_status)
        status = self.status_map.get(key)
        if status is not None:
            return status
        log_warning(
            self.logger,
            f"unmapped {self.name} status {key!r}; defaulting to PENDING",
            stage="translate",
            building_id=building_id,
            source=self.name,
            event="UNMAPPED_STATUS",
            status="warn",
        )
        return ViolationStatus.PENDING

    def _query(self, where: str, limit: int, offset: int) -> dict[str, Any]:
        return {
            "$where": where,
            "$order": f"{self.order_field} DESC, :id",
            "$limit": limit,
            "$offset": offset,
        }

    def _fetch_page(self, where: str, limit: int, offset: int) -> list[dict]:
        payload = self.fetch(self.url, self._query(where, limit, offset))
        if isinstance(payload, dict) and "error" in payload:
            raise SourceFetchFailed(f"{self.name} query failed: {payload.get('message') or payload['error']}")
        if not isinstance(payload, list) or not all(isinstance(row, dict) for row in payload):
            raise MalformedPayloadError(f"{self.name} returned a non-list payload")
        return payload

    def fetch_rows(self, where: str) -> tuple[list[dict], bool]:
        """Page through the dataset up to ``max_records``; report truncation."""
        rows: list[dict] = []
        while len(rows) < self.max_records:
            limit = min(self.page_size, self.max_records - len(rows))
            page = self._fetch_page(where, limit, len(rows))
            rows.extend(page)
            if len(page) < limit:
                return rows, False
        probe = self._fetch_page(where, 1, len(rows))
        return rows, bool(probe)

    def fetch_violations(self, identity: BuildingIdentity) -> SourceResult:
        started = time.monotonic()
        try:
            where = self.build_where(identity)
            if where is None:
                log_event(
                    self.logger,
                    f"{self.name} skipped: identity lacks the key this registry is indexed by",
                    stage="fetch",
                    building_id=identity.building_id,
                    source=self.name,
                    event="SOURCE_SKIPPED",
                    status="ok",
                )
                return SourceResult(source_system=self.source_system, status=SourceStatus.OK)

            rows, truncated = self.fetch_rows(where)
            violations = self._translate_rows(rows, identity)
        except Exception as exc:
            error_code = exc.error_code if isinstance(exc, ComplianceError) else "UNEXPECTED_ERROR"
            log_warning(
                self.logger,
                f"{self.name} fetch failed: {exc}",
                stage="fetch",
                building_id=identity.building_id,
                source=self.name,
                event="SOURCE_FAILED",
                status="error",
                error_code=error_code,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return SourceResult.failed(self.source_system, error_code)

        status = SourceStatus.STALE if truncated else SourceStatus.OK
        log_event(
            self.logger,
            f"{self.name} fetched",
            stage="fetch",
            building_id=identity.building_id,
            source=self.name,
            event="SOURCE_FETCHED",
            status=status.value.lower(),
            duration_ms=int((time.monotonic() - started) * 1000),
            rows_in=len(rows),
            rows_out=len(violations),
        )
        return SourceResult(
            source_system=self.source_system,
            status=status,
            violations=tuple(violations),
            truncated=truncated,
        )

    def _translate_rows(self, rows: list[dict], identity: BuildingIdentity) -> list[ViolationRecord]:
        violations: list[ViolationRecord] = []
        rejected = 0
        for row in rows:
            if not self.accept_row(row, identity):
                continue
            try:
                record = self.translate(row, identity)
            except (KeyError, TypeError, ValueError):
                record = None
            if record is None:
                rejected += 1
                continue
            violations.append(record)
        if rejected:
            log_warning(
                self.logger,
                f"{self.name} rejected {rejected} rows without an id or issue date",
                stage="translate",
                building_id=identity.building_id,
                source=self.name,
                event="ROWS_REJECTED",
                status="warn",
                rows_in=len(rows),
                rows_out=len(violations),
            )
        return violations
