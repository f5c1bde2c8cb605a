"""Composition root: resolve, fan out to adapters, reconcile, cache and roll up."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from building_compliance.common.config_loader import ConfigBundle
from building_compliance.common.errors import ComplianceError, UnresolvedAddressError
from building_compliance.common.http import FetchFn, HttpClient, SocrataFetcher
from building_compliance.common.logging import default_logger, log_event, log_warning
from building_compliance.common.models import (
    Borough,
    BuildingIdentity,
    ComplianceSnapshot,
    PortfolioSummary,
    SourceResult,
)
from building_compliance.common.store import JsonStore
from building_compliance.common.time_utils import to_iso
from building_compliance.identity.address import normalize
from building_compliance.identity.resolver import IdentifierResolver
from building_compliance.pipeline import dashboard
from building_compliance.pipeline.cache import AggregationCache
from building_compliance.pipeline.reconcile import reconcile
from building_compliance.pipeline.scoring import DEFAULT_RULES, ScoringRules
from building_compliance.sources.base import SourceAdapter
from building_compliance.sources.demo import DemoFetcher
from building_compliance.sources.housing import HousingAdapter
from building_compliance.sources.permits import PermitsAdapter
from building_compliance.sources.sanitation import SanitationAdapter

SOURCE_TIMEOUT = "SOURCE_TIMEOUT"


@dataclass(frozen=True)
class PortfolioRefresh:
    snapshots: dict[str, ComplianceSnapshot] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    skipped: tuple[str, ...] = ()

    @property
    def cancelled(self) -> bool:
        return bool(self.skipped)

    @property
    def complete(self) -> bool:
        return not self.errors and not self.skipped


class ComplianceService:
    def __init__(
        self,
        resolver: IdentifierResolver,
        adapters: Sequence[SourceAdapter],
        cache: AggregationCache,
        *,
        scoring_rules: ScoringRules = DEFAULT_RULES,
        adapter_timeout: float = 20.0,
        max_workers: int = 4,
        zip_boroughs: Mapping[str, Borough] | None = None,
        score_history: JsonStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.resolver = resolver
        self.adapters = list(adapters)
        self.cache = cache
        self.scoring_rules = scoring_rules
        self.adapter_timeout = adapter_timeout
        self.max_workers = max_workers
        self.zip_boroughs = dict(zip_boroughs or {})
        self.score_history = score_history if score_history is not None else JsonStore()
        self.logger = logger or default_logger()

    def resolve_address(
        self,
        raw_address: str,
        *,
        borough: Borough | str | None = None,
        unit_count: int | None = None,
        property_key_override: str | None = None,
    ) -> BuildingIdentity:
        address = normalize(raw_address, zip_boroughs=self.zip_boroughs, borough=borough)
        return self.resolver.resolve(address, unit_count=unit_count, property_key_override=property_key_override)

    def check_address(
        self,
        raw_address: str,
        *,
        borough: Borough | str | None = None,
        unit_count: int | None = None,
        property_key_override: str | None = None,
    ) -> ComplianceSnapshot:
        identity = self.resolve_address(
            raw_address,
            borough=borough,
            unit_count=unit_count,
            property_key_override=property_key_override,
        )
        return self.snapshot_for(identity)

    def snapshot_for(self, identity: BuildingIdentity, *, force: bool = False) -> ComplianceSnapshot:
        return self.cache.get_or_fetch(identity.building_id, lambda: self.aggregate(identity), force=force)

    def aggregate(self, identity: BuildingIdentity) -> ComplianceSnapshot | None:
        """Query every adapter in parallel and reconcile what comes back.

        Adapters all start together, so one shared deadline gives each its own
        ``adapter_timeout``. A late adapter is recorded as FAILED and left to
        finish in the background.
        """
        if not self.adapters:
            return None
        started = time.monotonic()
        pool = ThreadPoolExecutor(max_workers=len(self.adapters), thread_name_prefix="adapter")
        try:
            futures = [(adapter, pool.submit(adapter.fetch_violations, identity)) for adapter in self.adapters]
            deadline = started + self.adapter_timeout
            results: list[SourceResult] = []
            for adapter, future in futures:
                try:
                    results.append(future.result(timeout=max(0.0, deadline - time.monotonic())))
                except FutureTimeoutError:
                    future.cancel()
                    log_warning(
                        self.logger,
                        f"{adapter.name} exceeded {self.adapter_timeout}s",
                        stage="aggregate",
                        building_id=identity.building_id,
                        source=adapter.name,
                        event="SOURCE_TIMEOUT",
                        status="error",
                        error_code=SOURCE_TIMEOUT,
                    )
                    results.append(SourceResult.failed(adapter.source_system, SOURCE_TIMEOUT))
        finally:
            pool.shutdown(wait=False)

        snapshot = reconcile(
            identity.building_id,
            results,
            rules=self.scoring_rules,
            expected_sources=[adapter.source_system for adapter in self.adapters],
        )
        log_event(
            self.logger,
            "building aggregated" if snapshot is not None else "every source failed",
            stage="aggregate",
            building_id=identity.building_id,
            event="AGGREGATED" if snapshot is not None else "ALL_SOURCES_FAILED",
            status="ok" if snapshot is not None and not snapshot.stale else "stale",
            duration_ms=int((time.monotonic() - started) * 1000),
            rows_out=len(snapshot.violations) if snapshot is not None else 0,
        )
        return snapshot

    def invalidate(self, building_id: str) -> bool:
        removed = self.cache.invalidate(building_id)
        log_event(
            self.logger,
            "snapshot invalidated" if removed else "nothing cached to invalidate",
            stage="admin",
            building_id=building_id,
            event="INVALIDATE",
            status="ok",
        )
        return removed

    def identity_for(self, building_id: str) -> BuildingIdentity:
        identity = self.resolver.find(building_id)
        if identity is None:
            raise UnresolvedAddressError(f"No resolved building with id {building_id}")
        return identity

    def force_refresh(self, building: BuildingIdentity | str, *, reverify: bool = False) -> ComplianceSnapshot:
        identity = self.identity_for(building) if isinstance(building, str) else building
        if reverify:
            identity = self.resolver.verify(identity)
        log_event(
            self.logger,
            "forced refresh",
            stage="admin",
            building_id=identity.building_id,
            event="FORCE_REFRESH",
            status="ok",
        )
        return self.snapshot_for(identity, force=True)

    def refresh_portfolio(
        self,
        identities: Iterable[BuildingIdentity],
        *,
        cancel_event: threading.Event | None = None,
    ) -> PortfolioRefresh:
        """Refresh many buildings on a bounded pool.

        Setting ``cancel_event`` stops buildings that have not started yet;
        buildings already fetching run to completion and land in the cache.
        """
        cancel_event = cancel_event or threading.Event()
        unique = {identity.building_id: identity for identity in identities}

        def _refresh_one(identity: BuildingIdentity) -> ComplianceSnapshot | None:
            if cancel_event.is_set():
                return None
            return self.snapshot_for(identity)

        snapshots: dict[str, ComplianceSnapshot] = {}
        errors: dict[str, str] = {}
        skipped: list[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="portfolio") as pool:
            futures = [(building_id, pool.submit(_refresh_one, identity)) for building_id, identity in unique.items()]
            for building_id, future in futures:
                try:
                    snapshot = future.result()
                except Exception as exc:
                    error_code = exc.error_code if isinstance(exc, ComplianceError) else "UNEXPECTED_ERROR"
                    errors[building_id] = error_code
                    log_warning(
                        self.logger,
                        f"refresh failed: {exc}",
                        stage="portfolio",
                        building_id=building_id,
                        event="BUILDING_FAILED",
                        status="error",
                        error_code=error_code,
                    )
                    continue
                if snapshot is None:
                    skipped.append(building_id)
                else:
                    snapshots[building_id] = snapshot

        log_event(
            self.logger,
            "portfolio refreshed",
            stage="portfolio",
            event="PORTFOLIO_REFRESHED",
            status="cancelled" if skipped else ("partial" if errors else "ok"),
            rows_in=len(unique),
            rows_out=len(snapshots),
        )
        return PortfolioRefresh(snapshots=snapshots, errors=errors, skipped=tuple(sorted(skipped)))

    def previous_scores(self) -> dict[str, int]:
        return {key: int(payload["score"]) for key, payload in self.score_history.items()}

    def summarize(self, snapshots: Iterable[ComplianceSnapshot] | None = None) -> PortfolioSummary:
        """Roll up snapshots against the scores recorded by the previous summary."""
        current = list(snapshots) if snapshots is not None else self.cache.snapshots()
        summary = dashboard.summarize(
            current,
            previous_scores=self.previous_scores(),
            critical_threshold=self.scoring_rules.critical_threshold,
            trend_delta=self.scoring_rules.trend_delta,
        )
        recorded_at = to_iso(summary.generated_at)
        for snapshot in current:
            self.score_history.put(snapshot.building_id, {"score": snapshot.score, "recorded_at": recorded_at})
        return summary


def fetch_capability(bundle: ConfigBundle, client: HttpClient) -> FetchFn:
    if bundle.compliance.get("demo_mode"):
        return DemoFetcher()
    return SocrataFetcher(client)


def build_adapters(compliance: dict, fetch: FetchFn, logger: logging.Logger) -> list[SourceAdapter]:
    sources = compliance["sources"]
    adapters: list[SourceAdapter] = []
    for key, adapter_cls in (("housing", HousingAdapter), ("permits", PermitsAdapter)):
        cfg = sources[key]
        if cfg.get("enabled", True):
            adapters.append(
                adapter_cls(
                    fetch,
                    url=cfg["url"],
                    page_size=int(cfg["page_size"]),
                    max_records=int(cfg["max_records"]),
                    logger=logger,
                )
            )
    sanitation = sources["sanitation"]
    if sanitation.get("enabled", True):
        adapters.append(
            SanitationAdapter(
                fetch,
                url=sanitation["url"],
                page_size=int(sanitation["page_size"]),
                max_records=int(sanitation["max_records"]),
                high_severity_fine=Decimal(str(sanitation["high_severity_fine"])),
                logger=logger,
            )
        )
    return adapters


def build_service(
    bundle: ConfigBundle,
    fetch: FetchFn,
    *,
    state_dir: Path | None = None,
    logger: logging.Logger | None = None,
) -> ComplianceService:
    """Wire a service from configuration; ``state_dir=None`` keeps all state in memory."""
    logger = logger or default_logger()
    cfg = bundle.compliance

    def _store_path(name: str) -> Path | None:
        return state_dir / name if state_dir is not None else None

    identity_path = _store_path("identities.json")
    history_path = _store_path("scores.json")
    resolver = IdentifierResolver(
        fetch,
        registry_url=cfg["registry"]["url"],
        store=JsonStore(identity_path) if identity_path is not None else None,
        logger=logger,
    )
    cache = AggregationCache(
        ttl_seconds=float(cfg["cache"]["ttl_seconds"]),
        stale_while_revalidate=bool(cfg["cache"]["stale_while_revalidate"]),
        store_path=_store_path("snapshots.json"),
        logger=logger,
    )
    return ComplianceService(
        resolver,
        build_adapters(cfg, fetch, logger),
        cache,
        scoring_rules=ScoringRules.from_config(cfg["scoring"]),
        adapter_timeout=float(cfg["concurrency"]["adapter_timeout_seconds"]),
        max_workers=int(cfg["concurrency"]["max_workers"]),
        zip_boroughs=bundle.zip_boroughs,
        score_history=JsonStore(history_path) if history_path is not None else None,
        logger=logger,
    )
