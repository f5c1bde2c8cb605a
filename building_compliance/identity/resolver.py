"""Exact-match resolution of normalized addresses to municipal identifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from building_compliance.common.errors import (
    AmbiguousIdentityError,
    IdentityMismatchError,
    SourceFetchFailed,
    UnresolvedAddressError,
)
from building_compliance.common.http import FetchFn, soql_literal
from building_compliance.common.ids import building_id_for
from building_compliance.common.logging import default_logger, log_event, log_warning
from building_compliance.common.models import Borough, BuildingIdentity, NormalizedAddress
from building_compliance.common.store import JsonStore
from building_compliance.identity.address import normalize_street, street_variants, tokenize

REGISTRY_LIMIT = 50


@dataclass(frozen=True)
class RegistryCandidate:
    property_key: str
    structure_key: str | None
    house_number: str
    street_name: str
    borough: Borough
    residential_units: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_key": self.property_key,
            "structure_key": self.structure_key,
            "house_number": self.house_number,
            "street_name": self.street_name,
            "borough": self.borough.value,
            "residential_units": self.residential_units,
        }


def format_bbl(borough_code: object, block: object, lot: object) -> str | None:
    try:
        return f"{int(str(borough_code).strip())}{int(str(block).strip()):05d}{int(str(lot).strip()):04d}"
    except (TypeError, ValueError):
        return None


def _safe_int(value: object) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(float(str(value)))
    except (TypeError, ValueError):
        return None


def parse_candidate(row: dict) -> RegistryCandidate | None:
    try:
        borough = Borough.from_code(row.get("boroid"))
    except ValueError:
        return None
    property_key = format_bbl(borough.code, row.get("block"), row.get("lot"))
    house_number = str(row.get("housenumber") or "").strip().upper()
    street_name = normalize_street(tokenize(str(row.get("streetname") or "")))
    if property_key is None or not house_number or not street_name:
        return None

    units = [_safe_int(row.get("legalclassa")), _safe_int(row.get("legalclassb"))]
    known_units = [u for u in units if u is not None]
    structure_key = str(row.get("bin") or "").strip() or None

    return RegistryCandidate(
        property_key=property_key,
        structure_key=structure_key,
        house_number=house_number,
        street_name=street_name,
        borough=borough,
        residential_units=sum(known_units) if known_units else None,
    )


def matches_exactly(candidate: RegistryCandidate, address: NormalizedAddress) -> bool:
    return (
        candidate.house_number == address.house_number
        and candidate.street_name == address.street_name
        and candidate.borough is address.borough
    )


class IdentifierResolver:
    def __init__(
        self,
        fetch: FetchFn,
        *,
        registry_url: str,
        store: JsonStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.fetch = fetch
        self.registry_url = registry_url
        self.store = store if store is not None else JsonStore()
        self.logger = logger or default_logger()

    def lookup_candidates(self, address: NormalizedAddress) -> list[RegistryCandidate]:
        streets = ", ".join(soql_literal(street) for street in street_variants(address.street_name))
        where = " AND ".join(
            [
                f"housenumber={soql_literal(address.house_number)}",
                f"upper(streetname) in({streets})",
                f"boroid={soql_literal(str(address.borough.code))}",
            ]
        )
        query = {"$where": where, "$limit": REGISTRY_LIMIT, "$order": "bin"}
        try:
            payload = self.fetch(self.registry_url, query)
        except SourceFetchFailed:
            raise
        except Exception as exc:
            raise SourceFetchFailed(f"Registry lookup failed for {address.display()}: {exc}") from exc
        if not isinstance(payload, list):
            raise SourceFetchFailed(f"Registry returned a malformed payload for {address.display()}")

        unique: dict[tuple[str, str], RegistryCandidate] = {}
        for row in payload:
            if not isinstance(row, dict):
                continue
            candidate = parse_candidate(row)
            # The registry query is a filter, not a guarantee: re-check every component.
            if candidate is None or not matches_exactly(candidate, address):
                continue
            unique.setdefault((candidate.property_key, candidate.structure_key or ""), candidate)
        return [unique[key] for key in sorted(unique)]

    def resolve(
        self,
        address: NormalizedAddress,
        *,
        unit_count: int | None = None,
        property_key_override: str | None = None,
    ) -> BuildingIdentity:
        cached = self.cached(address)
        if cached is not None and (property_key_override is None or cached.property_key == property_key_override):
            return cached

        candidates = self.lookup_candidates(address)
        if not candidates:
            log_warning(
                self.logger,
                f"no registry match for {address.display()}",
                stage="resolve",
                event="UNRESOLVED",
                status="error",
                error_code=UnresolvedAddressError.error_code,
            )
            raise UnresolvedAddressError(f"No building found at {address.display()}", address)

        chosen = self._disambiguate(address, candidates, unit_count, property_key_override)
        identity = BuildingIdentity(
            building_id=building_id_for(chosen.property_key, chosen.structure_key),
            property_key=chosen.property_key,
            structure_key=chosen.structure_key,
            normalized_address=address,
            residential_units=chosen.residential_units,
        )
        self.store.put(address.key, identity.to_dict())
        log_event(
            self.logger,
            f"resolved {address.display()}",
            stage="resolve",
            building_id=identity.building_id,
            event="RESOLVED",
            status="ok",
            rows_in=len(candidates),
        )
        return identity

    def _disambiguate(
        self,
        address: NormalizedAddress,
        candidates: list[RegistryCandidate],
        unit_count: int | None,
        property_key_override: str | None,
    ) -> RegistryCandidate:
        remaining = candidates
        if property_key_override is not None:
            remaining = [c for c in remaining if c.property_key == property_key_override]
            if not remaining:
                raise UnresolvedAddressError(
                    f"Override {property_key_override} does not match any building at {address.display()}",
                    address,
                )
        if len(remaining) == 1:
            return remaining[0]

        if unit_count is not None:
            with_units = [c for c in remaining if c.residential_units is not None]
            if with_units:
                best = min(abs(c.residential_units - unit_count) for c in with_units)
                closest = [c for c in with_units if abs(c.residential_units - unit_count) == best]
                if len(closest) == 1:
                    return closest[0]
                remaining = closest

        raise AmbiguousIdentityError(
            f"{len(remaining)} buildings match {address.display()}; supply a unit count or property key",
            address,
            candidates=remaining,
        )

    def cached(self, address: NormalizedAddress) -> BuildingIdentity | None:
        payload = self.store.get(address.key)
        if payload is None:
            return None
        return BuildingIdentity.from_dict(payload)

    def identities(self) -> list[BuildingIdentity]:
        return [BuildingIdentity.from_dict(payload) for _key, payload in self.store.items()]

    def find(self, building_id: str) -> BuildingIdentity | None:
        for identity in self.identities():
            if identity.building_id == building_id:
                return identity
        return None

    def invalidate(self, address: NormalizedAddress) -> bool:
        return self.store.delete(address.key)

    def verify(self, identity: BuildingIdentity) -> BuildingIdentity:
        """Re-check a cached identity against the registry.

        Drops the cached mapping and raises ``IdentityMismatchError`` when the
        registry no longer lists this property key and structure key at the
        cached address.
        """
        address = identity.normalized_address
        candidates = self.lookup_candidates(address)
        for candidate in candidates:
            if candidate.property_key == identity.property_key and candidate.structure_key == identity.structure_key:
                return identity

        self.invalidate(address)
        log_warning(
            self.logger,
            f"cached identity no longer matches registry for {address.display()}",
            stage="resolve",
            building_id=identity.building_id,
            event="IDENTITY_MISMATCH",
            status="error",
            error_code=IdentityMismatchError.error_code,
        )
        raise IdentityMismatchError(
            f"{identity.building_id} is not registered at {address.display()}; cached mapping dropped"
        )
