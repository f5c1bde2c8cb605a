"""Domain errors and failure typing."""

from __future__ import annotations

from typing import Any


class ComplianceError(Exception):
    """Base class for compliance engine failures."""

    error_code = "COMPLIANCE_ERROR"


class ConfigError(ComplianceError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class NormalizationError(ComplianceError):
    """Raised when a raw address cannot be parsed into a matchable key."""

    error_code = "NORMALIZATION_ERROR"


class AmbiguousBoroughError(NormalizationError):
    """Raised when no borough token, ZIP match or explicit borough is available."""

    error_code = "AMBIGUOUS_BOROUGH"


class UnresolvedAddressError(ComplianceError):
    """Raised when no building identity matches a normalized address."""

    error_code = "UNRESOLVED_ADDRESS"

    def __init__(self, message: str, address: Any = None) -> None:
        super().__init__(message)
        self.address = address


class AmbiguousIdentityError(UnresolvedAddressError):
    """Raised when several registry candidates match and nothing disambiguates them."""

    error_code = "AMBIGUOUS_IDENTITY"

    def __init__(self, message: str, address: Any = None, candidates: list | None = None) -> None:
        super().__init__(message, address)
        self.candidates = list(candidates or [])


class IdentityMismatchError(ComplianceError):
    """Raised when a cached identity no longer matches the registry."""

    error_code = "IDENTITY_MISMATCH"


class SourceFetchFailed(ComplianceError):
    """Raised for network or payload failures talking to an upstream registry."""

    error_code = "SOURCE_FETCH_FAILED"


class AllSourcesFailed(ComplianceError):
    """Raised when a pass could not produce a fresh snapshot from any source."""

    error_code = "ALL_SOURCES_FAILED"
