"""Free-text NYC postal address normalisation."""

from __future__ import annotations

import re
from typing import Mapping

from building_compliance.common.errors import AmbiguousBoroughError, NormalizationError
from building_compliance.common.models import Borough, NormalizedAddress

HOUSE_NUMBER_RE = re.compile(r"^\d+[A-Z]?(?:-\d+[A-Z]?)?$")
ORDINAL_RE = re.compile(r"^(\d+)(?:ST|ND|RD|TH)$")
ZIP_RE = re.compile(r"^(\d{5})(?:-\d{4})?$")

_PUNCTUATION_RE = re.compile(r"[\.;:'\"`_/\\()\[\]{}|~!?@$%^&*+=]")
_WHITESPACE_RE = re.compile(r"\s+")

STREET_TYPES = {
    "ST": "STREET",
    "STR": "STREET",
    "AVE": "AVENUE",
    "AV": "AVENUE",
    "BLVD": "BOULEVARD",
    "PL": "PLACE",
    "RD": "ROAD",
    "DR": "DRIVE",
    "PKWY": "PARKWAY",
    "LN": "LANE",
    "CT": "COURT",
    "TER": "TERRACE",
    "SQ": "SQUARE",
    "HWY": "HIGHWAY",
}
DIRECTIONALS = {
    "W": "WEST",
    "E": "EAST",
    "N": "NORTH",
    "S": "SOUTH",
}
UNIT_MARKERS = {"APT", "APARTMENT", "UNIT", "FL", "FLOOR", "STE", "SUITE", "#", "RM", "ROOM"}

# Longest phrases first so "STATEN ISLAND" wins over a bare token.
BOROUGH_PHRASES: tuple[tuple[tuple[str, ...], Borough], ...] = (
    (("STATEN", "ISLAND"), Borough.STATEN_ISLAND),
    (("THE", "BRONX"), Borough.BRONX),
    (("NEW", "YORK"), Borough.MANHATTAN),
    (("MANHATTAN",), Borough.MANHATTAN),
    (("BROOKLYN",), Borough.BROOKLYN),
    (("BRONX",), Borough.BRONX),
    (("QUEENS",), Borough.QUEENS),
)
BOROUGH_CODES = {
    "MN": Borough.MANHATTAN,
    "BK": Borough.BROOKLYN,
    "BX": Borough.BRONX,
    "QN": Borough.QUEENS,
    "SI": Borough.STATEN_ISLAND,
}
STATE_TOKENS = {"NY", "NYS"}


def tokenize(text: str) -> list[str]:
    cleaned = _PUNCTUATION_RE.sub(" ", text.upper().replace("#", " # "))
    return _WHITESPACE_RE.sub(" ", cleaned).strip().split(" ") if cleaned.strip() else []


def _match_borough_suffix(tokens: list[str]) -> tuple[Borough, int] | None:
    for phrase, borough in BOROUGH_PHRASES:
        size = len(phrase)
        if len(tokens) >= size and tuple(tokens[-size:]) == phrase:
            return borough, size
    return None


def _strip_locality(tokens: list[str], *, allow_codes: bool) -> tuple[list[str], Borough | None, str | None]:
    """Peel ZIP, state and borough tokens off the end of ``tokens``."""
    remaining = list(tokens)
    borough: Borough | None = None
    zip_code: str | None = None
    while remaining:
        last = remaining[-1]
        zip_match = ZIP_RE.match(last)
        if zip_match and zip_code is None and len(remaining) > 1:
            zip_code = zip_match.group(1)
            remaining.pop()
            continue
        if last in STATE_TOKENS and len(remaining) > 1:
            remaining.pop()
            continue
        if allow_codes and last in BOROUGH_CODES and borough is None:
            borough = BOROUGH_CODES[last]
            remaining.pop()
            continue
        matched = _match_borough_suffix(remaining)
        if matched is not None and borough is None and len(remaining) > matched[1]:
            borough = matched[0]
            del remaining[-matched[1] :]
            continue
        break
    return remaining, borough, zip_code


def _drop_unit_designator(tokens: list[str]) -> list[str]:
    for idx, token in enumerate(tokens):
        if idx > 1 and token in UNIT_MARKERS:
            return tokens[:idx]
    return tokens


def normalize_street(tokens: list[str]) -> str:
    out: list[str] = []
    last_idx = len(tokens) - 1
    for idx, token in enumerate(tokens):
        ordinal = ORDINAL_RE.match(token)
        if ordinal:
            out.append(str(int(ordinal.group(1))))
            continue
        if token in DIRECTIONALS:
            if idx == 0 and last_idx > 0:
                out.append(DIRECTIONALS[token])
                continue
            if idx == last_idx and len(out) >= 2 and out[-1] in STREET_TYPES.values():
                out.append(DIRECTIONALS[token])
                continue
        if token in STREET_TYPES and not (token == "ST" and idx == 0 and last_idx > 0):
            out.append(STREET_TYPES[token])
            continue
        out.append(token)
    return " ".join(out)


_TYPE_ABBREVIATIONS = {"STREET": "ST", "AVENUE": "AVE", "BOULEVARD": "BLVD", "PLACE": "PL", "ROAD": "RD",
                       "DRIVE": "DR", "PARKWAY": "PKWY", "LANE": "LN", "COURT": "CT", "TERRACE": "TER",
                       "SQUARE": "SQ", "HIGHWAY": "HWY"}
_DIRECTION_ABBREVIATIONS = {full: short for short, full in DIRECTIONALS.items()}


def street_variants(street_name: str) -> list[str]:
    """Spellings a registry may store for a normalized street name.

    Upstream datasets mix ``PERRY STREET`` and ``PERRY ST``; queries match any
    of these, then rows are re-normalized and compared exactly.
    """
    tokens = street_name.split(" ")
    variants = {street_name}
    suffixed = list(tokens)
    if len(tokens) > 1 and tokens[-1] in _TYPE_ABBREVIATIONS:
        suffixed[-1] = _TYPE_ABBREVIATIONS[tokens[-1]]
        variants.add(" ".join(suffixed))
    if len(tokens) > 1 and tokens[0] in _DIRECTION_ABBREVIATIONS:
        for base in (tokens, suffixed):
            variants.add(" ".join([_DIRECTION_ABBREVIATIONS[tokens[0]], *base[1:]]))
    return sorted(variants)


def borough_for_zip(zip_code: str | None, zip_boroughs: Mapping[str, Borough] | None) -> Borough | None:
    if not zip_code or not zip_boroughs:
        return None
    for size in range(len(zip_code), 0, -1):
        borough = zip_boroughs.get(zip_code[:size])
        if borough is not None:
            return borough
    return None


def normalize(
    raw_address: str | None,
    *,
    zip_boroughs: Mapping[str, Borough] | None = None,
    borough: Borough | str | None = None,
) -> NormalizedAddress:
    if raw_address is None or not raw_address.strip():
        raise NormalizationError("Address is empty")

    segments = [segment for segment in raw_address.upper().split(",") if segment.strip()]
    if not segments:
        raise NormalizationError(f"Address has no content: {raw_address!r}")
    street_tokens = tokenize(segments[0])
    locality_tokens = tokenize(" ".join(segments[1:]))

    street_tokens, inline_borough, inline_zip = _strip_locality(street_tokens, allow_codes=False)
    _rest, locality_borough, locality_zip = _strip_locality(["_"] + locality_tokens, allow_codes=True)

    if not street_tokens or not HOUSE_NUMBER_RE.match(street_tokens[0]):
        raise NormalizationError(f"Address has no leading house number: {raw_address!r}")

    house_number = street_tokens[0]
    street_name = normalize_street(_drop_unit_designator(street_tokens[1:]))
    if not street_name:
        raise NormalizationError(f"Address has no street name: {raw_address!r}")

    zip_code = locality_zip or inline_zip
    resolved = _explicit_borough(borough) or locality_borough or inline_borough
    if resolved is None:
        resolved = borough_for_zip(zip_code, zip_boroughs)
    if resolved is None:
        raise AmbiguousBoroughError(
            f"Cannot infer borough for {raw_address!r}; supply the borough explicitly"
        )

    return NormalizedAddress(
        house_number=house_number,
        street_name=street_name,
        borough=resolved,
        zip_code=zip_code,
    )


def _explicit_borough(borough: Borough | str | None) -> Borough | None:
    if borough is None or isinstance(borough, Borough):
        return borough
    text = _WHITESPACE_RE.sub(" ", borough.strip().upper())
    if text in BOROUGH_CODES:
        return BOROUGH_CODES[text]
    matched = _match_borough_suffix(text.split(" "))
    if matched is not None and matched[1] == len(text.split(" ")):
        return matched[0]
    raise AmbiguousBoroughError(f"Unknown borough: {borough!r}")
