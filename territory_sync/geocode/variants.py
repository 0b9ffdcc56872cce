"""Address variant ladders for geocoding.

A variant generator turns one raw address into an ordered list of queries,
most specific first. The orchestrator stops at the first variant the provider
can place, so later entries trade precision for recall.
"""

from __future__ import annotations

import re
from typing import Callable, Sequence

VariantGenerator = Callable[[str], Sequence[str]]

_COUNTRY_RE = re.compile(
    r"(^|,)\s*(united states of america|united states|u\.s\.a\.|usa|us)\s*(?=,|$)",
    re.IGNORECASE,
)
# No bare "fl" here; it is also the Florida state abbreviation.
_SUITE_RE = re.compile(
    r"\s(?:(?:suite|ste|apt|apartment|unit|building|bldg|floor|room|rm)\.?\s+#?|#\s*)[a-z0-9\-]+",
    re.IGNORECASE,
)
_STREET_NUMBER_RE = re.compile(r"^\d+\s+")
_ZIP_RE = re.compile(r"\b(\d{5,}(?:-\d{4})?)\b")
_WHITESPACE_RE = re.compile(r"\s+")
_DOUBLE_COMMA_RE = re.compile(r"(\s*,\s*)+,")
_EDGE_COMMA_RE = re.compile(r"^[\s,]+|[\s,]+$")

MIN_VARIANT_LENGTH = 3
MIN_STREET_NAME_LENGTH = 11


def _tidy(address: str) -> str:
    cleaned = _WHITESPACE_RE.sub(" ", address)
    cleaned = _DOUBLE_COMMA_RE.sub(",", cleaned)
    cleaned = _EDGE_COMMA_RE.sub("", cleaned)
    return cleaned.strip()


def remove_country(address: str) -> str:
    return _tidy(_COUNTRY_RE.sub(r"\1", address))


def remove_suite(address: str) -> str:
    return _tidy(_SUITE_RE.sub("", address))


def remove_street_number(address: str) -> str:
    return _STREET_NUMBER_RE.sub("", address).strip()


def _split_parts(address: str) -> list[str]:
    return [part.strip() for part in address.split(",") if part.strip()]


def _city_state_zip(parts: list[str]) -> tuple[str, str, str]:
    """Best-effort ``(city, state, zip)`` from the tail of a comma split address."""
    if len(parts) < 2:
        return "", "", ""

    last = parts[-1]
    zip_code = ""
    state = last
    zip_match = _ZIP_RE.search(last)
    if zip_match:
        zip_code = zip_match.group(1)
        state = last.replace(zip_match.group(0), "").strip()

    used_previous = False
    if len(state) <= 1 or state.isdigit():
        state = parts[-2]
        used_previous = True
    if len(state) <= 1:
        return "", "", zip_code

    city_index = len(parts) - 3 if used_previous else len(parts) - 2
    city = parts[city_index] if city_index >= 0 else ""
    return city, state, zip_code


def default_address_variants(raw_address: str) -> list[str]:
    if not raw_address or not raw_address.strip():
        return []

    raw = raw_address.strip()
    clean_base = remove_country(raw)
    without_suite = remove_suite(clean_base)
    has_suite = without_suite != clean_base
    fallback_base = without_suite if has_suite else clean_base

    variants = [raw, clean_base]
    if has_suite:
        variants.append(without_suite)

    street_name_only = remove_street_number(fallback_base)
    if street_name_only != fallback_base and len(street_name_only) >= MIN_STREET_NAME_LENGTH:
        variants.append(street_name_only)

    parts = _split_parts(fallback_base)
    variants.append(", ".join(parts[-3:]))
    variants.append(", ".join(parts[-2:]))

    city, state, zip_code = _city_state_zip(parts)
    if city and state:
        variants.append(f"{city}, {state}")
    if zip_code:
        variants.append(zip_code)
    if state:
        # Last resort; survives misspelled city names.
        variants.append(state)

    ordered: list[str] = []
    for variant in variants:
        if variant and len(variant) >= MIN_VARIANT_LENGTH and variant not in ordered:
            ordered.append(variant)
    return ordered
