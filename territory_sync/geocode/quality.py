"""Geocode quality heuristics: precision scoring, placeholder points, international events."""

from __future__ import annotations

import re

from territory_sync.common.constants import DEFAULT_PRECISION_THRESHOLD, GEOCODE_SUCCESS
from territory_sync.common.models import LocationRecord

PLACEHOLDER_TOLERANCE = 0.05
PLACEHOLDER_COORDINATES = (
    (39.78, -100.45, "US Geographic Center (Kansas)"),
    (39.83, -98.58, "US Geographic Center (alternate)"),
    (33.66, -117.87, "Orange County CA Default"),
    (37.09, -95.71, "US Center Point"),
    (39.50, -98.35, "Lebanon KS (Geographic Center)"),
)

INTERNATIONAL_KEYWORDS = (
    "world",
    "olympic",
    "pan am",
    "panamerican",
    "international",
    "commonwealth",
    "asian games",
    "european",
    "continental",
    "ihf",
    "iwf",
    "rio",
    "tokyo",
    "beijing",
    "athens",
    "sydney",
)
# Whole words only: "Marion" and "Worldwide Gym" are not international events.
_INTERNATIONAL_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(keyword) for keyword in INTERNATIONAL_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
_STREET_RE = re.compile(r"\d+.*\w+")
_ZIP_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
_COUNTRY_ONLY = {"united states", "united states of america", "usa"}


def address_precision(address: str | None, display_name: str | None = None) -> int:
    """Score 0..8 for how specific an address is.

    Street number and name +4, city +2, state +1, ZIP +1; a provider answer
    that names only the country costs 2.
    """
    if not address and not display_name:
        return 0

    text = address or display_name or ""
    parts = [part.strip() for part in text.split(",")]
    score = 0
    if parts and parts[0] and _STREET_RE.search(parts[0]):
        score += 4
    if len(parts) > 1 and len(parts[1]) > 2:
        score += 2
    if len(parts) > 2 and len(parts[2]) >= 2:
        score += 1
    if _ZIP_RE.search(text):
        score += 1
    if display_name and display_name.strip().lower() in _COUNTRY_ONLY:
        score -= 2
    return max(0, score)


def placeholder_name(lat: float, lng: float) -> str | None:
    for placeholder_lat, placeholder_lng, name in PLACEHOLDER_COORDINATES:
        if abs(lat - placeholder_lat) < PLACEHOLDER_TOLERANCE and abs(lng - placeholder_lng) < PLACEHOLDER_TOLERANCE:
            return name
    return None


def is_international_event(name: str | None) -> bool:
    if not name:
        return False
    return _INTERNATIONAL_RE.search(name) is not None


def should_regeocode(record: LocationRecord, threshold: int = DEFAULT_PRECISION_THRESHOLD) -> bool:
    if record.coordinate is None or record.geocode_status is None:
        return True
    if record.geocode_status != GEOCODE_SUCCESS:
        return True
    precision = record.precision_score
    if precision is None:
        precision = address_precision(record.address, record.display_name)
    return precision < threshold
