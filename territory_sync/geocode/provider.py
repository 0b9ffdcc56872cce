"""Geocoding providers.

A geocoder maps one address string to a ``GeocodeHit`` or raises one of the
typed failures from ``territory_sync.common.errors``: ``NoMatch`` when the
provider answered with nothing usable, ``ProviderTransientError`` (and its
``RateLimited`` / ``ProviderTimeout`` subclasses) when the same query may work
later, and ``ProviderError`` for everything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from territory_sync.common.errors import NoMatch, ProviderError, ProviderTimeout, ProviderTransientError, RateLimited
from territory_sync.common.http import (
    HttpClient,
    HttpRequestError,
    HttpTimeoutError,
    RetryableHttpError,
    RetryConfig,
    TimeoutConfig,
)
from territory_sync.common.models import Coordinate

RATE_LIMIT_STATUS_CODES = {403, 429}
NOMINATIM_SOURCE = "geocoder"


@dataclass(frozen=True)
class GeocodeHit:
    lat: float
    lng: float
    display_name: str | None = None
    state: str | None = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lng=self.lng)


class Geocoder(Protocol):
    def geocode(self, address: str) -> GeocodeHit: ...


def extract_state(result: dict[str, Any]) -> str | None:
    details = result.get("address") or {}
    if details.get("state"):
        return details["state"]
    if details.get("state_district"):
        return details["state_district"]

    display_name = result.get("display_name")
    if display_name:
        parts = [part.strip() for part in display_name.split(",")]
        # "..., City, County, State, ZIP, Country"; state sits third from the end.
        if len(parts) >= 3:
            candidate = "".join(ch for ch in parts[-3] if ch.isalpha() or ch == " ").strip()
            if candidate:
                return candidate
    return None


class NominatimGeocoder:
    def __init__(
        self,
        endpoint: str,
        *,
        http_client: HttpClient | None = None,
        country_codes: str | None = "us",
        rate_per_sec: float = 0.9,
        timeout: TimeoutConfig | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.country_codes = country_codes
        self.timeout = timeout or TimeoutConfig(connect=10, read=30)
        self.owns_client = http_client is None
        if http_client is None:
            client_kwargs: dict[str, Any] = {
                # Retries belong to the orchestrator, which knows about variants.
                "retry": RetryConfig(max_attempts=1),
                "timeout": self.timeout,
                "rate_limits": {NOMINATIM_SOURCE: rate_per_sec},
            }
            if user_agent:
                client_kwargs["user_agent"] = user_agent
            http_client = HttpClient(**client_kwargs)
        self.client = http_client

    def close(self) -> None:
        if self.owns_client:
            self.client.close()

    def _params(self, address: str) -> dict[str, Any]:
        params: dict[str, Any] = {
            "q": address,
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
        }
        if self.country_codes:
            params["countrycodes"] = self.country_codes
        return params

    def geocode(self, address: str) -> GeocodeHit:
        try:
            payload = self.client.get_json(
                self.endpoint,
                source_type=NOMINATIM_SOURCE,
                params=self._params(address),
                timeout=self.timeout,
            )
        except HttpTimeoutError as exc:
            raise ProviderTimeout(str(exc)) from exc
        except RetryableHttpError as exc:
            if exc.status_code in RATE_LIMIT_STATUS_CODES:
                raise RateLimited(f"Rate limited ({exc.status_code})") from exc
            raise ProviderTransientError(str(exc)) from exc
        except HttpRequestError as exc:
            if exc.status_code in RATE_LIMIT_STATUS_CODES:
                raise RateLimited(f"Rate limited ({exc.status_code})") from exc
            raise ProviderError(str(exc)) from exc

        if not isinstance(payload, list):
            raise ProviderError(f"Unexpected payload type from geocoder: {type(payload).__name__}")
        if not payload:
            raise NoMatch(f"No results for {address!r}")

        result = payload[0]
        coordinate = Coordinate.parse(result.get("lat"), result.get("lon"))
        if coordinate is None:
            raise ProviderError(f"Result without usable coordinates for {address!r}")

        return GeocodeHit(
            lat=coordinate.lat,
            lng=coordinate.lng,
            display_name=result.get("display_name"),
            state=extract_state(result),
        )
