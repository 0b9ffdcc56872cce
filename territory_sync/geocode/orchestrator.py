"""Variant ladder over a geocoder with per-attempt failure classification."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from territory_sync.common.errors import ProviderError, ProviderSemanticError, ProviderTransientError
from territory_sync.common.http import RetryConfig
from territory_sync.common.logging import default_logger, log_event
from territory_sync.common.models import Coordinate
from territory_sync.geocode.provider import GeocodeHit, Geocoder
from territory_sync.geocode.quality import address_precision, placeholder_name
from territory_sync.geocode.variants import VariantGenerator, default_address_variants

TRYING = "trying"
STATUS_SUCCESS = "success"
STATUS_UNRESOLVED = "unresolved"
STATUS_FAILED = "failed"

OUTCOME_SUCCESS = "success"
OUTCOME_NO_MATCH = "no_match"
OUTCOME_TRANSIENT_EXHAUSTED = "transient_exhausted"
OUTCOME_PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True)
class GeocodeAttempt:
    variant: str
    outcome: str
    error: str | None = None
    tries: int = 1


@dataclass(frozen=True)
class GeocodeResult:
    status: str
    coordinate: Coordinate | None
    attempts: tuple[GeocodeAttempt, ...]
    failure_count: int
    hit: GeocodeHit | None = None
    precision: int | None = None
    placeholder: str | None = None

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def error_summary(self) -> str | None:
        if self.success:
            return None
        if not self.attempts:
            return "No address variants to try"
        last = self.attempts[-1]
        return f"Failed after {len(self.attempts)} attempts; last {last.outcome} for {last.variant!r}: {last.error}"


class GeocodeOrchestrator:
    def __init__(
        self,
        geocoder: Geocoder,
        *,
        variant_generator: VariantGenerator = default_address_variants,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.geocoder = geocoder
        self.variant_generator = variant_generator
        self.retry = retry or RetryConfig(max_attempts=3, multiplier=1.0, max_wait=10.0)
        self.sleep = sleep
        self.logger = logger or default_logger()

    def _query(self, variant: str, tries: list[int]) -> GeocodeHit:
        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(ProviderTransientError),
            sleep=self.sleep,
            reraise=True,
        )
        def _wrapped() -> GeocodeHit:
            tries[0] += 1
            return self.geocoder.geocode(variant)

        return _wrapped()

    def _try_variant(self, variant: str) -> tuple[GeocodeAttempt, GeocodeHit | None]:
        tries = [0]
        try:
            hit = self._query(variant, tries)
        except ProviderSemanticError as exc:
            return GeocodeAttempt(variant, OUTCOME_NO_MATCH, str(exc), tries[0]), None
        except ProviderTransientError as exc:
            return GeocodeAttempt(variant, OUTCOME_TRANSIENT_EXHAUSTED, str(exc), tries[0]), None
        except ProviderError as exc:
            return GeocodeAttempt(variant, OUTCOME_PROVIDER_ERROR, str(exc), tries[0]), None
        return GeocodeAttempt(variant, OUTCOME_SUCCESS, None, tries[0]), hit

    def geocode(self, raw_address: str, variant_generator: VariantGenerator | None = None) -> GeocodeResult:
        generator = variant_generator or self.variant_generator
        pending = list(generator(raw_address or ""))
        attempts: list[GeocodeAttempt] = []
        state = TRYING
        hit: GeocodeHit | None = None
        winning_variant: str | None = None

        while state == TRYING:
            if not pending:
                saw_no_match = any(attempt.outcome == OUTCOME_NO_MATCH for attempt in attempts)
                state = STATUS_UNRESOLVED if (saw_no_match or not attempts) else STATUS_FAILED
                break

            variant = pending.pop(0)
            attempt, hit = self._try_variant(variant)
            attempts.append(attempt)
            log_event(
                self.logger,
                f"geocode attempt {len(attempts)} {attempt.outcome}: {attempt.error or variant}",
                level=logging.DEBUG,
                stage="geocode",
                event="GEOCODE_ATTEMPT",
                status=attempt.outcome,
                attempt=len(attempts),
            )
            if hit is not None:
                winning_variant = variant
                state = STATUS_SUCCESS

        if state != STATUS_SUCCESS or hit is None:
            return GeocodeResult(
                status=state,
                coordinate=None,
                attempts=tuple(attempts),
                failure_count=len(attempts),
            )

        return GeocodeResult(
            status=STATUS_SUCCESS,
            coordinate=hit.coordinate,
            attempts=tuple(attempts),
            failure_count=len(attempts) - 1,
            hit=hit,
            precision=address_precision(winning_variant, hit.display_name),
            placeholder=placeholder_name(hit.lat, hit.lng),
        )
