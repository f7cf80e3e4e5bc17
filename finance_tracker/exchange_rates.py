from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from finance_tracker.currency_conversion import BASE_CURRENCY
from finance_tracker.errors import UpstreamRateError

logger = logging.getLogger(__name__)

CACHE_DURATION_SECONDS = 60 * 60

# RSD per 1 unit of foreign currency, used until a live fetch succeeds.
FALLBACK_RATES: dict[str, Decimal] = {
    "EUR": Decimal("117.5"),
    "USD": Decimal("107.8"),
    "HUF": Decimal("0.29"),
}

REQUIRED_RATE_CURRENCIES = ("EUR", "USD")
OPTIONAL_RATE_CURRENCIES = ("HUF",)


class RateProvider(Protocol):
    def fetch_rates(self) -> Mapping[str, Decimal]:
        ...


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    rates: Mapping[str, Decimal]
    fetched_at: datetime | None
    source: str

    @property
    def base(self) -> str:
        return BASE_CURRENCY


@dataclass
class ExchangeRateApiProvider:
    """Fetches live rates for the base currency.

    The upstream answers with "foreign units per 1 RSD"; this provider
    returns the inverse, "RSD per 1 foreign unit".
    """

    url: str = "https://api.exchangerate-api.com/v4/latest/RSD"
    timeout_seconds: float = 5.0

    def fetch_rates(self) -> Mapping[str, Decimal]:
        try:
            with urlopen(self.url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, OSError, json.JSONDecodeError) as exc:
            raise UpstreamRateError("Exchange rate API unavailable") from exc
        return parse_rates_payload(payload)


def parse_rates_payload(payload: object) -> dict[str, Decimal]:
    rates = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(rates, dict):
        raise UpstreamRateError("Exchange rate response missing rates")

    parsed: dict[str, Decimal] = {}
    for currency in REQUIRED_RATE_CURRENCIES:
        per_base = _positive_decimal(rates.get(currency))
        if per_base is None:
            raise UpstreamRateError(f"Exchange rate response has no usable {currency} rate")
        parsed[currency] = Decimal("1") / per_base
    for currency in OPTIONAL_RATE_CURRENCIES:
        per_base = _positive_decimal(rates.get(currency))
        parsed[currency] = Decimal("1") / per_base if per_base is not None else FALLBACK_RATES[currency]
    return parsed


def _positive_decimal(value: object) -> Decimal | None:
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    if not result.is_finite() or result <= 0:
        return None
    return result


class CacheState:
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    DEGRADED = "degraded"


@dataclass
class ExchangeRateCache:
    """Time-boxed cache in front of a rate provider.

    ``get_rates`` never raises. A failed refresh serves the previous snapshot
    (or the fallback rates) and defers the next upstream attempt by one
    ``ttl_seconds``, the same as a successful refresh.
    """

    provider: RateProvider
    ttl_seconds: float = CACHE_DURATION_SECONDS
    clock: Callable[[], float] = time.monotonic
    wall_clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    fallback_rates: Mapping[str, Decimal] = field(default_factory=lambda: dict(FALLBACK_RATES))
    _snapshot: ExchangeRateSnapshot | None = field(default=None, init=False, repr=False)
    _checked_at: float | None = field(default=None, init=False, repr=False)
    _degraded: bool = field(default=False, init=False, repr=False)

    @property
    def state(self) -> str:
        if self._snapshot is None:
            return CacheState.EMPTY
        if self._degraded:
            return CacheState.DEGRADED
        if self._is_expired():
            return CacheState.STALE
        return CacheState.FRESH

    def get_rates(self) -> ExchangeRateSnapshot:
        if self._snapshot is not None and not self._is_expired():
            return self._snapshot

        try:
            rates = self.provider.fetch_rates()
        except UpstreamRateError as exc:
            return self._serve_degraded(exc)
        except Exception as exc:  # the provider is an external collaborator
            logger.exception("Unexpected error from exchange rate provider")
            return self._serve_degraded(exc)

        self._snapshot = ExchangeRateSnapshot(
            rates=dict(rates),
            fetched_at=self.wall_clock(),
            source="live",
        )
        self._checked_at = self.clock()
        self._degraded = False
        logger.info("Exchange rates updated: %s", {k: str(v) for k, v in rates.items()})
        return self._snapshot

    def _serve_degraded(self, exc: Exception) -> ExchangeRateSnapshot:
        logger.warning("Failed to fetch live exchange rates, using cached or fallback rates: %s", exc)
        if self._snapshot is None:
            self._snapshot = ExchangeRateSnapshot(
                rates=dict(self.fallback_rates),
                fetched_at=None,
                source="fallback",
            )
        # fetched_at of the served data stays as it was; only the retry is deferred
        self._checked_at = self.clock()
        self._degraded = True
        return self._snapshot

    def _is_expired(self) -> bool:
        if self._checked_at is None:
            return True
        return self.clock() - self._checked_at >= self.ttl_seconds
