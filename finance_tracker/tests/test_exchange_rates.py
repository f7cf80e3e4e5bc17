import io
import json
import unittest
from decimal import Decimal
from unittest import mock
from urllib.error import URLError

from finance_tracker.errors import UpstreamRateError
from finance_tracker.exchange_rates import (
    FALLBACK_RATES,
    CacheState,
    ExchangeRateApiProvider,
    ExchangeRateCache,
    parse_rates_payload,
)
from finance_tracker.tests.support import FIXED_WALL_TIME, FakeClock, FakeRateProvider

LIVE_RATES = {"EUR": Decimal("117.2"), "USD": Decimal("100.0"), "HUF": Decimal("0.3")}
NEWER_RATES = {"EUR": Decimal("118.0"), "USD": Decimal("101.0"), "HUF": Decimal("0.31")}


class ExchangeRateCacheTests(unittest.TestCase):
    def make_cache(self, provider: FakeRateProvider) -> ExchangeRateCache:
        self.clock = FakeClock()
        return ExchangeRateCache(
            provider=provider,
            ttl_seconds=3600,
            clock=self.clock,
            wall_clock=lambda: FIXED_WALL_TIME,
        )

    def test_second_call_within_ttl_is_a_cache_hit(self) -> None:
        provider = FakeRateProvider(LIVE_RATES)
        cache = self.make_cache(provider)

        first = cache.get_rates()
        self.clock.advance(3599)
        second = cache.get_rates()

        self.assertIs(first, second)
        self.assertEqual(provider.calls, 1)
        self.assertEqual(first.rates, LIVE_RATES)
        self.assertEqual(first.source, "live")
        self.assertEqual(first.fetched_at, FIXED_WALL_TIME)

    def test_call_after_expiry_refetches_exactly_once(self) -> None:
        provider = FakeRateProvider(LIVE_RATES, NEWER_RATES)
        cache = self.make_cache(provider)

        cache.get_rates()
        self.clock.advance(3600)
        refreshed = cache.get_rates()
        again = cache.get_rates()

        self.assertEqual(provider.calls, 2)
        self.assertEqual(refreshed.rates, NEWER_RATES)
        self.assertIs(refreshed, again)

    def test_failure_on_empty_cache_serves_fallback(self) -> None:
        provider = FakeRateProvider(UpstreamRateError("down"))
        cache = self.make_cache(provider)

        snapshot = cache.get_rates()

        self.assertEqual(dict(snapshot.rates), FALLBACK_RATES)
        self.assertEqual(snapshot.source, "fallback")
        self.assertIsNone(snapshot.fetched_at)
        self.assertEqual(cache.state, CacheState.DEGRADED)

    def test_failure_after_success_keeps_last_good_rates(self) -> None:
        provider = FakeRateProvider(LIVE_RATES, UpstreamRateError("down"))
        cache = self.make_cache(provider)

        good = cache.get_rates()
        self.clock.advance(4000)
        degraded = cache.get_rates()

        self.assertIs(degraded, good)
        self.assertEqual(degraded.fetched_at, FIXED_WALL_TIME)
        self.assertEqual(cache.state, CacheState.DEGRADED)

    def test_failed_refresh_defers_retry_for_one_ttl(self) -> None:
        provider = FakeRateProvider(UpstreamRateError("down"), LIVE_RATES)
        cache = self.make_cache(provider)

        cache.get_rates()
        self.clock.advance(10)
        cache.get_rates()
        self.assertEqual(provider.calls, 1)

        self.clock.advance(3600)
        recovered = cache.get_rates()

        self.assertEqual(provider.calls, 2)
        self.assertEqual(recovered.rates, LIVE_RATES)
        self.assertEqual(cache.state, CacheState.FRESH)

    def test_unexpected_provider_error_does_not_propagate(self) -> None:
        provider = FakeRateProvider(KeyError("rates"))
        cache = self.make_cache(provider)

        with self.assertLogs("finance_tracker.exchange_rates", level="WARNING"):
            snapshot = cache.get_rates()

        self.assertEqual(snapshot.source, "fallback")

    def test_state_transitions(self) -> None:
        provider = FakeRateProvider(LIVE_RATES)
        cache = self.make_cache(provider)

        self.assertEqual(cache.state, CacheState.EMPTY)
        cache.get_rates()
        self.assertEqual(cache.state, CacheState.FRESH)
        self.clock.advance(3600)
        self.assertEqual(cache.state, CacheState.STALE)


class RatesPayloadTests(unittest.TestCase):
    def test_rates_are_inverted_to_base_per_unit(self) -> None:
        rates = parse_rates_payload({"rates": {"EUR": 0.008, "USD": 0.01, "HUF": 4}})

        self.assertEqual(rates["EUR"], Decimal("125"))
        self.assertEqual(rates["USD"], Decimal("100"))
        self.assertEqual(rates["HUF"], Decimal("0.25"))

    def test_missing_optional_rate_uses_fallback_value(self) -> None:
        rates = parse_rates_payload({"rates": {"EUR": 0.008, "USD": 0.01}})

        self.assertEqual(rates["HUF"], FALLBACK_RATES["HUF"])

    def test_malformed_payloads_are_rejected(self) -> None:
        for payload in (
            [],
            {},
            {"rates": "nope"},
            {"rates": {"EUR": 0.008}},
            {"rates": {"EUR": "0.008", "USD": 0.01}},
            {"rates": {"EUR": 0, "USD": 0.01}},
            {"rates": {"EUR": True, "USD": 0.01}},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(UpstreamRateError):
                    parse_rates_payload(payload)


class ExchangeRateApiProviderTests(unittest.TestCase):
    def test_fetch_parses_response_body(self) -> None:
        body = io.BytesIO(json.dumps({"rates": {"EUR": 0.008, "USD": 0.01}}).encode("utf-8"))
        provider = ExchangeRateApiProvider(url="http://rates.test/latest/RSD", timeout_seconds=2)

        with mock.patch("finance_tracker.exchange_rates.urlopen", return_value=body) as urlopen:
            rates = provider.fetch_rates()

        urlopen.assert_called_once_with("http://rates.test/latest/RSD", timeout=2)
        self.assertEqual(rates["EUR"], Decimal("125"))

    def test_network_error_becomes_upstream_error(self) -> None:
        provider = ExchangeRateApiProvider(url="http://rates.test/latest/RSD")

        with mock.patch("finance_tracker.exchange_rates.urlopen", side_effect=URLError("offline")):
            with self.assertRaises(UpstreamRateError):
                provider.fetch_rates()

    def test_invalid_json_becomes_upstream_error(self) -> None:
        provider = ExchangeRateApiProvider(url="http://rates.test/latest/RSD")

        with mock.patch("finance_tracker.exchange_rates.urlopen", return_value=io.BytesIO(b"<html>")):
            with self.assertRaises(UpstreamRateError):
                provider.fetch_rates()


if __name__ == "__main__":
    unittest.main()
