from datetime import date, datetime

import httpx
import pytest

from marketsim.core.exceptions import (
    ConfigError,
    ProviderClientError,
    ProviderRetriesExhausted,
)
from marketsim.services.generation.types import Granularity
from marketsim.services.market_data import (
    PolygonAggregatesSource,
    PolygonTickerSource,
    PriceSource,
    RateLimitedFetcher,
    SourcePage,
    get_symbol_source,
)

pytestmark = pytest.mark.anyio

BASE_URL = "https://api.polygon.test"


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_fetcher(handler, sleep=None, **kwargs) -> RateLimitedFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    defaults = dict(
        request_delay_sec=0,
        rate_limit_backoff_sec=60,
        server_error_backoff_sec=30,
        max_attempts=3,
    )
    defaults.update(kwargs)
    return RateLimitedFetcher(client=client, sleep=sleep or FakeSleep(), **defaults)


def responses(*statuses):
    queue = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        status = queue.pop(0)
        if status == 200:
            return httpx.Response(200, json={"results": [], "status": "OK"})
        return httpx.Response(status, json={"error": "nope"})

    return handler


async def test_success_returns_json():
    fetcher = make_fetcher(responses(200))
    assert await fetcher.get_json(f"{BASE_URL}/v1/x") == {"results": [], "status": "OK"}
    assert fetcher.calls == 1


async def test_rate_limit_then_success_waits_fixed_backoff():
    sleep = FakeSleep()
    fetcher = make_fetcher(responses(429, 503, 200), sleep=sleep)

    await fetcher.get_json(f"{BASE_URL}/v1/x")

    assert fetcher.calls == 3
    assert sleep.calls == [60, 30]


async def test_retries_are_bounded():
    sleep = FakeSleep()
    fetcher = make_fetcher(responses(429, 429, 429, 200), sleep=sleep)

    with pytest.raises(ProviderRetriesExhausted) as exc_info:
        await fetcher.get_json(f"{BASE_URL}/v1/x")

    assert fetcher.calls == 3
    assert exc_info.value.status_code == 429
    assert sleep.calls == [60, 60]


async def test_client_error_is_not_retried():
    fetcher = make_fetcher(responses(404, 200))

    with pytest.raises(ProviderClientError) as exc_info:
        await fetcher.get_json(f"{BASE_URL}/v1/x")

    assert exc_info.value.status_code == 404
    assert fetcher.calls == 1


async def test_network_errors_count_as_server_errors():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    sleep = FakeSleep()
    fetcher = make_fetcher(handler, sleep=sleep, max_attempts=2)
    with pytest.raises(ProviderRetriesExhausted):
        await fetcher.get_json(f"{BASE_URL}/v1/x")
    assert len(attempts) == 2
    assert sleep.calls == [30]


async def test_calls_are_spaced_by_request_delay():
    sleep = FakeSleep()
    fetcher = make_fetcher(responses(200, 200), sleep=sleep, request_delay_sec=12)

    await fetcher.get_json(f"{BASE_URL}/v1/x")
    await fetcher.get_json(f"{BASE_URL}/v1/x")

    assert len(sleep.calls) == 1
    assert 11 < sleep.calls[0] <= 12


async def test_ticker_listing_follows_next_url():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        assert request.url.params["apiKey"] == "k"
        if request.url.path == "/v3/reference/tickers" and "cursor" not in request.url.params:
            return httpx.Response(200, json={
                "results": [{"ticker": "AAPL"}, {"ticker": "MSFT"}],
                "next_url": f"{BASE_URL}/v3/reference/tickers?cursor=abc",
            })
        return httpx.Response(200, json={"results": [{"ticker": "NVDA"}]})

    source = PolygonTickerSource(make_fetcher(handler), api_key="k", base_url=BASE_URL)
    assert await source.fetch_all(max_pages=5) == ["AAPL", "MSFT", "NVDA"]
    assert len(seen) == 2
    assert seen[0].params["market"] == "stocks"
    assert seen[1].params["cursor"] == "abc"


async def test_aggregates_become_bars():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/aggs/ticker/AAPL/range/1/hour/2024-03-15/2024-03-15"
        return httpx.Response(200, json={"results": [
            {"t": 1710511200000, "o": 172.5, "h": 173.1, "l": 172.2, "c": 172.9, "v": 12345},
        ]})

    source = PolygonAggregatesSource(
        make_fetcher(handler),
        "AAPL",
        date(2024, 3, 15),
        date(2024, 3, 15),
        Granularity.HOURLY,
        api_key="k",
        base_url=BASE_URL,
    )
    bars = await source.fetch_bars()

    assert len(bars) == 1
    assert bars[0].timestamp == datetime(2024, 3, 15, 14, 0)
    assert bars[0].trading_day == date(2024, 3, 15)
    assert (bars[0].open, bars[0].close, bars[0].volume) == (172.5, 172.9, 12345)


async def test_aggregate_pages_keep_cursor_and_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if "cursor" in request.url.params:
            return httpx.Response(200, json={"results": [
                {"t": 1710460800000, "o": 2.0, "h": 2.0, "l": 2.0, "c": 2.0, "v": 1},
            ]})
        return httpx.Response(200, json={
            "results": [{"t": 1710374400000, "o": 1.0, "h": 1.0, "l": 1.0, "c": 1.0, "v": 1}],
            "next_url": f"{BASE_URL}/v2/aggs/ticker/AAPL/range/1/day/2024-03-14/2024-03-15?cursor=p2",
        })

    source = PolygonAggregatesSource(
        make_fetcher(handler), "AAPL", date(2024, 3, 14), date(2024, 3, 15), api_key="k", base_url=BASE_URL
    )
    bars = await source.fetch_all(max_pages=5)

    assert [bar.trading_day for bar in bars] == [date(2024, 3, 14), date(2024, 3, 15)]
    assert len(seen) == 2
    assert seen[1].params["cursor"] == "p2"
    assert seen[1].params["apiKey"] == "k"


async def test_repeated_cursor_stops_paging():
    class Looping(PriceSource):
        def __init__(self):
            self.calls = 0

        async def fetch_page(self, cursor=None) -> SourcePage:
            self.calls += 1
            return SourcePage(items=[self.calls], next_cursor="same")

    source = Looping()
    assert await source.fetch_all() == [1, 2]
    assert source.calls == 2


def test_missing_api_key():
    with pytest.raises(ConfigError):
        PolygonTickerSource(RateLimitedFetcher(request_delay_sec=0), api_key="")


def test_store_symbol_source_is_none():
    assert get_symbol_source("store") is None
