"""Tests for CoinGeckoPriceSource and its rate limiter."""

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services.errors import PriceSourceError
from chainsync.services.price_source import CoinGeckoPriceSource, RateLimiter
from config import PriceSettings
from db.models import HistoricalPrices


def _source(
    session_factory: sessionmaker[Session],
    handler,
    sleeps: list[float] | None = None,
) -> CoinGeckoPriceSource:
    settings = PriceSettings(
        api_url="http://prices.test/api/v3",
        min_interval=0.0,
        retry_attempts=2,
        retry_delay=60.0,
    )
    client = httpx.Client(base_url=settings.api_url, transport=httpx.MockTransport(handler))
    return CoinGeckoPriceSource(
        session_factory,
        settings=settings,
        client=client,
        sleep=(sleeps if sleeps is not None else []).append,
    )


def test_fetches_once_then_serves_from_cache(session_factory: sessionmaker[Session]) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"market_data": {"current_price": {"usd": 0.25}}})

    source = _source(session_factory, handler)
    assert source.get_price("JEWEL", "2024-01-15") == Decimal("0.25")
    assert source.get_price("JEWEL", "2024-01-15") == Decimal("0.25")

    assert len(requests) == 1
    assert requests[0].url.path == "/api/v3/coins/defi-kingdoms/history"
    assert requests[0].url.params["date"] == "15-01-2024"
    with session_factory() as session:
        rows = session.scalars(select(HistoricalPrices)).all()
        assert [(r.token_symbol, r.price_date) for r in rows] == [("JEWEL", "2024-01-15")]


def test_unknown_symbol_and_missing_data_yield_none(session_factory: sessionmaker[Session]) -> None:
    source = _source(session_factory, lambda r: httpx.Response(200, json={"id": "defi-kingdoms"}))
    assert source.get_price("NOPE", "2024-01-15") is None
    assert source.get_price("JEWEL", "2024-01-15") is None


def test_throttled_then_ok(session_factory: sessionmaker[Session]) -> None:
    responses = iter(
        [
            httpx.Response(429),
            httpx.Response(200, json={"market_data": {"current_price": {"usd": 1.01}}}),
        ]
    )
    sleeps: list[float] = []
    source = _source(session_factory, lambda r: next(responses), sleeps)
    assert source.get_price("USDC", "2024-02-01") == Decimal("1.01")
    assert 60.0 in sleeps


def test_persistent_throttling_raises(session_factory: sessionmaker[Session]) -> None:
    source = _source(session_factory, lambda r: httpx.Response(429))
    with pytest.raises(PriceSourceError):
        source.get_price("JEWEL", "2024-01-15")


def test_rate_limiter_spaces_calls() -> None:
    now = [100.0]
    slept: list[float] = []

    def sleep(seconds: float) -> None:
        slept.append(seconds)
        now[0] += seconds

    limiter = RateLimiter(6.5, clock=lambda: now[0], sleep=sleep)
    limiter.wait()
    now[0] += 1.5
    limiter.wait()
    assert slept == [5.0]
