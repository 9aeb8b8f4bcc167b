"""Daily historical token prices: local cache first, CoinGecko second."""

import threading
import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from chainsync.services._helpers import now_iso
from chainsync.services.errors import PriceSourceError
from config import PriceSettings, get_settings
from db.connection import session_scope
from db.enums import PriceProvider
from db.models import HistoricalPrices

logger = structlog.get_logger(__name__)

COINGECKO_IDS: dict[str, str] = {
    "JEWEL": "defi-kingdoms",
    "CRYSTAL": "defi-kingdoms-crystal",
    "USDC": "usd-coin",
    "ETH": "ethereum",
    "AVAX": "avalanche-2",
    "BTC": "bitcoin",
    "KAIA": "klaytn",
    "FTM": "fantom",
    "MATIC": "matic-network",
}


class PriceSource(Protocol):
    def get_price(self, symbol: str, day: str) -> Decimal | None:
        """USD price of ``symbol`` on UTC day ``YYYY-MM-DD``, or None if unknown."""
        ...


class RateLimiter:
    """Spaces calls at least ``min_interval`` seconds apart across threads."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_at = 0.0

    def wait(self) -> None:
        with self._lock:
            delay = self._next_at - self._clock()
            if delay > 0:
                self._sleep(delay)
            self._next_at = self._clock() + self.min_interval


class CoinGeckoPriceSource:
    """Looks prices up in ``historical_prices`` and fills misses from CoinGecko.

    Shared by all enrichment workers; the rate limiter keeps the whole process
    under the public API quota.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: PriceSettings | None = None,
        client: httpx.Client | None = None,
        coin_ids: dict[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings().price
        self.coin_ids = coin_ids if coin_ids is not None else COINGECKO_IDS
        self._client = client or httpx.Client(
            base_url=self.settings.api_url,
            timeout=httpx.Timeout(self.settings.timeout),
        )
        self._sleep = sleep
        self._limiter = RateLimiter(self.settings.min_interval, sleep=sleep)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cached_price(self, symbol: str, day: str) -> Decimal | None:
        with session_scope(self.session_factory) as session:
            row = session.scalar(
                select(HistoricalPrices).where(
                    HistoricalPrices.token_symbol == symbol,
                    HistoricalPrices.price_date == day,
                )
            )
            return Decimal(str(row.price_usd)) if row else None

    def store_price(
        self,
        symbol: str,
        day: str,
        price: Decimal,
        source: PriceProvider = PriceProvider.COINGECKO,
    ) -> None:
        with session_scope(self.session_factory) as session:
            exists = session.scalar(
                select(HistoricalPrices.id).where(
                    HistoricalPrices.token_symbol == symbol,
                    HistoricalPrices.price_date == day,
                )
            )
            if exists:
                return
            session.add(
                HistoricalPrices(
                    id=f"{symbol}:{day}",
                    token_symbol=symbol,
                    price_date=day,
                    price_usd=float(price),
                    source=source.value,
                    created_at=now_iso(),
                )
            )

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    def fetch_price(self, symbol: str, day: str) -> Decimal | None:
        coin_id = self.coin_ids.get(symbol.upper())
        if coin_id is None:
            logger.debug("No CoinGecko id for symbol", symbol=symbol)
            return None

        params = {"date": date.fromisoformat(day).strftime("%d-%m-%Y"), "localization": "false"}
        headers = {"x-cg-demo-api-key": self.settings.api_key} if self.settings.api_key else {}
        attempts = max(1, self.settings.retry_attempts)
        for attempt in range(attempts):
            self._limiter.wait()
            try:
                resp = self._client.get(f"/coins/{coin_id}/history", params=params, headers=headers)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                logger.warning(
                    "Price fetch failed, retrying",
                    symbol=symbol,
                    day=day,
                    attempt=attempt + 1,
                    error=str(e),
                )
                continue
            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < attempts - 1:
                    logger.warning(
                        "Price API throttled",
                        symbol=symbol,
                        status=resp.status_code,
                        attempt=attempt + 1,
                    )
                    self._sleep(self.settings.retry_delay)
                continue
            if resp.status_code == 404:
                return None
            if resp.status_code >= 400:
                raise PriceSourceError(f"CoinGecko {coin_id} {day}: HTTP {resp.status_code}")
            return self._parse_price(resp.json())
        raise PriceSourceError(f"CoinGecko {coin_id} {day}: retries exhausted")

    @staticmethod
    def _parse_price(data: object) -> Decimal | None:
        try:
            raw = data["market_data"]["current_price"]["usd"]  # type: ignore[index]
        except (KeyError, TypeError):
            return None
        try:
            price = Decimal(str(raw))
        except InvalidOperation:
            return None
        return price if price > 0 else None

    def get_price(self, symbol: str, day: str) -> Decimal | None:
        cached = self.cached_price(symbol, day)
        if cached is not None:
            return cached
        price = self.fetch_price(symbol, day)
        if price is not None:
            self.store_price(symbol, day, price)
            logger.info("Cached historical price", symbol=symbol, day=day, price_usd=str(price))
        return price
