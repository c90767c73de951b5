# src/core/market_data.py
import logging
import random
from typing import Optional, Protocol

import ccxt.async_support as ccxt

from config.settings import settings
from src.schemas.data_models import MarketSnapshot

logger = logging.getLogger(__name__)

# 模拟行情的基准价格 (USD)
BASE_PRICES = {
    'BTC': 45000,
    'ETH': 2800,
    'ADA': 0.45,
    'SOL': 95,
    'DOT': 7.2,
    'MATIC': 0.85,
    'AVAX': 25,
    'LINK': 15,
}


class MarketDataError(RuntimeError):
    """获取单个币种行情失败。"""


class MarketDataProvider(Protocol):
    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        ...


class SimulatedMarketDataProvider:
    """
    基准价格上下随机波动 ±5%，用于演示。
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        base_price = BASE_PRICES.get(symbol.upper(), 1)
        change = (self.rng.random() - 0.5) * 0.1
        return MarketSnapshot(
            symbol=symbol,
            price=base_price * (1 + change),
            volume_24h=self.rng.random() * 1_000_000_000,
            market_cap=base_price * self.rng.random() * 1_000_000_000,
            percent_change_24h=change * 100,
        )


class ExchangeMarketDataProvider:
    """
    通过 ccxt 读取交易所 24h ticker (<SYMBOL>/USDT)。
    交易所不提供市值，market_cap 固定为 0。
    """

    def __init__(self, exchange_id: str = settings.EXCHANGE_ID, quote: str = "USDT"):
        self.exchange_id = exchange_id
        self.quote = quote
        self._exchange = None

    def _get_exchange(self):
        if self._exchange is None:
            exchange_class = getattr(ccxt, self.exchange_id)
            self._exchange = exchange_class({'enableRateLimit': True})
        return self._exchange

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        pair = f"{symbol.upper()}/{self.quote}"
        try:
            ticker = await self._get_exchange().fetch_ticker(pair)
        except ccxt.BaseError as e:
            raise MarketDataError(f"{self.exchange_id} ticker {pair} failed: {e}") from e

        last = ticker.get('last')
        if last is None:
            raise MarketDataError(f"{self.exchange_id} returned no price for {pair}")

        return MarketSnapshot(
            symbol=symbol,
            price=float(last),
            volume_24h=float(ticker.get('quoteVolume') or 0.0),
            market_cap=0.0,
            percent_change_24h=float(ticker.get('percentage') or 0.0),
        )

    async def close(self) -> None:
        if self._exchange is not None:
            await self._exchange.close()
            self._exchange = None


def default_market_provider(mode: str = settings.MARKET_DATA_MODE) -> MarketDataProvider:
    if mode == "exchange":
        logger.info("[MarketData] Using %s exchange tickers", settings.EXCHANGE_ID)
        return ExchangeMarketDataProvider()
    return SimulatedMarketDataProvider()
