"""测试共用的数据源 / 行情替身，全部是确定性的。"""
from typing import Optional

import pytest

from src.agents.large_agents.correlator_agent import MarketCorrelatorAgent
from src.agents.small_agents.harvester_agent import DataHarvesterAgent
from src.core.collectors import SourceUnavailableError
from src.core.market_data import MarketDataError
from src.schemas.data_models import DataSource, MarketSnapshot, RawItem, SourceType

BTC_POST = (
    "BTC is showing strong support at $45k. This could be the perfect buying "
    "opportunity before the next bull run. Diamond hands! 💎"
)
ETH_POST = (
    "Ethereum 2.0 upgrade is revolutionary. The proof of stake consensus will reduce "
    "energy consumption by 99%. Very bullish on ETH long term."
)
ADA_POST = (
    "Warning: Seeing a lot of whale movements in ADA. Could be a dump incoming. "
    "Be careful with your positions."
)


class StaticSourceProvider:
    """按数据源 id 返回固定内容"""

    def __init__(self, posts: dict[str, list[str]], healthy: bool = True):
        self.posts = posts
        self.healthy = healthy

    async def fetch(self, source: DataSource) -> list[RawItem]:
        return [
            RawItem(id=f"{source.id}_{i}", source=source.id, content=content)
            for i, content in enumerate(self.posts.get(source.id, []))
        ]

    async def check_health(self, source: DataSource) -> bool:
        return self.healthy


class FailingSourceProvider:
    async def fetch(self, source: DataSource) -> list[RawItem]:
        raise SourceUnavailableError(f"{source.id} is down")

    async def check_health(self, source: DataSource) -> bool:
        raise SourceUnavailableError(f"{source.id} is down")


class FixedMarketProvider:
    """固定涨跌幅；failing 中的币种抛出 MarketDataError"""

    def __init__(self, percent_change: float = 5.0, price: float = 100.0,
                 failing: Optional[set[str]] = None):
        self.percent_change = percent_change
        self.price = price
        self.failing = failing or set()
        self.calls: list[str] = []

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        self.calls.append(symbol)
        if symbol in self.failing:
            raise MarketDataError(f"no ticker for {symbol}")
        return MarketSnapshot(
            symbol=symbol,
            price=self.price,
            volume_24h=1_000_000,
            market_cap=10_000_000,
            percent_change_24h=self.percent_change,
        )


class AlternatingMarketProvider(FixedMarketProvider):
    """涨跌幅在 +5 / -5 之间交替，每次调用都不同"""

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        snapshot = await super().fetch_snapshot(symbol)
        sign = 1 if len(self.calls) % 2 else -1
        return snapshot.model_copy(update={"percent_change_24h": sign * 5.0, "price": 100.0 + len(self.calls)})


def make_sources() -> list[DataSource]:
    return [
        DataSource(id="reddit_crypto", name="Reddit Cryptocurrency",
                   url="https://www.reddit.com/r/cryptocurrency/.json", type=SourceType.REDDIT),
        DataSource(id="coindesk_news", name="CoinDesk News",
                   url="https://www.coindesk.com/arc/outboundfeeds/rss/", type=SourceType.NEWS),
    ]


@pytest.fixture
def sources():
    return make_sources()


@pytest.fixture
def static_provider():
    return StaticSourceProvider({
        "reddit_crypto": [BTC_POST, ADA_POST],
        "coindesk_news": [ETH_POST],
    })


@pytest.fixture
def harvester(sources, static_provider):
    return DataHarvesterAgent(sources=sources, providers={s.id: static_provider for s in sources})


@pytest.fixture
def market_provider():
    return FixedMarketProvider(percent_change=5.0)


@pytest.fixture
def correlator(market_provider):
    return MarketCorrelatorAgent(provider=market_provider, history_limit=100, window=10)
