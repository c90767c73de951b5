# src/core/collectors.py
import logging
import random
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Protocol
from xml.etree import ElementTree

import httpx

from config.settings import settings
from src.schemas.data_models import DataSource, RawItem, SourceType

logger = logging.getLogger(__name__)

HEADERS = {'User-Agent': 'Mozilla/5.0 (compatible; CryptoSentimentBot/1.0)'}


class SourceUnavailableError(RuntimeError):
    """单个数据源不可用 (网络错误、非 200、解析失败)。"""


class SourceProvider(Protocol):
    async def fetch(self, source: DataSource) -> list[RawItem]:
        ...

    async def check_health(self, source: DataSource) -> bool:
        ...


# --- 模拟数据源 ---

# (id, source_id, content, url, 最大时间偏移秒数)
SAMPLE_POSTS = [
    ('1', 'reddit_crypto',
     'BTC is showing strong support at $45k. This could be the perfect buying opportunity before the next bull run. Diamond hands! 💎',
     'https://reddit.com/r/cryptocurrency/comments/sample1', 3600),
    ('2', 'reddit_bitcoin',
     'Ethereum 2.0 upgrade is revolutionary. The proof of stake consensus will reduce energy consumption by 99%. Very bullish on ETH long term.',
     'https://reddit.com/r/bitcoin/comments/sample2', 3600),
    ('3', 'coindesk_news',
     'Major institutional investors are showing increased interest in Solana. SOL has gained 15% this week amid growing DeFi adoption.',
     'https://coindesk.com/markets/sample3', 7200),
    ('4', 'reddit_crypto',
     'Warning: Seeing a lot of whale movements in ADA. Could be a dump incoming. Be careful with your positions.',
     'https://reddit.com/r/cryptocurrency/comments/sample4', 1800),
    ('5', 'reddit_crypto',
     'HODL strategy is paying off! My portfolio is up 200% this year. Never selling, only buying more on dips. To the moon! 🚀',
     'https://reddit.com/r/cryptocurrency/comments/sample5', 5400),
    ('6', 'coindesk_news',
     'Regulatory uncertainty continues to impact crypto markets. Several exchanges face investigations, creating bearish sentiment.',
     'https://coindesk.com/policy/sample6', 3600),
    ('7', 'reddit_bitcoin',
     'Bitcoin adoption by corporations is accelerating. MicroStrategy, Tesla, and Square leading the way. This is just the beginning.',
     'https://reddit.com/r/bitcoin/comments/sample7', 7200),
    ('8', 'reddit_crypto',
     'DOT ecosystem is exploding with new parachain auctions. Polkadot fundamentals looking very strong for 2024.',
     'https://reddit.com/r/cryptocurrency/comments/sample8', 1800),
]


class SimulatedSourceProvider:
    """
    返回内置的样本帖子，用于演示和测试。
    failure_rate 模拟数据源偶发不可用。
    """

    def __init__(self, failure_rate: float = 0.0, rng: Optional[random.Random] = None):
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()

    async def fetch(self, source: DataSource) -> list[RawItem]:
        if self.rng.random() < self.failure_rate:
            raise SourceUnavailableError(f"{source.id} is temporarily unavailable")

        now = datetime.now(timezone.utc)
        return [
            RawItem(
                id=item_id,
                source=source_id,
                content=content,
                url=url,
                timestamp=now - timedelta(seconds=self.rng.random() * max_age),
            )
            for item_id, source_id, content, url, max_age in SAMPLE_POSTS
            if source_id == source.id
        ]

    async def check_health(self, source: DataSource) -> bool:
        return self.rng.random() >= self.failure_rate


# --- 真实数据源 ---

class RedditJsonProvider:
    """
    读取 subreddit 的 .json 列表 (无需 API Key)
    """

    def __init__(self, timeout: float = settings.HTTP_TIMEOUT_SECONDS, limit: int = 25,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.limit = limit
        self.transport = transport

    async def fetch(self, source: DataSource) -> list[RawItem]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(source.url, params={"limit": self.limit}, headers=HEADERS)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"{source.id}: {e}") from e

        if response.status_code != 200:
            raise SourceUnavailableError(f"{source.id}: HTTP {response.status_code}")

        try:
            children = response.json()["data"]["children"]
        except (ValueError, KeyError, TypeError) as e:
            raise SourceUnavailableError(f"{source.id}: unexpected payload") from e

        items = []
        for child in children:
            post = child.get("data") or {}
            title = post.get("title") or ""
            body = post.get("selftext") or ""
            content = f"{title}\n{body}".strip()
            if not content:
                continue

            created = post.get("created_utc")
            timestamp = (
                datetime.fromtimestamp(float(created), tz=timezone.utc)
                if created else datetime.now(timezone.utc)
            )
            permalink = post.get("permalink")
            items.append(RawItem(
                id=str(post.get("id") or post.get("name") or len(items)),
                source=source.id,
                content=content,
                url=f"https://www.reddit.com{permalink}" if permalink else post.get("url"),
                timestamp=timestamp,
            ))
        return items

    async def check_health(self, source: DataSource) -> bool:
        return await _ping(source.url, self.timeout, self.transport)


class RssFeedProvider:
    """
    读取新闻 RSS (标题 + 描述作为正文)
    """

    def __init__(self, timeout: float = settings.HTTP_TIMEOUT_SECONDS, max_items: int = 40,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.max_items = max_items
        self.transport = transport

    async def fetch(self, source: DataSource) -> list[RawItem]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(source.url, headers=HEADERS)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"{source.id}: {e}") from e

        if response.status_code != 200:
            raise SourceUnavailableError(f"{source.id}: HTTP {response.status_code}")

        try:
            root = ElementTree.fromstring(response.text)
        except ElementTree.ParseError as e:
            raise SourceUnavailableError(f"{source.id}: invalid RSS") from e

        items = []
        for index, entry in enumerate(root.findall(".//item")[:self.max_items]):
            title = entry.findtext("title", "").strip()
            description = entry.findtext("description", "").strip()
            link = entry.findtext("link", "").strip()
            content = f"{title}. {description}".strip(" .")
            if not content:
                continue
            items.append(RawItem(
                id=entry.findtext("guid", "").strip() or link or f"{source.id}_{index}",
                source=source.id,
                content=content,
                url=link or None,
                timestamp=parse_rss_date(entry.findtext("pubDate", "")),
            ))
        return items

    async def check_health(self, source: DataSource) -> bool:
        return await _ping(source.url, self.timeout, self.transport)


def parse_rss_date(value: str) -> datetime:
    """
    将 RSS 的 'Tue, 10 Jun 2025 04:00:00 GMT' 格式转换为 UTC datetime
    """
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError):
        logger.debug("[Collector] Unparseable pubDate: %s", value)
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


async def _ping(url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.head(url, headers=HEADERS, follow_redirects=True)
        return response.status_code < 500
    except httpx.HTTPError as e:
        logger.info("[Collector] Health check failed for %s: %s", url, e)
        return False


# --- 默认数据源注册表 ---

def default_sources() -> list[DataSource]:
    return [
        DataSource(
            id='reddit_crypto',
            name='Reddit Cryptocurrency',
            url='https://www.reddit.com/r/cryptocurrency/.json',
            type=SourceType.REDDIT,
        ),
        DataSource(
            id='reddit_bitcoin',
            name='Reddit Bitcoin',
            url='https://www.reddit.com/r/bitcoin/.json',
            type=SourceType.REDDIT,
        ),
        DataSource(
            id='coindesk_news',
            name='CoinDesk News',
            url='https://www.coindesk.com/arc/outboundfeeds/rss/',
            type=SourceType.NEWS,
        ),
    ]


def default_providers(mode: str = settings.HARVEST_MODE) -> dict[str, SourceProvider]:
    """按数据源 id 返回 provider"""
    sources = default_sources()
    if mode == "live":
        reddit, rss = RedditJsonProvider(), RssFeedProvider()
        return {s.id: (rss if s.type == SourceType.NEWS else reddit) for s in sources}

    simulated = SimulatedSourceProvider(failure_rate=settings.SIMULATED_SOURCE_FAILURE_RATE)
    return {s.id: simulated for s in sources}
