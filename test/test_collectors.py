import random
from datetime import datetime, timezone

import httpx
import pytest

from src.core.collectors import (
    RedditJsonProvider, RssFeedProvider, SimulatedSourceProvider,
    SourceUnavailableError, default_providers, default_sources, parse_rss_date,
)

RSS_BODY = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item>
    <title>Bitcoin ETF inflows hit $1B</title>
    <description>Institutional demand keeps rising.</description>
    <link>https://news.example.com/btc-etf</link>
    <guid>btc-etf-1</guid>
    <pubDate>Tue, 10 Jun 2025 04:00:00 GMT</pubDate>
  </item>
  <item>
    <title></title>
    <description></description>
  </item>
</channel></rss>"""

REDDIT_BODY = {
    "data": {
        "children": [
            {"data": {"id": "abc", "title": "ETH to the moon", "selftext": "Staking yields look great",
                      "permalink": "/r/ethereum/comments/abc", "created_utc": 1749528000}},
            {"data": {"id": "empty", "title": "", "selftext": ""}},
        ]
    }
}


def _source(source_id):
    return next(s for s in default_sources() if s.id == source_id)


@pytest.mark.asyncio
async def test_rss_provider_parses_items():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=RSS_BODY))
    provider = RssFeedProvider(transport=transport)

    [item] = await provider.fetch(_source("coindesk_news"))

    assert item.id == "btc-etf-1"
    assert item.source == "coindesk_news"
    assert item.content == "Bitcoin ETF inflows hit $1B. Institutional demand keeps rising"
    assert item.url == "https://news.example.com/btc-etf"
    assert item.timestamp == datetime(2025, 6, 10, 4, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_rss_provider_rejects_bad_status_and_payload():
    down = RssFeedProvider(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    broken = RssFeedProvider(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<rss")))

    with pytest.raises(SourceUnavailableError):
        await down.fetch(_source("coindesk_news"))
    with pytest.raises(SourceUnavailableError):
        await broken.fetch(_source("coindesk_news"))


@pytest.mark.asyncio
async def test_reddit_provider_parses_listing():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=REDDIT_BODY)

    provider = RedditJsonProvider(transport=httpx.MockTransport(handler), limit=10)

    [item] = await provider.fetch(_source("reddit_crypto"))

    assert seen[0].url.params["limit"] == "10"
    assert item.id == "abc"
    assert item.content == "ETH to the moon\nStaking yields look great"
    assert item.url == "https://www.reddit.com/r/ethereum/comments/abc"
    assert item.timestamp == datetime.fromtimestamp(1749528000, tz=timezone.utc)


@pytest.mark.asyncio
async def test_reddit_provider_wraps_network_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = RedditJsonProvider(transport=httpx.MockTransport(handler))

    with pytest.raises(SourceUnavailableError):
        await provider.fetch(_source("reddit_crypto"))
    assert await provider.check_health(_source("reddit_crypto")) is False


@pytest.mark.asyncio
async def test_health_check_uses_status_code():
    provider = RssFeedProvider(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    assert await provider.check_health(_source("coindesk_news")) is True


@pytest.mark.asyncio
async def test_simulated_provider_returns_posts_for_source():
    provider = SimulatedSourceProvider(rng=random.Random(1))

    items = await provider.fetch(_source("coindesk_news"))

    assert [item.id for item in items] == ["3", "6"]
    assert all(item.timestamp <= datetime.now(timezone.utc) for item in items)


@pytest.mark.asyncio
async def test_simulated_provider_failure_rate():
    provider = SimulatedSourceProvider(failure_rate=1.0)

    with pytest.raises(SourceUnavailableError):
        await provider.fetch(_source("reddit_crypto"))
    assert await provider.check_health(_source("reddit_crypto")) is False


def test_parse_rss_date_falls_back_to_now():
    before = datetime.now(timezone.utc)

    assert parse_rss_date("not a date") >= before
    assert parse_rss_date("") >= before


def test_default_providers_live_mode_routes_by_type():
    providers = default_providers("live")

    assert isinstance(providers["coindesk_news"], RssFeedProvider)
    assert isinstance(providers["reddit_bitcoin"], RedditJsonProvider)
