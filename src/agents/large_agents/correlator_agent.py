# src/agents/large_agents/correlator_agent.py
import asyncio
import logging
import math
from collections import deque
from typing import Optional

from config.settings import settings
from src.core.market_data import MarketDataError, MarketDataProvider, default_market_provider
from src.schemas.data_models import (
    AlertSeverity, AlertType, Alignment, CorrelationResult, MarketAlert,
    MarketSnapshot, MarketSummary, PriceDirection, RiskLevel, Sentiment,
    SentimentSummary,
)

logger = logging.getLogger(__name__)

# 价格方向阈值 (24h 涨跌幅 %)
DIRECTION_THRESHOLD = 2.0
# 异常波动阈值
VOLATILITY_THRESHOLD = 10.0
LOW_CONFIDENCE = 0.4
WEAK_CORRELATION = 0.2
MAX_CONFIDENCE = 0.9

# 看板上的模拟占比
SIMULATED_HIGH_RISK_RATIO = 0.15
SIMULATED_DIVERGENT_RATIO = 0.25


def get_price_direction(percent_change: float) -> PriceDirection:
    if percent_change > DIRECTION_THRESHOLD:
        return PriceDirection.UP
    if percent_change < -DIRECTION_THRESHOLD:
        return PriceDirection.DOWN
    return PriceDirection.SIDEWAYS


def calculate_alignment(sentiment: Sentiment, price: PriceDirection) -> Alignment:
    if sentiment == Sentiment.NEUTRAL or price == PriceDirection.SIDEWAYS:
        return Alignment.NEUTRAL
    if (sentiment == Sentiment.POSITIVE and price == PriceDirection.UP) or \
            (sentiment == Sentiment.NEGATIVE and price == PriceDirection.DOWN):
        return Alignment.ALIGNED
    return Alignment.DIVERGENT


def correlation_coefficient(sentiments: list[SentimentSummary], prices: list[MarketSnapshot],
                            window: int = settings.CORRELATION_WINDOW) -> float:
    """
    简化的相关系数: 最近 window 组 (情绪分值 × 涨跌幅/100) 之和除以 window，截断到 [-1, 1]。
    样本不足时返回 0。
    """
    if len(sentiments) < window or len(prices) < window:
        return 0.0

    total = sum(
        s.score * (p.percent_change_24h / 100)
        for s, p in zip(sentiments[-window:], prices[-window:])
    )
    return max(-1.0, min(1.0, total / window))


def risk_score(sentiment: SentimentSummary, market: MarketSnapshot, correlation: float) -> int:
    score = 0
    # 情绪明确但置信度低
    if sentiment.sentiment != Sentiment.NEUTRAL and sentiment.confidence < LOW_CONFIDENCE:
        score += 2
    # 价格剧烈波动
    if abs(market.percent_change_24h) > VOLATILITY_THRESHOLD:
        score += 2
    # 相关性弱，不可预测
    if abs(correlation) < WEAK_CORRELATION:
        score += 1
    alignment = calculate_alignment(sentiment.sentiment, get_price_direction(market.percent_change_24h))
    if alignment == Alignment.DIVERGENT:
        score += 2
    return score


def risk_level(score: int) -> RiskLevel:
    if score >= 4:
        return RiskLevel.HIGH
    if score >= 2:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def generate_recommendation(sentiment: SentimentSummary, alignment: Alignment, level: RiskLevel) -> str:
    if level == RiskLevel.HIGH:
        return f"High risk detected for {sentiment.symbol}. Exercise extreme caution. Consider reducing position size."

    if alignment == Alignment.ALIGNED and sentiment.confidence > 0.7:
        if sentiment.sentiment == Sentiment.POSITIVE:
            return "Positive sentiment aligns with price movement. Consider buying opportunity with proper risk management."
        if sentiment.sentiment == Sentiment.NEGATIVE:
            return "Negative sentiment aligns with price decline. Consider selling or shorting with stop losses."

    if alignment == Alignment.DIVERGENT:
        return "Sentiment and price are diverging. Monitor closely for potential trend reversal."

    if level == RiskLevel.MEDIUM:
        return "Medium risk level. Wait for clearer signals before making significant moves."

    return "Low risk, neutral sentiment. Good for DCA strategy or holding current positions."


def generate_market_alerts(results: list[CorrelationResult]) -> list[MarketAlert]:
    alerts = []
    for result in results:
        if result.risk_level == RiskLevel.HIGH:
            alerts.append(MarketAlert(
                type=AlertType.RISK_WARNING,
                symbol=result.symbol,
                message=f"High risk detected for {result.symbol}: {result.recommendation}",
                severity=AlertSeverity.HIGH,
            ))

        if result.alignment == Alignment.DIVERGENT and result.confidence > 0.6:
            alerts.append(MarketAlert(
                type=AlertType.SENTIMENT_DIVERGENCE,
                symbol=result.symbol,
                message=f"Sentiment-price divergence detected for {result.symbol}. Potential trend reversal.",
                severity=AlertSeverity.MEDIUM,
            ))

        if result.alignment == Alignment.ALIGNED and result.risk_level == RiskLevel.LOW and result.confidence > 0.7:
            alerts.append(MarketAlert(
                type=AlertType.OPPORTUNITY,
                symbol=result.symbol,
                message=f"Strong {result.sentiment_direction.value} sentiment aligns with price for {result.symbol}",
                severity=AlertSeverity.LOW,
            ))
    return alerts


class SymbolLimitError(MarketDataError):
    """已跟踪的币种数达到上限，新币种不再记录历史。"""


class MarketCorrelatorAgent:
    """
    情绪与行情的相关性分析。
    每个币种的价格/情绪滚动历史跨工作流共享，按币种加锁串行写入。
    两个历史总是成对追加，第 i 个情绪样本对应第 i 个价格样本。
    跟踪的币种数有上限 (max_symbols)，超出的新币种会被跳过。
    """

    def __init__(self, provider: Optional[MarketDataProvider] = None,
                 history_limit: int = settings.MARKET_HISTORY_LIMIT,
                 window: int = settings.CORRELATION_WINDOW,
                 max_symbols: int = settings.MARKET_MAX_SYMBOLS):
        self.provider = provider or default_market_provider()
        self.window = window
        self.history_limit = history_limit
        self.max_symbols = max_symbols
        self._price_history: dict[str, deque[MarketSnapshot]] = {}
        self._sentiment_history: dict[str, deque[SentimentSummary]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def fetch_market_data(self, symbol: str) -> MarketSnapshot:
        """只读行情，不写入历史"""
        return await self.provider.fetch_snapshot(symbol)

    def _track(self, symbol: str) -> asyncio.Lock:
        """
        返回该币种的锁，首次出现时登记历史。中间没有 await，登记是原子的。
        """
        lock = self._locks.get(symbol)
        if lock is not None:
            return lock
        if len(self._locks) >= self.max_symbols:
            raise SymbolLimitError(f"Tracking limit of {self.max_symbols} symbols reached, {symbol} ignored")

        self._price_history[symbol] = deque(maxlen=self.history_limit)
        self._sentiment_history[symbol] = deque(maxlen=self.history_limit)
        lock = self._locks[symbol] = asyncio.Lock()
        return lock

    async def correlate_one(self, sentiment: SentimentSummary) -> tuple[CorrelationResult, MarketSnapshot]:
        """
        拉取一次行情并与情绪成对记录，返回结果和实际使用的行情快照。
        """
        async with self._track(sentiment.symbol):
            market = await self.provider.fetch_snapshot(sentiment.symbol)
            self._price_history[sentiment.symbol].append(market)
            self._sentiment_history[sentiment.symbol].append(sentiment)
            return self._calculate(sentiment, market), market

    async def correlate(self, sentiments: list[SentimentSummary]) -> list[CorrelationResult]:
        results = []
        for sentiment in sentiments:
            try:
                result, _ = await self.correlate_one(sentiment)
            except Exception as e:
                # 单个币种失败不影响其他币种
                logger.error("[Correlator] Error correlating %s: %s", sentiment.symbol, e)
                continue
            results.append(result)
        return results

    def _calculate(self, sentiment: SentimentSummary, market: MarketSnapshot) -> CorrelationResult:
        price_direction = get_price_direction(market.percent_change_24h)
        alignment = calculate_alignment(sentiment.sentiment, price_direction)
        coefficient = correlation_coefficient(
            list(self._sentiment_history[sentiment.symbol]),
            list(self._price_history[sentiment.symbol]),
            self.window,
        )
        level = risk_level(risk_score(sentiment, market, coefficient))

        return CorrelationResult(
            symbol=sentiment.symbol,
            sentiment_market_correlation=coefficient,
            price_direction=price_direction,
            sentiment_direction=sentiment.sentiment,
            alignment=alignment,
            risk_level=level,
            recommendation=generate_recommendation(sentiment, alignment, level),
            confidence=min(sentiment.confidence, MAX_CONFIDENCE),
        )

    async def generate_market_alerts(self, results: list[CorrelationResult]) -> list[MarketAlert]:
        return generate_market_alerts(results)

    def price_history(self, symbol: str) -> list[MarketSnapshot]:
        return list(self._price_history.get(symbol, ()))

    def sentiment_history(self, symbol: str) -> list[SentimentSummary]:
        return list(self._sentiment_history.get(symbol, ()))

    def get_market_summary(self) -> MarketSummary:
        total = sum(1 for history in self._price_history.values() if history)
        return MarketSummary(
            total_tracked=total,
            high_risk_assets=math.floor(total * SIMULATED_HIGH_RISK_RATIO),
            divergent_signals=math.floor(total * SIMULATED_DIVERGENT_RATIO),
        )
