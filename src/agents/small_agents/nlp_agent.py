# src/agents/small_agents/nlp_agent.py
import logging
import re
import uuid
from collections import Counter
from typing import Optional

from src.core import lexicon
from src.schemas.data_models import (
    AnalysisMetrics, EmotionalTone, HarvestedItem, ProcessedItem,
    Sentiment, SentimentDistribution, SentimentSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_SYMBOL = "BTC"

RISK_KEYWORDS = [
    'scam', 'rug pull', 'ponzi', 'pump and dump', 'insider trading',
    'manipulation', 'whale movement', 'liquidation', 'margin call',
    'regulatory risk', 'investigation', 'ban', 'crackdown',
]

# 正则模式 -> 风险描述
RISK_PATTERNS = [
    (re.compile(r'guaranteed.*profit', re.IGNORECASE), 'unrealistic promises'),
    (re.compile(r'get.*rich.*quick', re.IGNORECASE), 'get rich quick scheme'),
    (re.compile(r'only.*going.*up', re.IGNORECASE), 'overly optimistic claims'),
]

TOPIC_KEYWORDS = {
    'regulation': ['sec', 'regulation', 'regulatory', 'compliance', 'legal'],
    'adoption': ['adoption', 'institutional', 'mainstream', 'corporate', 'enterprise'],
    'technology': ['upgrade', 'protocol', 'blockchain', 'smart contract', 'consensus'],
    'trading': ['price', 'volume', 'trading', 'market', 'exchange'],
    'defi': ['defi', 'yield farming', 'liquidity', 'staking', 'lending'],
    'nft': ['nft', 'collectible', 'art', 'gaming', 'metaverse'],
}

# 顺序即平局时的优先级
TONE_WORDS = [
    (EmotionalTone.FEAR, ['fear', 'scared', 'worried', 'panic', 'anxious', 'crash', 'dump']),
    (EmotionalTone.GREED, ['moon', 'lambo', 'gains', 'pump', 'profit', 'rich', 'millionaire']),
    (EmotionalTone.EXCITEMENT, ['excited', 'amazing', 'incredible', 'revolutionary', 'breakthrough']),
    (EmotionalTone.UNCERTAINTY, ['maybe', 'might', 'possibly', 'uncertain', 'confused', 'unsure']),
]


def process_content(content: str, source_id: str) -> ProcessedItem:
    """
    运行 NLP 分析，将原始文本转换为结构化数据。
    """
    result = lexicon.score(content)
    return ProcessedItem(
        id=f"processed_{uuid.uuid4().hex[:12]}",
        original_content=content,
        sentiment=result.sentiment,
        confidence=result.confidence,
        score=result.score,
        entities=lexicon.extract_entities(content),
        topics=extract_topics(content),
        emotional_tone=analyze_emotional_tone(content),
        risk_factors=identify_risk_factors(content),
    )


def batch_process(items: list[HarvestedItem]) -> list[ProcessedItem]:
    processed = []
    for item in items:
        try:
            result = process_content(item.content, item.source)
        except Exception as e:
            # 单条失败不影响整个批次
            logger.error("[NLP] Error processing content %s: %s", item.id, e)
            continue
        result.id = f"{item.id}_processed"
        processed.append(result)

    logger.info("[NLP] Processed %d/%d items", len(processed), len(items))
    return processed


def extract_topics(content: str) -> list[str]:
    lower_content = content.lower()
    return [
        topic for topic, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in lower_content for keyword in keywords)
    ]


def analyze_emotional_tone(content: str) -> EmotionalTone:
    lower_content = content.lower()
    counts = [
        (tone, sum(1 for word in words if word in lower_content))
        for tone, words in TONE_WORDS
    ]
    max_count = max(count for _, count in counts)
    if max_count == 0:
        return EmotionalTone.NEUTRAL
    return next(tone for tone, count in counts if count == max_count)


def identify_risk_factors(content: str) -> list[str]:
    lower_content = content.lower()
    risks = [keyword for keyword in RISK_KEYWORDS if keyword in lower_content]
    risks.extend(label for pattern, label in RISK_PATTERNS if pattern.search(content))
    return risks


def generate_analysis_metrics(items: list[ProcessedItem]) -> AnalysisMetrics:
    """批量结果的汇总统计 (情绪占比为百分比)"""
    total = len(items)
    if total == 0:
        return AnalysisMetrics(
            total_processed=0,
            sentiment_distribution=SentimentDistribution(),
            average_confidence=0.0,
            top_entities=[],
        )

    sentiment_counts = Counter(item.sentiment for item in items)
    entity_counts: Counter = Counter()
    for item in items:
        for entity in item.entities:
            entity_counts[entity.symbol] += entity.mentions

    return AnalysisMetrics(
        total_processed=total,
        sentiment_distribution=SentimentDistribution(
            positive=round(sentiment_counts[Sentiment.POSITIVE] / total * 100),
            negative=round(sentiment_counts[Sentiment.NEGATIVE] / total * 100),
            neutral=round(sentiment_counts[Sentiment.NEUTRAL] / total * 100),
        ),
        average_confidence=round(sum(item.confidence for item in items) / total, 2),
        top_entities=[symbol for symbol, _ in entity_counts.most_common(10)],
    )


def filter_by_confidence(items: list[ProcessedItem], min_confidence: float = 0.5) -> list[ProcessedItem]:
    return [item for item in items if item.confidence >= min_confidence]


def _summarize(items: list[ProcessedItem], symbol: str) -> SentimentSummary:
    """按置信度加权的平均分值，±0.3 重新分类"""
    if not items:
        return SentimentSummary(symbol=symbol, sentiment=Sentiment.NEUTRAL, confidence=0, score=0, mention_count=0)

    total_weight = sum(item.confidence for item in items)
    weighted_score = sum(item.score * item.confidence for item in items)
    avg_score = weighted_score / total_weight if total_weight else 0.0
    mentions = sum(e.mentions for item in items for e in item.entities if e.symbol == symbol)

    return SentimentSummary(
        symbol=symbol,
        sentiment=lexicon.classify(avg_score, lexicon.AGGREGATE_THRESHOLD),
        confidence=round(total_weight / len(items), 2),
        score=round(avg_score, 2),
        mention_count=mentions,
    )


def crypto_sentiment(items: list[ProcessedItem], symbol: str) -> SentimentSummary:
    """某一币种在批量结果中的整体情绪"""
    relevant = [item for item in items if any(e.symbol == symbol for e in item.entities)]
    return _summarize(relevant, symbol)


def summarize_by_symbol(items: list[ProcessedItem], fallback_symbol: Optional[str] = None) -> list[SentimentSummary]:
    """
    按主币种 (第一个识别出的实体，否则为目标币种，再否则 BTC) 分组汇总，
    作为相关性分析的输入。
    """
    groups: dict[str, list[ProcessedItem]] = {}
    for item in items:
        primary = item.entities[0].symbol if item.entities else (fallback_symbol or DEFAULT_SYMBOL)
        groups.setdefault(primary.upper(), []).append(item)

    return [_summarize(group, symbol) for symbol, group in groups.items()]
