# src/core/lexicon.py
"""
基于规则和词表的本地情绪打分器，不依赖任何外部 API。

词表分为两级:
- 加密货币专用词 (权重 ±2)，按子串匹配 token
- 通用情绪词 (权重 ±1)，按整词匹配 token
"""
import re
from typing import Optional

from src.schemas.data_models import CryptoEntity, Sentiment, SentimentResult

CRYPTO_POSITIVE_WORDS = [
    'moon', 'bullish', 'hodl', 'diamond hands', 'pump', 'rally', 'surge',
    'breakout', 'bull run', 'to the moon', 'lambo', 'gains', 'profit',
    'adoption', 'institutional', 'partnership', 'upgrade', 'innovation',
    'breakthrough', 'strong support', 'buying opportunity', 'undervalued',
    'bullish trend', 'positive momentum', 'accumulate', 'long term',
    'fundamentals', 'promising', 'revolutionary', 'game changer',
]

CRYPTO_NEGATIVE_WORDS = [
    'bearish', 'dump', 'crash', 'rug pull', 'scam', 'ponzi', 'fud',
    'panic sell', 'bear trap', 'dead cat bounce', 'bagholders', 'rekt',
    'liquidated', 'correction', 'dip', 'falling knife', 'whale dump',
    'market manipulation', 'overvalued', 'bubble', 'risky', 'volatile',
    'uncertain', 'regulatory concerns', 'ban', 'crackdown', 'investigation',
]

GENERAL_POSITIVE_WORDS = {
    'good', 'great', 'excellent', 'amazing', 'fantastic', 'wonderful',
    'positive', 'optimistic', 'confident', 'strong', 'solid', 'impressive',
    'successful', 'growth', 'increase', 'rise', 'up', 'high', 'best',
    'win', 'victory', 'succeed', 'opportunity', 'potential', 'bright',
}

GENERAL_NEGATIVE_WORDS = {
    'bad', 'terrible', 'awful', 'horrible', 'disappointing', 'negative',
    'pessimistic', 'weak', 'poor', 'decline', 'decrease', 'fall', 'drop',
    'down', 'low', 'worst', 'lose', 'loss', 'fail', 'failure', 'problem',
    'issue', 'concern', 'worry', 'fear', 'doubt', 'risk', 'danger',
}

# (关键词A, 关键词B, 加减分)
CONTEXT_ADJUSTMENTS = [
    ('buy', 'dip', 1),
    ('hold', 'long', 1),
    ('sell', 'crash', -1),
]

CRYPTO_SYMBOLS = {
    'BTC': 'Bitcoin',
    'ETH': 'Ethereum',
    'ADA': 'Cardano',
    'SOL': 'Solana',
    'DOT': 'Polkadot',
    'MATIC': 'Polygon',
    'AVAX': 'Avalanche',
    'LINK': 'Chainlink',
    'UNI': 'Uniswap',
    'DOGE': 'Dogecoin',
    'SHIB': 'Shiba Inu',
    'XRP': 'Ripple',
    'LTC': 'Litecoin',
    'BCH': 'Bitcoin Cash',
    'ETC': 'Ethereum Classic',
}

POSITIVE_THRESHOLD = 0.5
AGGREGATE_THRESHOLD = 0.3
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95
MAX_CONTEXTS = 3

_PUNCTUATION = re.compile(r'[^\w\s]')
_SENTENCE_SPLIT = re.compile(r'[.!?]+')


def full_name(symbol: str) -> Optional[str]:
    return CRYPTO_SYMBOLS.get(symbol.upper())


def classify(score: float, threshold: float = POSITIVE_THRESHOLD) -> Sentiment:
    if score > threshold:
        return Sentiment.POSITIVE
    if score < -threshold:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def score(text: str) -> SentimentResult:
    """
    对单条文本打分，返回情绪分类、置信度和原始分值。
    置信度只取决于命中词密度: clamp(0.1, 命中数/总词数 + 0.3, 0.95)
    """
    clean_text = _PUNCTUATION.sub('', text.lower())
    words = clean_text.split()
    # 空文本按一个空词处理
    total_words = max(len(words), 1)

    total = 0.0
    hits = 0

    for word in words:
        if any(pos in word for pos in CRYPTO_POSITIVE_WORDS):
            total += 2
            hits += 1
        if any(neg in word for neg in CRYPTO_NEGATIVE_WORDS):
            total -= 2
            hits += 1

    for word in words:
        if word in GENERAL_POSITIVE_WORDS:
            total += 1
            hits += 1
        if word in GENERAL_NEGATIVE_WORDS:
            total -= 1
            hits += 1

    for first, second, boost in CONTEXT_ADJUSTMENTS:
        if first in clean_text and second in clean_text:
            total += boost

    confidence = min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, hits / total_words + 0.3))

    return SentimentResult(
        sentiment=classify(total),
        confidence=round(confidence, 2),
        score=round(total, 2),
    )


def extract_entities(text: str) -> list[CryptoEntity]:
    """
    识别文本中的币种。代码 (BTC) 区分大小写，全称 (Bitcoin) 不区分大小写。
    """
    entities = []
    for symbol, name in CRYPTO_SYMBOLS.items():
        symbol_matches = re.findall(rf'\b{re.escape(symbol)}\b', text)
        name_matches = re.findall(rf'\b{re.escape(name)}\b', text, flags=re.IGNORECASE)
        mentions = len(symbol_matches) + len(name_matches)

        if mentions > 0:
            entities.append(CryptoEntity(
                symbol=symbol,
                mentions=mentions,
                context=_extract_context(text, [symbol, name]),
            ))
    return entities


def _extract_context(text: str, terms: list[str]) -> list[str]:
    contexts = []
    for sentence in _SENTENCE_SPLIT.split(text):
        lowered = sentence.lower()
        if any(term.lower() in lowered for term in terms):
            contexts.append(sentence.strip())
        if len(contexts) == MAX_CONTEXTS:
            break
    return contexts


def batch_analyze(texts: list[str]) -> list[dict]:
    return [
        {**score(text).model_dump(), "entities": extract_entities(text)}
        for text in texts
    ]


def mentions_symbol(text: str, symbol: str) -> bool:
    """文本中是否出现该币种的代码或全称 (未知币种没有全称，视为全部命中)"""
    name = full_name(symbol) or ''
    return symbol.upper() in text.upper() or name.lower() in text.lower()


def aggregate_for_symbol(texts: list[str], symbol: str) -> SentimentResult:
    """
    汇总多条文本中某一币种的情绪: 分值和置信度取平均，按 ±0.3 重新分类。
    """
    relevant = [text for text in texts if mentions_symbol(text, symbol)]
    if not relevant:
        return SentimentResult(sentiment=Sentiment.NEUTRAL, confidence=0, score=0)

    results = [score(text) for text in relevant]
    avg_score = sum(r.score for r in results) / len(results)
    avg_confidence = sum(r.confidence for r in results) / len(results)

    return SentimentResult(
        sentiment=classify(avg_score, AGGREGATE_THRESHOLD),
        confidence=round(avg_confidence, 2),
        score=round(avg_score, 2),
    )
