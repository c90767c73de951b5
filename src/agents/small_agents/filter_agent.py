# src/agents/small_agents/filter_agent.py
import re
from typing import Optional

from config.settings import settings
from src.core import lexicon

CRYPTO_KEYWORDS = [
    'bitcoin', 'btc', 'ethereum', 'eth', 'cryptocurrency', 'crypto',
    'blockchain', 'defi', 'nft', 'altcoin', 'trading', 'hodl',
    'cardano', 'ada', 'solana', 'sol', 'polkadot', 'dot',
]

KEYWORD_WEIGHT = 0.2
SYMBOL_WEIGHT = 0.5
NAME_WEIGHT = 0.4
QUALITY_WEIGHT = 0.1

_PERCENT_PATTERN = re.compile(r'\d+%')
_DOLLAR_PATTERN = re.compile(r'\$\d+')


def calculate_relevance_score(content: str, target_symbol: Optional[str] = None) -> float:
    """
    相关性打分 (0~1): 关键词命中 + 目标币种命中 + 内容质量加分。
    """
    score = 0.0
    lower_content = content.lower()

    for keyword in CRYPTO_KEYWORDS:
        if keyword in lower_content:
            score += KEYWORD_WEIGHT

    if target_symbol:
        if target_symbol.lower() in lower_content:
            score += SYMBOL_WEIGHT
        name = lexicon.full_name(target_symbol)
        if name and name.lower() in lower_content:
            score += NAME_WEIGHT

    # 内容质量: 长度适中、带链接、带百分比、带价格
    if 50 <= len(content) < 500:
        score += QUALITY_WEIGHT
    if 'http' in content:
        score += QUALITY_WEIGHT
    if _PERCENT_PATTERN.search(content):
        score += QUALITY_WEIGHT
    if _DOLLAR_PATTERN.search(content):
        score += QUALITY_WEIGHT

    return min(1.0, score)


def run_filter_agent(content: str, target_symbol: Optional[str] = None,
                     floor: float = settings.RELEVANCE_FLOOR) -> Optional[float]:
    """
    返回相关性分数；低于等于阈值 (噪音) 时返回 None。
    """
    relevance = calculate_relevance_score(content, target_symbol)
    if relevance > floor:
        return relevance
    return None
