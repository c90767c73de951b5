from conftest import ADA_POST, BTC_POST, ETH_POST

from src.agents.small_agents import nlp_agent
from src.schemas.data_models import (
    CryptoEntity, EmotionalTone, HarvestedItem, ProcessedItem, Sentiment,
)


def _harvested(item_id: str, content: str) -> HarvestedItem:
    return HarvestedItem(id=item_id, source="reddit_crypto", content=content, relevance_score=0.8)


def _processed(score: float, confidence: float, symbols: list[str]) -> ProcessedItem:
    return ProcessedItem(
        id="p",
        original_content="",
        sentiment=Sentiment.NEUTRAL,
        confidence=confidence,
        score=score,
        entities=[CryptoEntity(symbol=s, mentions=1) for s in symbols],
    )


def test_process_content_extracts_structure():
    item = nlp_agent.process_content(ADA_POST, "reddit_crypto")

    assert item.original_content == ADA_POST
    assert [e.symbol for e in item.entities] == ["ADA"]
    assert "whale movement" in item.risk_factors
    assert item.emotional_tone == EmotionalTone.FEAR


def test_extract_topics():
    assert "technology" in nlp_agent.extract_topics(ETH_POST)
    assert nlp_agent.extract_topics("nothing to see") == []


def test_emotional_tone_defaults_to_neutral():
    assert nlp_agent.analyze_emotional_tone("the sky is blue") == EmotionalTone.NEUTRAL


def test_emotional_tone_tie_prefers_fear():
    assert nlp_agent.analyze_emotional_tone("panic then moon") == EmotionalTone.FEAR


def test_risk_patterns():
    risks = nlp_agent.identify_risk_factors("Guaranteed 10x profit, get rich quick!")

    assert "unrealistic promises" in risks
    assert "get rich quick scheme" in risks


def test_batch_process_skips_failing_items(monkeypatch):
    original = nlp_agent.process_content

    def flaky(content, source_id):
        if content == "boom":
            raise ValueError("tokenizer exploded")
        return original(content, source_id)

    monkeypatch.setattr(nlp_agent, "process_content", flaky)

    results = nlp_agent.batch_process([_harvested("1", BTC_POST), _harvested("2", "boom")])

    assert [r.id for r in results] == ["1_processed"]


def test_generate_analysis_metrics_empty():
    metrics = nlp_agent.generate_analysis_metrics([])

    assert metrics.total_processed == 0
    assert metrics.average_confidence == 0
    assert metrics.top_entities == []


def test_generate_analysis_metrics_distribution():
    items = nlp_agent.batch_process([_harvested("1", BTC_POST), _harvested("2", ADA_POST)])

    metrics = nlp_agent.generate_analysis_metrics(items)

    assert metrics.total_processed == 2
    dist = metrics.sentiment_distribution
    assert dist.positive + dist.negative + dist.neutral == 100
    assert set(metrics.top_entities) == {"BTC", "ADA"}


def test_filter_by_confidence():
    items = [_processed(1, 0.4, []), _processed(1, 0.6, [])]

    assert [i.confidence for i in nlp_agent.filter_by_confidence(items)] == [0.6]


def test_crypto_sentiment_weights_by_confidence():
    items = [_processed(2.0, 0.9, ["BTC"]), _processed(-2.0, 0.1, ["BTC"]), _processed(-5, 0.9, ["ETH"])]

    summary = nlp_agent.crypto_sentiment(items, "BTC")

    # (2*0.9 - 2*0.1) / 1.0
    assert summary.score == 1.6
    assert summary.sentiment == Sentiment.POSITIVE
    assert summary.confidence == 0.5
    assert summary.mention_count == 2


def test_summarize_by_symbol_groups_and_falls_back():
    items = [_processed(1, 0.5, ["ETH", "BTC"]), _processed(1, 0.5, []), _processed(1, 0.5, ["ETH"])]

    summaries = nlp_agent.summarize_by_symbol(items, "sol")

    assert {s.symbol: s.mention_count for s in summaries} == {"ETH": 2, "SOL": 0}


def test_summarize_by_symbol_defaults_to_btc():
    [summary] = nlp_agent.summarize_by_symbol([_processed(0, 0.5, [])])

    assert summary.symbol == "BTC"
    assert summary.sentiment == Sentiment.NEUTRAL
