# src/core/mcp_server/crypto_sentiment_mcp.py
from mcp.server.fastmcp import FastMCP

from src.agents.small_agents import nlp_agent
from src.agents.small_agents.harvester_agent import HarvestError
from src.core import lexicon
from src.core.market_data import MarketDataError
from src.core.workflow_manager import WorkflowManager
from src.schemas.data_models import SentimentSummary

mcp = FastMCP("CryptoSentiment")

# 工具共享同一个编排器 (采集器、相关性历史都挂在它上面)
manager = WorkflowManager()


@mcp.tool()
async def harvest_posts(symbol: str = "", limit: int = 5) -> str:
    """
    采集各数据源的帖子，返回相关性最高的若干条。
    """
    try:
        items = await manager.harvester.harvest(symbol.upper() or None)
    except HarvestError as e:
        return f"Harvest failed: {e}"

    if not items:
        return f"No relevant posts found for {symbol or 'any symbol'}."

    lines = [f"{len(items)} relevant posts harvested. Top {min(limit, len(items))}:"]
    for item in items[:limit]:
        lines.append(f"- [{item.source}] ({item.relevance_score:.2f}) {item.content[:120]}")
    return "\n".join(lines)


@mcp.tool()
async def score_text(text: str) -> str:
    """
    对一段文本打情绪分，并列出识别到的币种、话题和风险因素。
    """
    item = nlp_agent.process_content(text, "mcp")
    symbols = ", ".join(f"{e.symbol}×{e.mentions}" for e in item.entities) or "none"
    return (
        f"Sentiment {item.sentiment.value} (score {item.score:+.2f}, confidence {item.confidence:.2f}), "
        f"tone {item.emotional_tone.value}. Entities: {symbols}. "
        f"Topics: {', '.join(item.topics) or 'none'}. "
        f"Risks: {', '.join(item.risk_factors) or 'none'}."
    )


@mcp.tool()
async def symbol_sentiment(symbol: str, min_confidence: float = 0.5) -> str:
    """
    采集并分析某一币种的帖子，只统计置信度不低于 min_confidence 的结果。
    """
    symbol = symbol.upper()
    try:
        items = await manager.harvester.harvest(symbol)
    except HarvestError as e:
        return f"Harvest failed: {e}"

    processed = nlp_agent.filter_by_confidence(nlp_agent.batch_process(items), min_confidence)
    summary = nlp_agent.crypto_sentiment(processed, symbol)
    if summary.mention_count == 0:
        return f"No confident posts mention {symbol}."
    return (
        f"{symbol} sentiment {summary.sentiment.value} (score {summary.score:+.2f}, "
        f"confidence {summary.confidence:.2f}) from {summary.mention_count} mentions "
        f"in {len(processed)} posts."
    )


@mcp.tool()
async def correlate_symbol(symbol: str, score: float, confidence: float = 0.5) -> str:
    """
    将给定的情绪分值与最新行情做相关性分析。
    """
    symbol = symbol.upper()
    summary = SentimentSummary(
        symbol=symbol,
        sentiment=lexicon.classify(score, lexicon.AGGREGATE_THRESHOLD),
        confidence=max(0.0, min(1.0, confidence)),
        score=score,
    )
    try:
        result, market = await manager.correlator.correlate_one(summary)
    except MarketDataError as e:
        return f"Unable to fetch market data for {symbol}: {e}"

    return (
        f"{symbol} price {market.price:,.2f} ({market.percent_change_24h:+.2f}% 24h), "
        f"direction {result.price_direction.value}, {result.alignment.value} with "
        f"{result.sentiment_direction.value} sentiment. Risk {result.risk_level.value}. "
        f"{result.recommendation}"
    )


@mcp.tool()
async def run_sentiment_workflow(symbol: str = "") -> str:
    """
    运行完整的采集 -> NLP -> 相关性工作流并等待结束。
    """
    workflow_id = await manager.start(symbol or None)
    record = await manager.wait(workflow_id)
    if record is None:
        return f"Workflow {workflow_id} disappeared."
    if record.result is None:
        return f"Workflow {workflow_id} {record.status.value}: {record.error}"

    result = record.result
    alerts = "; ".join(a.message for a in result.alerts) or "no alerts"
    return (
        f"Workflow {workflow_id} {record.status.value}: {len(result.harvested)} harvested, "
        f"{len(result.processed)} processed, {len(result.correlated)} correlated. {alerts}"
    )


@mcp.tool()
async def get_workflow_status(workflow_id: str) -> str:
    """
    查询工作流及每个步骤的状态。
    """
    record = manager.status(workflow_id)
    if record is None:
        return f"Workflow {workflow_id} not found."

    steps = ", ".join(f"{s.id}={s.status.value}" for s in record.steps)
    message = f"Workflow {workflow_id} is {record.status.value} (current step {record.current_step}). Steps: {steps}."
    if record.error:
        message += f" Error: {record.error}"
    return message


if __name__ == "__main__":
    mcp.run()
