# src/agents/small_agents/harvester_agent.py
import asyncio
import logging
from typing import Optional

from src.core import lexicon
from src.core.collectors import SourceProvider, default_providers, default_sources
from src.schemas.data_models import DataSource, HarvestedItem, RawItem
from .filter_agent import run_filter_agent

logger = logging.getLogger(__name__)


class HarvestError(RuntimeError):
    """所有数据源都不可用或为空，采集步骤失败。"""


class DataHarvesterAgent:
    """
    从已注册的数据源采集文本，按相关性过滤并排序。
    单个数据源出错只会被跳过，不会中断采集。
    """

    def __init__(self, sources: Optional[list[DataSource]] = None,
                 providers: Optional[dict[str, SourceProvider]] = None):
        self._sources = {s.id: s for s in (sources if sources is not None else default_sources())}
        self._providers = providers if providers is not None else default_providers()

    async def harvest(self, symbol: Optional[str] = None) -> list[HarvestedItem]:
        active = [s for s in self._sources.values() if s.active]
        if not active:
            raise HarvestError("No active data sources registered")

        results = await asyncio.gather(
            *(self._fetch_source(source) for source in active),
            return_exceptions=True,
        )

        raw_items: list[RawItem] = []
        for source, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.warning("[Harvester] Source %s skipped: %s", source.id, result)
                continue
            raw_items.extend(result)

        if not raw_items:
            raise HarvestError("All data sources are unavailable or returned no data")

        if symbol:
            raw_items = [item for item in raw_items if lexicon.mentions_symbol(item.content, symbol)]

        harvested = []
        for item in raw_items:
            relevance = run_filter_agent(item.content, symbol)
            if relevance is None:
                continue
            entities = lexicon.extract_entities(item.content)
            harvested.append(HarvestedItem(
                **item.model_dump(),
                relevance_score=relevance,
                crypto_symbols=[e.symbol for e in entities],
            ))

        harvested.sort(key=lambda h: h.relevance_score, reverse=True)
        logger.info("[Harvester] %d/%d items kept (symbol=%s)", len(harvested), len(raw_items), symbol)
        return harvested

    async def _fetch_source(self, source: DataSource) -> list[RawItem]:
        provider = self._providers.get(source.id)
        if provider is None:
            raise LookupError(f"No provider configured for source {source.id}")
        return await provider.fetch(source)

    async def get_data_sources(self) -> list[DataSource]:
        return [s for s in self._sources.values() if s.active]

    async def update_data_source(self, source_id: str, **changes) -> Optional[DataSource]:
        source = self._sources.get(source_id)
        if source is None:
            return None
        # 重新校验，非法字段值抛 ValidationError，id 不可改
        updated = DataSource.model_validate({**source.model_dump(), **changes, "id": source_id})
        self._sources[source_id] = updated
        return updated

    async def check_source_health(self) -> dict[str, bool]:
        """
        健康检查: 每个启用的数据源 -> 是否在线 (探测出错视为离线)
        """
        active = [s for s in self._sources.values() if s.active]

        async def check(source: DataSource) -> bool:
            provider = self._providers.get(source.id)
            if provider is None:
                return False
            try:
                return await provider.check_health(source)
            except Exception as e:
                logger.warning("[Harvester] Health check error for %s: %s", source.id, e)
                return False

        statuses = await asyncio.gather(*(check(source) for source in active))
        return {source.id: status for source, status in zip(active, statuses)}
