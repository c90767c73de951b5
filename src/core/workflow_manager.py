# src/core/workflow_manager.py
"""
工作流编排: 采集 -> NLP 处理 -> 行情相关性，三个步骤严格串行。

- start() 只创建记录并调度后台任务，立即返回 workflow_id
- 每个步骤开始前检查取消标记；步骤本身视为原子单元，不会被中途打断
- 每个步骤有独立超时，超时视为该步骤失败
- 完成/失败的记录移入有上限的历史队列 (最旧的先淘汰)
"""
import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from config.settings import settings
from src.agents.large_agents.correlator_agent import MarketCorrelatorAgent
from src.agents.small_agents import nlp_agent
from src.agents.small_agents.harvester_agent import DataHarvesterAgent
from src.agents.small_agents.pipeline import (
    CORRELATION_STEP, HARVEST_STEP, NLP_STEP, WorkflowState,
    create_workflow_graph, initial_state, new_steps,
)
from src.core.database import WorkflowStore
from src.schemas.data_models import (
    MetricsSnapshot, WorkflowRecord, WorkflowResult, WorkflowStatus,
)
from src.utils.json_helper import describe_error, to_snapshot

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"

_HALT = object()


class StepTimeoutError(RuntimeError):
    """单个步骤超过 STEP_TIMEOUT_SECONDS 仍未完成。"""


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class WorkflowManager:

    def __init__(self, harvester: Optional[DataHarvesterAgent] = None,
                 correlator: Optional[MarketCorrelatorAgent] = None,
                 store: Optional[WorkflowStore] = None,
                 step_timeout: Optional[float] = settings.STEP_TIMEOUT_SECONDS,
                 history_limit: int = settings.WORKFLOW_HISTORY_LIMIT):
        self.harvester = harvester or DataHarvesterAgent()
        self.correlator = correlator or MarketCorrelatorAgent()
        self.store = store
        self.step_timeout = step_timeout

        self._active: dict[str, WorkflowRecord] = {}
        self._history: deque[WorkflowRecord] = deque(maxlen=history_limit)
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._graph = create_workflow_graph(self)

    # --- 对外接口 ---

    async def start(self, symbol: Optional[str] = None) -> str:
        symbol = symbol.strip().upper() if symbol and symbol.strip() else None
        workflow_id = uuid.uuid4().hex
        record = WorkflowRecord(
            workflow_id=workflow_id,
            current_step=HARVEST_STEP,
            steps=new_steps(),
            symbol=symbol,
        )

        async with self._lock:
            self._active[workflow_id] = record
            self._tokens[workflow_id] = CancellationToken()

        task = asyncio.create_task(self._execute(workflow_id), name=f"workflow-{workflow_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("[Workflow] %s scheduled (symbol=%s)", workflow_id, symbol)
        return workflow_id

    async def cancel(self, workflow_id: str) -> bool:
        """
        只有 running 状态可以取消。正在执行的步骤不会被打断，但其结果会被丢弃。
        """
        async with self._lock:
            record = self._active.get(workflow_id)
            if record is None or record.status != WorkflowStatus.RUNNING:
                return False

            self._tokens[workflow_id].cancel()
            self._mark_failed(record, CANCELLED_MESSAGE)

        logger.info("[Workflow] %s cancelled by user", workflow_id)
        await self._persist(record)
        return True

    def status(self, workflow_id: str) -> Optional[WorkflowRecord]:
        record = self._active.get(workflow_id)
        if record is None:
            record = next((r for r in reversed(self._history) if r.workflow_id == workflow_id), None)
        return record.model_copy(deep=True) if record else None

    def active_workflows(self) -> list[WorkflowRecord]:
        return [r.model_copy(deep=True) for r in self._active.values()]

    def completed_workflows(self, limit: int = 10) -> list[WorkflowRecord]:
        ordered = sorted(self._history, key=lambda r: r.end_time or r.start_time, reverse=True)
        return [r.model_copy(deep=True) for r in ordered[:limit]]

    def metrics(self) -> MetricsSnapshot:
        history = list(self._history)
        successful = [r for r in history if r.status == WorkflowStatus.COMPLETED]
        failed = [r for r in history if r.status == WorkflowStatus.FAILED]

        total_duration = sum(r.duration_ms or 0 for r in successful)
        average_duration = total_duration / len(successful) if successful else 0
        finished = len(successful) + len(failed)
        success_rate = len(successful) / finished if finished else 0

        return MetricsSnapshot(
            active_count=len(self._active),
            completed_count=len(successful),
            failed_count=len(failed),
            average_duration=round(average_duration),
            success_rate=round(success_rate, 2),
        )

    async def wait(self, workflow_id: str) -> Optional[WorkflowRecord]:
        """等待后台任务结束 (测试和命令行使用)"""
        tasks = [t for t in self._tasks if t.get_name() == f"workflow-{workflow_id}"]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self.status(workflow_id)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # --- 执行 ---

    async def _execute(self, workflow_id: str) -> None:
        record = self._active.get(workflow_id)
        if record is None:
            return

        await self._persist(record)
        try:
            record.mark_running()
            logger.info("[Workflow] %s running", workflow_id)

            state = await self._graph.ainvoke(initial_state(workflow_id, record.symbol))
            if state["halted"]:
                return

            await self._complete(workflow_id, WorkflowResult(
                harvested=state["harvested"],
                processed=state["processed"],
                correlated=state["correlated"],
                alerts=state["alerts"],
                analysis=nlp_agent.generate_analysis_metrics(state["processed"]),
            ))
        except asyncio.CancelledError:
            await self._fail(workflow_id, "Workflow task was cancelled")
            raise
        except Exception as e:
            logger.exception("[Workflow] %s failed unexpectedly", workflow_id)
            await self._fail(workflow_id, describe_error(e))

    async def _run_step(self, state: WorkflowState, step_id: str,
                        executor: Callable[[], Awaitable[Any]], step_input: Any) -> Any:
        workflow_id = state["workflow_id"]
        record = self._active.get(workflow_id)
        token = self._tokens.get(workflow_id)
        if record is None or record.status.is_terminal or token is None or token.cancelled:
            logger.info("[Workflow] %s halted before step %s", workflow_id, step_id)
            return _HALT

        step = record.get_step(step_id)
        step.mark_running(to_snapshot(step_input))
        record.current_step = step_id
        logger.info("[Workflow] %s -> %s", workflow_id, step.name)

        error = None
        output = None
        try:
            output = await self._run_with_timeout(step_id, executor)
        except Exception as e:
            error = describe_error(e)

        if token.cancelled or step.status.is_terminal:
            logger.info("[Workflow] %s: discarding result of %s after cancellation", workflow_id, step_id)
            return _HALT

        if error is not None:
            logger.error("[Workflow] %s step %s failed: %s", workflow_id, step_id, error)
            await self._fail(workflow_id, error)
            return _HALT

        step.mark_completed(to_snapshot(output))
        return output

    async def _run_with_timeout(self, step_id: str, executor: Callable[[], Awaitable[Any]]) -> Any:
        if not self.step_timeout:
            return await executor()
        try:
            return await asyncio.wait_for(executor(), timeout=self.step_timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(f"Step '{step_id}' timed out after {self.step_timeout}s") from None

    async def harvest_node(self, state: WorkflowState) -> dict:
        symbol = state["symbol"]
        output = await self._run_step(
            state, HARVEST_STEP,
            lambda: self.harvester.harvest(symbol),
            {"symbol": symbol},
        )
        if output is _HALT:
            return {"halted": True}
        return {"harvested": output}

    async def nlp_node(self, state: WorkflowState) -> dict:
        harvested = state["harvested"]
        output = await self._run_step(
            state, NLP_STEP,
            lambda: asyncio.to_thread(nlp_agent.batch_process, harvested),
            [{"id": h.id, "content": h.content, "source": h.source} for h in harvested],
        )
        if output is _HALT:
            return {"halted": True}
        return {"processed": output}

    async def correlation_node(self, state: WorkflowState) -> dict:
        summaries = nlp_agent.summarize_by_symbol(state["processed"], state["symbol"])

        async def correlate() -> dict:
            correlations = await self.correlator.correlate(summaries)
            alerts = await self.correlator.generate_market_alerts(correlations)
            return {"correlations": correlations, "alerts": alerts}

        output = await self._run_step(state, CORRELATION_STEP, correlate, summaries)
        if output is _HALT:
            return {"halted": True}
        return {"correlated": output["correlations"], "alerts": output["alerts"]}

    # --- 状态收尾 ---

    async def _complete(self, workflow_id: str, result: WorkflowResult) -> None:
        async with self._lock:
            record = self._active.get(workflow_id)
            if record is None or record.status.is_terminal:
                return
            record.mark_completed(result)
            self._archive(record)

        logger.info("[Workflow] ✅ %s completed in %.0f ms", workflow_id, record.duration_ms or 0)
        await self._persist(record)

    async def _fail(self, workflow_id: str, error: str) -> None:
        async with self._lock:
            record = self._active.get(workflow_id)
            if record is None or record.status.is_terminal:
                return
            if record.status == WorkflowStatus.PENDING:
                record.mark_running()
            self._mark_failed(record, error)

        await self._persist(record)

    def _mark_failed(self, record: WorkflowRecord, error: str) -> None:
        """工作流和正在运行的步骤一起置为 failed，并移入历史。调用方需持有 self._lock"""
        for step in record.steps:
            if step.status == WorkflowStatus.RUNNING:
                step.mark_failed(error)
        record.mark_failed(error)
        self._archive(record)

    def _archive(self, record: WorkflowRecord) -> None:
        """调用方需持有 self._lock"""
        self._active.pop(record.workflow_id, None)
        self._tokens.pop(record.workflow_id, None)
        self._history.append(record)

    async def _persist(self, record: WorkflowRecord) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(record)
        except Exception as e:
            logger.error("[Workflow] Failed to persist %s: %s", record.workflow_id, e)
