import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import FailingSourceProvider

from src.agents.small_agents.harvester_agent import DataHarvesterAgent
from src.core.database import InMemoryWorkflowStore
from src.core.workflow_manager import CANCELLED_MESSAGE, WorkflowManager
from src.schemas.data_models import WorkflowStatus


class BlockingHarvester:
    """harvest() 挂起直到 release 被设置，用于测试取消和超时"""

    def __init__(self, delegate: DataHarvesterAgent):
        self.delegate = delegate
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def harvest(self, symbol=None):
        self.started.set()
        await self.release.wait()
        return await self.delegate.harvest(symbol)


def _step_statuses(record):
    return [step.status for step in record.steps]


@pytest.mark.asyncio
async def test_workflow_completes_all_steps_in_order(harvester, correlator):
    manager = WorkflowManager(harvester=harvester, correlator=correlator)

    workflow_id = await manager.start("btc")
    record = await manager.wait(workflow_id)

    assert record.status == WorkflowStatus.COMPLETED
    assert record.symbol == "BTC"
    assert record.error is None
    assert _step_statuses(record) == [WorkflowStatus.COMPLETED] * 3
    assert [step.id for step in record.steps] == ["harvest", "nlp-processing", "correlation"]
    starts = [step.start_time for step in record.steps]
    assert starts == sorted(starts)
    assert record.steps[0].end_time <= record.steps[1].start_time
    assert record.steps[1].end_time <= record.steps[2].start_time

    result = record.result
    assert [item.crypto_symbols for item in result.harvested] == [["BTC"]]
    assert len(result.processed) == 1
    assert [c.symbol for c in result.correlated] == ["BTC"]
    assert result.analysis.total_processed == 1
    assert result.analysis.top_entities == ["BTC"]
    assert record.steps[0].input == {"symbol": "BTC"}
    assert record.steps[2].output["correlations"][0]["symbol"] == "BTC"


@pytest.mark.asyncio
async def test_harvest_failure_leaves_later_steps_pending(sources, correlator):
    harvester = DataHarvesterAgent(sources=sources, providers={s.id: FailingSourceProvider() for s in sources})
    manager = WorkflowManager(harvester=harvester, correlator=correlator)

    record = await manager.wait(await manager.start())

    assert record.status == WorkflowStatus.FAILED
    assert "unavailable" in record.error
    assert _step_statuses(record) == [WorkflowStatus.FAILED, WorkflowStatus.PENDING, WorkflowStatus.PENDING]
    assert record.steps[0].error == record.error
    assert record.result is None


@pytest.mark.asyncio
async def test_correlation_failure_keeps_earlier_outputs(harvester, correlator, monkeypatch):
    monkeypatch.setattr(correlator, "correlate", AsyncMock(side_effect=RuntimeError("exchange offline")))
    manager = WorkflowManager(harvester=harvester, correlator=correlator)

    record = await manager.wait(await manager.start())

    assert record.status == WorkflowStatus.FAILED
    assert record.error == "exchange offline"
    assert _step_statuses(record) == [WorkflowStatus.COMPLETED, WorkflowStatus.COMPLETED, WorkflowStatus.FAILED]
    assert record.steps[1].output


@pytest.mark.asyncio
async def test_step_timeout_fails_workflow(harvester, correlator):
    blocking = BlockingHarvester(harvester)
    manager = WorkflowManager(harvester=blocking, correlator=correlator, step_timeout=0.05)

    record = await manager.wait(await manager.start())

    assert record.status == WorkflowStatus.FAILED
    assert record.error == "Step 'harvest' timed out after 0.05s"
    assert _step_statuses(record) == [WorkflowStatus.FAILED, WorkflowStatus.PENDING, WorkflowStatus.PENDING]


@pytest.mark.asyncio
async def test_cancel_running_workflow_discards_step_result(harvester, correlator):
    blocking = BlockingHarvester(harvester)
    manager = WorkflowManager(harvester=blocking, correlator=correlator, step_timeout=None)

    workflow_id = await manager.start("BTC")
    await asyncio.wait_for(blocking.started.wait(), timeout=1)

    assert await manager.cancel(workflow_id) is True
    cancelled = manager.status(workflow_id)
    assert cancelled.status == WorkflowStatus.FAILED
    assert cancelled.error == CANCELLED_MESSAGE
    assert cancelled.steps[0].error == CANCELLED_MESSAGE

    blocking.release.set()
    record = await manager.wait(workflow_id)

    assert record.result is None
    assert record.steps[0].output is None
    assert _step_statuses(record)[1:] == [WorkflowStatus.PENDING, WorkflowStatus.PENDING]
    assert manager.active_workflows() == []


@pytest.mark.asyncio
async def test_cancel_terminal_or_unknown_workflow_returns_false(harvester, correlator):
    manager = WorkflowManager(harvester=harvester, correlator=correlator)
    workflow_id = await manager.start()
    await manager.wait(workflow_id)

    assert await manager.cancel(workflow_id) is False
    assert await manager.cancel("missing") is False
    assert manager.status(workflow_id).status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_status_returns_copies(harvester, correlator):
    manager = WorkflowManager(harvester=harvester, correlator=correlator)
    workflow_id = await manager.start()
    await manager.wait(workflow_id)

    snapshot = manager.status(workflow_id)
    snapshot.steps[0].error = "tampered"

    assert manager.status(workflow_id).steps[0].error is None
    assert manager.status("missing") is None


def test_metrics_on_empty_history_are_zero():
    metrics = WorkflowManager(harvester=AsyncMock(), correlator=AsyncMock()).metrics()

    assert metrics.active_count == 0
    assert metrics.completed_count == 0
    assert metrics.failed_count == 0
    assert metrics.average_duration == 0
    assert metrics.success_rate == 0


@pytest.mark.asyncio
async def test_metrics_count_success_and_failure(harvester, sources, correlator):
    manager = WorkflowManager(harvester=harvester, correlator=correlator)
    await manager.wait(await manager.start())

    manager.harvester = DataHarvesterAgent(sources=sources, providers={s.id: FailingSourceProvider() for s in sources})
    await manager.wait(await manager.start())

    metrics = manager.metrics()
    assert metrics.completed_count == 1
    assert metrics.failed_count == 1
    assert metrics.success_rate == 0.5
    assert metrics.average_duration >= 0


@pytest.mark.asyncio
async def test_history_evicts_oldest(harvester, correlator):
    manager = WorkflowManager(harvester=harvester, correlator=correlator, history_limit=2)

    ids = []
    for _ in range(3):
        workflow_id = await manager.start()
        await manager.wait(workflow_id)
        ids.append(workflow_id)

    assert manager.status(ids[0]) is None
    assert [r.workflow_id for r in manager.completed_workflows()] == [ids[2], ids[1]]
    assert manager.metrics().completed_count == 2


@pytest.mark.asyncio
async def test_records_are_persisted(harvester, correlator):
    store = InMemoryWorkflowStore()
    manager = WorkflowManager(harvester=harvester, correlator=correlator, store=store)

    workflow_id = await manager.start()
    await manager.wait(workflow_id)

    saved = await store.get(workflow_id)
    assert saved.status == WorkflowStatus.COMPLETED
    assert saved.result.correlated


@pytest.mark.asyncio
async def test_persistence_failure_does_not_fail_workflow(harvester, correlator):
    store = AsyncMock()
    store.save.side_effect = RuntimeError("disk full")
    manager = WorkflowManager(harvester=harvester, correlator=correlator, store=store)

    record = await manager.wait(await manager.start())

    assert record.status == WorkflowStatus.COMPLETED
    assert store.save.await_count == 2


@pytest.mark.asyncio
async def test_shutdown_fails_in_flight_workflows(harvester, correlator):
    blocking = BlockingHarvester(harvester)
    manager = WorkflowManager(harvester=blocking, correlator=correlator, step_timeout=None)

    workflow_id = await manager.start()
    await asyncio.wait_for(blocking.started.wait(), timeout=1)
    await manager.shutdown()

    record = manager.status(workflow_id)
    assert record.status == WorkflowStatus.FAILED
    assert record.error == "Workflow task was cancelled"
    assert record.steps[0].status == WorkflowStatus.FAILED
