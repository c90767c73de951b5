# src/core/database.py
import logging
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.models import AgentWorkflow, Base
from src.schemas.data_models import WorkflowRecord

logger = logging.getLogger(__name__)


class WorkflowStore(Protocol):
    async def save(self, record: WorkflowRecord) -> None:
        ...

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        ...


class InMemoryWorkflowStore:
    def __init__(self):
        self._records: dict[str, str] = {}

    async def save(self, record: WorkflowRecord) -> None:
        self._records[record.workflow_id] = record.model_dump_json()

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        raw = self._records.get(workflow_id)
        return WorkflowRecord.model_validate_json(raw) if raw else None


class SqlWorkflowStore:
    """
    SQLAlchemy 异步存储，SQLite 和 PostgreSQL 通用 (取决于 DATABASE_URL)。
    """

    def __init__(self, database_url: str):
        # 1. 根据 URL 创建引擎
        self.engine = create_async_engine(database_url)
        # 2. 异步会话工厂
        self.async_session = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def create_tables(self) -> None:
        """
        在启动时创建所有 SQLAlchemy 模型对应的表
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[Database] Tables checked/created successfully.")

    async def save(self, record: WorkflowRecord) -> None:
        async with self.async_session() as session:
            result = await session.execute(
                select(AgentWorkflow).where(AgentWorkflow.workflow_id == record.workflow_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = AgentWorkflow(workflow_id=record.workflow_id, start_time=record.start_time)
                session.add(row)

            step = next((s for s in record.steps if s.id == record.current_step), None)
            row.status = record.status.value
            row.current_agent = step.agent if step else None
            row.state = record.model_dump_json()
            row.end_time = record.end_time
            await session.commit()

    async def get(self, workflow_id: str) -> Optional[WorkflowRecord]:
        async with self.async_session() as session:
            result = await session.execute(
                select(AgentWorkflow.state).where(AgentWorkflow.workflow_id == workflow_id)
            )
            state = result.scalar_one_or_none()
        return WorkflowRecord.model_validate_json(state) if state else None

    async def close(self) -> None:
        logger.info("[Database] Closing SQLAlchemy Engine.")
        await self.engine.dispose()
