# src/core/models.py
from sqlalchemy import Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase


# 1. 定义所有模型的基础类
class Base(DeclarativeBase):
    pass


# 2. 工作流记录表 (按 workflow_id 存取的键值结构)
class AgentWorkflow(Base):
    __tablename__ = "agent_workflows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False)
    current_agent = Column(String(50))
    # 完整的 WorkflowRecord JSON
    state = Column(Text, nullable=False)
    start_time = Column(DateTime(timezone=True), server_default=func.now())
    end_time = Column(DateTime(timezone=True))
