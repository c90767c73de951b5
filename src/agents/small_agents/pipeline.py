# src/agents/small_agents/pipeline.py
from typing import Callable, Optional, Protocol

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from src.schemas.data_models import (
    CorrelationResult, HarvestedItem, MarketAlert, ProcessedItem, StepRecord,
)

HARVEST_STEP = "harvest"
NLP_STEP = "nlp-processing"
CORRELATION_STEP = "correlation"

# (step id, 显示名称, agent 标签)，顺序即执行顺序
STEP_DEFINITIONS = [
    (HARVEST_STEP, "Data Harvesting", "data_harvester"),
    (NLP_STEP, "NLP Processing", "nlp_processor"),
    (CORRELATION_STEP, "Market Correlation", "market_correlator"),
]


def new_steps() -> list[StepRecord]:
    return [StepRecord(id=step_id, name=name, agent=agent) for step_id, name, agent in STEP_DEFINITIONS]


# --- 1. State ---
class WorkflowState(TypedDict):
    workflow_id: str
    symbol: Optional[str]
    harvested: list[HarvestedItem]
    processed: list[ProcessedItem]
    correlated: list[CorrelationResult]
    alerts: list[MarketAlert]
    # 步骤失败或被取消后置为 True，后续节点不再执行
    halted: bool


def initial_state(workflow_id: str, symbol: Optional[str]) -> WorkflowState:
    return {
        "workflow_id": workflow_id,
        "symbol": symbol,
        "harvested": [],
        "processed": [],
        "correlated": [],
        "alerts": [],
        "halted": False,
    }


# --- 2. Nodes ---
class WorkflowNodes(Protocol):
    async def harvest_node(self, state: WorkflowState) -> dict:
        ...

    async def nlp_node(self, state: WorkflowState) -> dict:
        ...

    async def correlation_node(self, state: WorkflowState) -> dict:
        ...


def continue_or_halt(next_step: str) -> Callable[[WorkflowState], str]:
    def decide(state: WorkflowState) -> str:
        if state["halted"]:
            return END
        return next_step
    return decide


# --- 3. Graph ---
def create_workflow_graph(nodes: WorkflowNodes):
    """
    harvest -> nlp-processing -> correlation，严格串行。
    任一步骤失败 (halted) 直接结束，剩余步骤保持 pending。
    """
    graph = StateGraph(WorkflowState)
    graph.add_node(HARVEST_STEP, nodes.harvest_node)
    graph.add_node(NLP_STEP, nodes.nlp_node)
    graph.add_node(CORRELATION_STEP, nodes.correlation_node)

    graph.set_entry_point(HARVEST_STEP)

    graph.add_conditional_edges(HARVEST_STEP, continue_or_halt(NLP_STEP), {
        NLP_STEP: NLP_STEP,
        END: END,
    })
    graph.add_conditional_edges(NLP_STEP, continue_or_halt(CORRELATION_STEP), {
        CORRELATION_STEP: CORRELATION_STEP,
        END: END,
    })
    graph.add_edge(CORRELATION_STEP, END)

    return graph.compile()
