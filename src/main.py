# src/main.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from src.agents.small_agents import nlp_agent
from src.agents.small_agents.harvester_agent import HarvestError
from src.core import lexicon
from src.core.database import SqlWorkflowStore
from src.core.market_data import MarketDataError
from src.core.workflow_manager import WorkflowManager
from src.schemas.data_models import (
    BatchSentimentRequest, CorrelateRequest, DataSourceUpdate, SentimentRequest,
    SymbolRequest,
)

logger = logging.getLogger(__name__)

workflow_manager = WorkflowManager()


def get_manager() -> WorkflowManager:
    return workflow_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Application starting up...")

    store = None
    if settings.DATABASE_URL:
        store = SqlWorkflowStore(settings.DATABASE_URL)
        await store.create_tables()
        workflow_manager.store = store

    yield

    logger.info("Application shutting down...")
    await workflow_manager.shutdown()
    close = getattr(workflow_manager.correlator.provider, "close", None)
    if close is not None:
        await close()
    if store is not None:
        await store.close()


app = FastAPI(title="Crypto Sentiment Workflow", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- 工作流 ---

@app.post("/api/workflows/sentiment-analysis", status_code=status.HTTP_201_CREATED)
async def start_sentiment_workflow(body: SymbolRequest, manager: WorkflowManager = Depends(get_manager)):
    workflow_id = await manager.start(body.crypto_symbol)
    return {"workflowId": workflow_id, "status": "started"}


@app.get("/api/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, manager: WorkflowManager = Depends(get_manager)):
    record = manager.status(workflow_id)
    if record is None and manager.store is not None:
        # 已被内存历史淘汰的记录再从持久化存储里找
        record = await manager.store.get(workflow_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return record.model_dump(mode="json")


@app.get("/api/workflows")
async def list_workflows(manager: WorkflowManager = Depends(get_manager)):
    return {
        "active": [r.model_dump(mode="json") for r in manager.active_workflows()],
        "completed": [r.model_dump(mode="json") for r in manager.completed_workflows()],
        "metrics": manager.metrics().model_dump(mode="json"),
    }


@app.delete("/api/workflows/{workflow_id}")
async def cancel_workflow(workflow_id: str, manager: WorkflowManager = Depends(get_manager)):
    if not await manager.cancel(workflow_id):
        raise HTTPException(status_code=404, detail="Workflow not found or not cancellable")
    return {"message": "Workflow cancelled successfully"}


# --- Agent 状态 ---

@app.get("/api/agents/health")
async def agents_health(manager: WorkflowManager = Depends(get_manager)):
    sources = await manager.harvester.check_source_health()
    return {
        "data_harvester": {
            "status": "online" if any(sources.values()) else "offline",
            "sources": sources,
        },
        "nlp_processor": {"status": "online"},
        "market_correlator": {
            "status": "online",
            "summary": manager.correlator.get_market_summary().model_dump(mode="json"),
        },
    }


@app.get("/api/data-sources")
async def data_sources(manager: WorkflowManager = Depends(get_manager)):
    sources = await manager.harvester.get_data_sources()
    return [s.model_dump(mode="json") for s in sources]


@app.patch("/api/data-sources/{source_id}")
async def update_data_source(source_id: str, body: DataSourceUpdate,
                             manager: WorkflowManager = Depends(get_manager)):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    source = await manager.harvester.update_data_source(source_id, **changes)
    if source is None:
        raise HTTPException(status_code=404, detail="Data source not found")
    return source.model_dump(mode="json")


@app.get("/api/market/{symbol}")
async def market_data(symbol: str, manager: WorkflowManager = Depends(get_manager)):
    try:
        snapshot = await manager.correlator.fetch_market_data(symbol.upper())
    except MarketDataError as e:
        raise HTTPException(status_code=502, detail=f"Unable to fetch market data: {e}")
    return snapshot.model_dump(mode="json")


# --- 单步调试 ---

@app.post("/api/process/harvest")
async def process_harvest(body: SymbolRequest, manager: WorkflowManager = Depends(get_manager)):
    symbol = body.crypto_symbol.upper() if body.crypto_symbol else None
    try:
        items = await manager.harvester.harvest(symbol)
    except HarvestError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [item.model_dump(mode="json") for item in items]


@app.post("/api/process/sentiment")
async def process_sentiment(body: SentimentRequest):
    return nlp_agent.process_content(body.content, body.source).model_dump(mode="json")


@app.post("/api/process/sentiment/batch")
async def process_sentiment_batch(body: BatchSentimentRequest):
    response = {"results": lexicon.batch_analyze(body.texts)}
    if body.crypto_symbol:
        symbol = body.crypto_symbol.upper()
        response["aggregate"] = {"symbol": symbol, **lexicon.aggregate_for_symbol(body.texts, symbol).model_dump(mode="json")}
    return response


@app.post("/api/process/correlate")
async def process_correlate(body: CorrelateRequest, manager: WorkflowManager = Depends(get_manager)):
    correlations = await manager.correlator.correlate(body.sentiment_data)
    alerts = await manager.correlator.generate_market_alerts(correlations)
    return {
        "correlations": [c.model_dump(mode="json") for c in correlations],
        "alerts": [a.model_dump(mode="json") for a in alerts],
    }


if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
        loop="asyncio",
    )
