from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- 枚举 (封闭取值) ---

class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class PriceDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    SIDEWAYS = "sideways"


class Alignment(str, Enum):
    ALIGNED = "aligned"
    DIVERGENT = "divergent"
    NEUTRAL = "neutral"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(str, Enum):
    SENTIMENT_DIVERGENCE = "sentiment_divergence"
    VOLUME_ANOMALY = "volume_anomaly"
    RISK_WARNING = "risk_warning"
    OPPORTUNITY = "opportunity"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SourceType(str, Enum):
    REDDIT = "reddit"
    NEWS = "news"
    SOCIAL = "social"


class EmotionalTone(str, Enum):
    FEAR = "fear"
    GREED = "greed"
    EXCITEMENT = "excitement"
    UNCERTAINTY = "uncertainty"
    NEUTRAL = "neutral"


# --- 状态机 ---

class InvalidTransitionError(RuntimeError):
    """非法的状态转换 (终态不可再变更)。"""


_ALLOWED_TRANSITIONS = {
    WorkflowStatus.PENDING: {WorkflowStatus.RUNNING},
    WorkflowStatus.RUNNING: {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED},
    WorkflowStatus.COMPLETED: set(),
    WorkflowStatus.FAILED: set(),
}


def check_transition(current: WorkflowStatus, target: WorkflowStatus) -> None:
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move from '{current.value}' to '{target.value}'")


# --- Lexicon / NLP ---

class SentimentResult(BaseModel):
    sentiment: Sentiment
    confidence: float
    score: float


class CryptoEntity(BaseModel):
    symbol: str
    mentions: int = Field(0, ge=0)
    context: list[str] = Field(default_factory=list, max_length=3)


class ProcessedItem(BaseModel):
    """
    NLP Agent 分析后的结构化数据
    """
    id: str
    original_content: str
    sentiment: Sentiment
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float
    entities: list[CryptoEntity] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    risk_factors: list[str] = Field(default_factory=list)


class SentimentDistribution(BaseModel):
    positive: int = 0
    negative: int = 0
    neutral: int = 0


class AnalysisMetrics(BaseModel):
    total_processed: int
    sentiment_distribution: SentimentDistribution
    average_confidence: float
    top_entities: list[str]


# --- Harvester ---

class DataSource(BaseModel):
    id: str
    name: str
    url: str
    type: SourceType
    active: bool = True


class RawItem(BaseModel):
    """
    数据源返回的原始文本
    """
    id: str
    source: str
    content: str
    url: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class HarvestedItem(RawItem):
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    crypto_symbols: list[str] = Field(default_factory=list)


# --- Correlator ---

class SentimentSummary(BaseModel):
    """单个币种聚合后的情绪，作为相关性分析的输入"""
    symbol: str
    sentiment: Sentiment
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float = 0.0
    mention_count: int = 0


class MarketSnapshot(BaseModel):
    symbol: str
    price: float
    volume_24h: float
    market_cap: float
    percent_change_24h: float
    timestamp: datetime = Field(default_factory=utcnow)


class CorrelationResult(BaseModel):
    symbol: str
    sentiment_market_correlation: float = Field(..., ge=-1.0, le=1.0)
    price_direction: PriceDirection
    sentiment_direction: Sentiment
    alignment: Alignment
    risk_level: RiskLevel
    recommendation: str
    confidence: float = Field(..., ge=0.0, le=0.9)


class MarketAlert(BaseModel):
    type: AlertType
    symbol: str
    message: str
    severity: AlertSeverity
    timestamp: datetime = Field(default_factory=utcnow)


class MarketSummary(BaseModel):
    total_tracked: int
    high_risk_assets: int
    divergent_signals: int
    last_update: datetime = Field(default_factory=utcnow)


# --- Workflow ---

class StepRecord(BaseModel):
    id: str
    name: str
    agent: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    input: Any = None
    output: Any = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None

    def mark_running(self, step_input: Any = None) -> None:
        check_transition(self.status, WorkflowStatus.RUNNING)
        self.status = WorkflowStatus.RUNNING
        self.input = step_input
        self.start_time = utcnow()

    def mark_completed(self, output: Any) -> None:
        check_transition(self.status, WorkflowStatus.COMPLETED)
        self.status = WorkflowStatus.COMPLETED
        self.output = output
        self.end_time = utcnow()

    def mark_failed(self, error: str) -> None:
        check_transition(self.status, WorkflowStatus.FAILED)
        self.status = WorkflowStatus.FAILED
        self.error = error
        self.end_time = utcnow()


class WorkflowResult(BaseModel):
    harvested: list[HarvestedItem] = Field(default_factory=list)
    processed: list[ProcessedItem] = Field(default_factory=list)
    correlated: list[CorrelationResult] = Field(default_factory=list)
    alerts: list[MarketAlert] = Field(default_factory=list)
    analysis: Optional[AnalysisMetrics] = None


class WorkflowRecord(BaseModel):
    workflow_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: str
    steps: list[StepRecord]
    symbol: Optional[str] = None
    result: Optional[WorkflowResult] = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    error: Optional[str] = None

    def get_step(self, step_id: str) -> StepRecord:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(f"Step {step_id} not found in workflow {self.workflow_id}")

    def mark_running(self) -> None:
        check_transition(self.status, WorkflowStatus.RUNNING)
        self.status = WorkflowStatus.RUNNING

    def mark_completed(self, result: WorkflowResult) -> None:
        check_transition(self.status, WorkflowStatus.COMPLETED)
        self.status = WorkflowStatus.COMPLETED
        self.result = result
        self.end_time = utcnow()

    def mark_failed(self, error: str) -> None:
        check_transition(self.status, WorkflowStatus.FAILED)
        self.status = WorkflowStatus.FAILED
        self.error = error
        self.end_time = utcnow()

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000


class MetricsSnapshot(BaseModel):
    active_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    average_duration: int = 0
    success_rate: float = 0.0


# --- API 请求体 ---

class SymbolRequest(BaseModel):
    """cryptoSymbol / symbol 两种写法均可"""
    crypto_symbol: Optional[str] = Field(None, validation_alias=AliasChoices("cryptoSymbol", "symbol"))


class SentimentRequest(BaseModel):
    content: str = Field(..., min_length=1)
    source: str = "api"


class CorrelateRequest(BaseModel):
    sentiment_data: list[SentimentSummary] = Field(..., validation_alias=AliasChoices("sentimentData", "sentiment_data"))


class DataSourceUpdate(BaseModel):
    """PATCH /api/data-sources/{id}: 只更新提供的字段"""
    name: Optional[str] = Field(None, min_length=1)
    url: Optional[str] = Field(None, min_length=1)
    active: Optional[bool] = None


class BatchSentimentRequest(BaseModel):
    """逐条打分；给出币种时附带该币种的汇总"""
    texts: list[str] = Field(..., min_length=1)
    crypto_symbol: Optional[str] = Field(None, validation_alias=AliasChoices("cryptoSymbol", "symbol"))
