# config/settings.py
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # 为空时不做持久化 (例如 sqlite+aiosqlite:///./workflows.db)
    DATABASE_URL: str = ""

    # 数据源: simulated = 内置样本数据, live = Reddit JSON / RSS
    HARVEST_MODE: Literal["simulated", "live"] = "simulated"
    # 行情: simulated = 随机模拟, exchange = ccxt 交易所行情
    MARKET_DATA_MODE: Literal["simulated", "exchange"] = "simulated"
    EXCHANGE_ID: str = "binance"

    HTTP_TIMEOUT_SECONDS: float = 10.0
    # 模拟数据源的不可用概率 (健康检查约 90% 在线)
    SIMULATED_SOURCE_FAILURE_RATE: float = 0.1

    # 每个步骤的超时时间，None 表示不限制
    STEP_TIMEOUT_SECONDS: Optional[float] = 30.0
    WORKFLOW_HISTORY_LIMIT: int = 100

    MARKET_HISTORY_LIMIT: int = 100
    # 相关性分析最多跟踪的币种数 (每个币种一份价格/情绪历史)
    MARKET_MAX_SYMBOLS: int = 200
    CORRELATION_WINDOW: int = 10

    RELEVANCE_FLOOR: float = 0.3

    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8088


settings = Settings()
