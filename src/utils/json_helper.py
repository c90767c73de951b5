from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def to_snapshot(value: Any) -> Any:
    """
    将步骤的输入/输出转换为可 JSON 序列化的快照，保存在 StepRecord 上。

    pydantic 模型 -> dict，列表/字典递归处理，datetime -> ISO 字符串，枚举 -> 值。
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): to_snapshot(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_snapshot(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def describe_error(exc: BaseException) -> str:
    """可读的错误信息 (空消息时退回异常类名)"""
    message = str(exc).strip()
    return message or exc.__class__.__name__
