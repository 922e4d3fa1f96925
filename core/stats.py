"""
统计查询模块

负责：
- 概览统计（请求数、token、平均耗时）
- 按模型 / 按渠道聚合（含成功率）
- 日志筛选项（去重后的模型 / 渠道列表）
- 日志分页（多取一条判断是否有下一页）

所有查询都按 api_key 精确匹配，并且只统计 chat completions 端点。
成功与否来自 channel_stats：没有对应记录的请求视为失败。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from db import CHAT_COMPLETIONS_ENDPOINT, LogStore

DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 100

# 同一 request_id 可能存在多条渠道记录（重试），先按 request_id 聚合再关联，
# 任意一次成功即视为成功，保证每个请求只出现一次。
_OUTCOME_JOIN = (
    "LEFT JOIN ("
    "SELECT request_id, MAX(CASE WHEN success THEN 1 ELSE 0 END) AS success "
    "FROM channel_stats GROUP BY request_id"
    ") c ON r.request_id = c.request_id"
)

_GROUP_COLUMNS = {"model", "provider"}


# ============== Pydantic Models ==============

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class OverviewStats(_CamelModel):
    requests: int = 0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    avg_process_time: float = 0.0
    avg_first_response_time: float = 0.0


class GroupStats(_CamelModel):
    requests: int = 0
    successes: int = 0
    failures: int = 0
    success_rate: float = 0.0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    avg_process_time: float = 0.0
    avg_first_response_time: float = 0.0


class ModelStats(GroupStats):
    model: Optional[str] = None


class ChannelStats(GroupStats):
    provider: Optional[str] = None


class FilterOptions(_CamelModel):
    models: List[str]
    providers: List[str]


class LogRow(_CamelModel):
    request_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    success: bool = False
    model: Optional[str] = None
    provider: Optional[str] = None
    process_time: Optional[float] = None
    first_response_time: Optional[float] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    text: Optional[str] = None

    @field_serializer("timestamp")
    def serialize_dt(self, dt: Optional[datetime]):
        if dt is None:
            return None
        # SQLite 的 CURRENT_TIMESTAMP 是 UTC 但不带时区
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()


class LogsPage(_CamelModel):
    logs: List[LogRow]
    has_next_page: bool


# ============== 参数处理 ==============

def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return min(max(1, int(limit)), MAX_PAGE_SIZE)


def normalize_page(page: Optional[int]) -> int:
    if page is None:
        return 1
    return max(1, int(page))


def parse_status_filter(value: Optional[str]) -> Optional[bool]:
    """'true'/'false'（不区分大小写）转换为布尔值，其余一律视为不过滤。"""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


# ============== 类型转换 ==============

def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (int, Decimal, float)):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return _to_float(value)


def parse_db_datetime(value: Any) -> Optional[datetime]:
    """将数据库返回的时间值解析为带 UTC 时区的 datetime。

    PostgreSQL 返回 datetime；SQLite 返回文本（ISO 或 "YYYY-MM-DD HH:MM:SS[.ffffff]"）。
    """

    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    text = str(value).strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        dt = datetime.fromisoformat(iso_text)
    except ValueError:
        dt = None
        for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M:%S.%f"):
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ============== 查询 ==============

async def get_overview(store: LogStore, api_key: str) -> OverviewStats:
    row = await store.query_one(
        "SELECT COUNT(*) AS requests, "
        "COALESCE(SUM(total_tokens), 0) AS total_tokens, "
        "COALESCE(SUM(prompt_tokens), 0) AS prompt_tokens, "
        "COALESCE(SUM(completion_tokens), 0) AS completion_tokens, "
        "COALESCE(AVG(process_time), 0) AS avg_process_time, "
        "COALESCE(AVG(first_response_time), 0) AS avg_first_response_time "
        "FROM request_stats WHERE api_key = ? AND endpoint = ?",
        [api_key, CHAT_COMPLETIONS_ENDPOINT],
    )
    if row is None:
        return OverviewStats()

    return OverviewStats(
        requests=_to_int(row.get("requests")),
        total_tokens=_to_int(row.get("total_tokens")),
        prompt_tokens=_to_int(row.get("prompt_tokens")),
        completion_tokens=_to_int(row.get("completion_tokens")),
        avg_process_time=_to_float(row.get("avg_process_time")),
        avg_first_response_time=_to_float(row.get("avg_first_response_time")),
    )


async def _query_group_stats(store: LogStore, api_key: str, column: str) -> List[dict]:
    if column not in _GROUP_COLUMNS:
        raise ValueError(f"Unsupported group column: {column}")

    rows = await store.query(
        f"SELECT r.{column} AS group_value, "
        "COUNT(*) AS requests, "
        "COALESCE(SUM(CASE WHEN COALESCE(c.success, 0) = 1 THEN 1 ELSE 0 END), 0) AS successes, "
        "COALESCE(SUM(r.total_tokens), 0) AS total_tokens, "
        "COALESCE(SUM(r.prompt_tokens), 0) AS prompt_tokens, "
        "COALESCE(SUM(r.completion_tokens), 0) AS completion_tokens, "
        "COALESCE(AVG(r.process_time), 0) AS avg_process_time, "
        "COALESCE(AVG(r.first_response_time), 0) AS avg_first_response_time "
        f"FROM request_stats r {_OUTCOME_JOIN} "
        "WHERE r.api_key = ? AND r.endpoint = ? "
        f"GROUP BY r.{column} "
        "ORDER BY requests DESC",
        [api_key, CHAT_COMPLETIONS_ENDPOINT],
    )

    results = []
    for row in rows:
        requests = _to_int(row.get("requests"))
        successes = _to_int(row.get("successes"))
        results.append(
            {
                "group_value": row.get("group_value"),
                "requests": requests,
                "successes": successes,
                "failures": requests - successes,
                "success_rate": successes / requests if requests > 0 else 0,
                "total_tokens": _to_int(row.get("total_tokens")),
                "prompt_tokens": _to_int(row.get("prompt_tokens")),
                "completion_tokens": _to_int(row.get("completion_tokens")),
                "avg_process_time": _to_float(row.get("avg_process_time")),
                "avg_first_response_time": _to_float(row.get("avg_first_response_time")),
            }
        )
    return results


async def get_model_stats(store: LogStore, api_key: str) -> List[ModelStats]:
    rows = await _query_group_stats(store, api_key, "model")
    return [ModelStats(model=row.pop("group_value"), **row) for row in rows]


async def get_channel_stats(store: LogStore, api_key: str) -> List[ChannelStats]:
    rows = await _query_group_stats(store, api_key, "provider")
    return [ChannelStats(provider=row.pop("group_value"), **row) for row in rows]


async def _distinct_values(store: LogStore, api_key: str, column: str) -> List[str]:
    if column not in _GROUP_COLUMNS:
        raise ValueError(f"Unsupported filter column: {column}")

    rows = await store.query(
        f"SELECT DISTINCT {column} AS value FROM request_stats "
        f"WHERE api_key = ? AND endpoint = ? AND {column} IS NOT NULL",
        [api_key, CHAT_COMPLETIONS_ENDPOINT],
    )
    # 不依赖数据库排序规则，统一按码点排序
    return sorted({str(row["value"]) for row in rows})


async def get_filter_options(store: LogStore, api_key: str) -> FilterOptions:
    models, providers = await asyncio.gather(
        _distinct_values(store, api_key, "model"),
        _distinct_values(store, api_key, "provider"),
    )
    return FilterOptions(models=models, providers=providers)


async def query_logs(
    store: LogStore,
    api_key: str,
    page: Optional[int] = 1,
    limit: Optional[int] = DEFAULT_PAGE_SIZE,
    model: Optional[str] = None,
    provider: Optional[str] = None,
    status: Optional[bool] = None,
) -> LogsPage:
    """分页查询请求日志，按时间倒序。

    多取一条记录用于判断是否有下一页，避免额外的 COUNT 查询。
    """
    page = normalize_page(page)
    limit = clamp_limit(limit)

    conditions = ["r.api_key = ?", "r.endpoint = ?"]
    params: list[Any] = [api_key, CHAT_COMPLETIONS_ENDPOINT]

    if model:
        conditions.append("r.model = ?")
        params.append(model)
    if provider:
        conditions.append("r.provider = ?")
        params.append(provider)
    if status is not None:
        conditions.append("COALESCE(c.success, 0) = ?")
        params.append(1 if status else 0)

    offset = (page - 1) * limit
    rows = await store.query(
        "SELECT r.request_id AS request_id, r.timestamp AS timestamp, "
        "COALESCE(c.success, 0) AS success, "
        "r.model AS model, r.provider AS provider, "
        "r.process_time AS process_time, r.first_response_time AS first_response_time, "
        "r.prompt_tokens AS prompt_tokens, r.completion_tokens AS completion_tokens, "
        "r.total_tokens AS total_tokens, r.text AS text "
        f"FROM request_stats r {_OUTCOME_JOIN} "
        f"WHERE {' AND '.join(conditions)} "
        "ORDER BY r.timestamp DESC, r.id DESC "
        "LIMIT ? OFFSET ?",
        [*params, limit + 1, offset],
    )

    has_next_page = len(rows) > limit
    if has_next_page:
        rows = rows[:limit]

    logs = [
        LogRow(
            request_id=row.get("request_id"),
            timestamp=parse_db_datetime(row.get("timestamp")),
            success=_to_int(row.get("success")) == 1,
            model=row.get("model"),
            provider=row.get("provider"),
            process_time=_to_optional_float(row.get("process_time")),
            first_response_time=_to_optional_float(row.get("first_response_time")),
            prompt_tokens=_to_int(row.get("prompt_tokens")),
            completion_tokens=_to_int(row.get("completion_tokens")),
            total_tokens=_to_int(row.get("total_tokens")),
            text=row.get("text"),
        )
        for row in rows
    ]
    return LogsPage(logs=logs, has_next_page=has_next_page)
