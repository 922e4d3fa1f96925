"""
Stats 统计和日志路由
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from core.stats import (
    DEFAULT_PAGE_SIZE,
    ChannelStats,
    FilterOptions,
    LogsPage,
    ModelStats,
    OverviewStats,
    get_channel_stats,
    get_filter_options,
    get_model_stats,
    get_overview,
    parse_status_filter,
    query_logs,
)
from db import LogStore
from routes.deps import get_log_store, verify_api_key

router = APIRouter()


@router.get("/stats/overview", response_model=OverviewStats)
async def stats_overview(
    api_key: str = Depends(verify_api_key),
    store: LogStore = Depends(get_log_store),
):
    """
    概览：请求数、token 总量、平均耗时。没有记录时全部为 0。
    """
    return await get_overview(store, api_key)


@router.get("/stats/models", response_model=List[ModelStats])
async def stats_models(
    api_key: str = Depends(verify_api_key),
    store: LogStore = Depends(get_log_store),
):
    """
    按模型聚合，请求数从高到低排序。
    """
    return await get_model_stats(store, api_key)


@router.get("/stats/channels", response_model=List[ChannelStats])
async def stats_channels(
    api_key: str = Depends(verify_api_key),
    store: LogStore = Depends(get_log_store),
):
    """
    按渠道聚合，请求数从高到低排序。
    """
    return await get_channel_stats(store, api_key)


@router.get("/filters", response_model=FilterOptions)
async def log_filters(
    api_key: str = Depends(verify_api_key),
    store: LogStore = Depends(get_log_store),
):
    return await get_filter_options(store, api_key)


@router.get("/logs", response_model=LogsPage)
async def logs(
    page: int = Query(1, description="Page number (starting from 1)"),
    limit: int = Query(DEFAULT_PAGE_SIZE, description="Number of items per page, clamped to 1-100"),
    model: Optional[str] = Query(None, description="Exact model filter"),
    provider: Optional[str] = Query(None, description="Exact provider filter"),
    status: Optional[str] = Query(None, description="'true' for success only, 'false' for failures only"),
    api_key: str = Depends(verify_api_key),
    store: LogStore = Depends(get_log_store),
):
    """
    请求日志分页列表，按时间倒序。
    """
    return await query_logs(
        store,
        api_key,
        page=page,
        limit=limit,
        model=model,
        provider=provider,
        status=parse_status_filter(status),
    )
