"""
路由共享依赖项

进程启动时在 app.state 上创建的日志库、key 存储和 HTTP 客户端，
通过这里注入到各个路由；路由自身不创建任何后端连接。
"""

from typing import Optional

from fastapi import Depends, HTTPException, Query, Request

from core.client_manager import ClientManager
from core.credentials import ApiKeyStore, Role
from db import LogStore


def get_log_store(request: Request) -> LogStore:
    return request.app.state.log_store


def get_key_store(request: Request) -> ApiKeyStore:
    return request.app.state.key_store


def get_client_manager(request: Request) -> ClientManager:
    return request.app.state.client_manager


def ensure_known_key(key_store: ApiKeyStore, api_key: Optional[str]) -> Role:
    """校验 key 存在于配置中，返回其角色。"""
    if not api_key:
        raise HTTPException(status_code=400, detail="API Key is required")
    role = key_store.resolve_role(api_key)
    if role is None:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return role


def ensure_admin_key(key_store: ApiKeyStore, api_key: Optional[str]) -> None:
    """校验 key 为管理员。key 不存在与非管理员返回同样的 403。"""
    if not api_key:
        raise HTTPException(status_code=400, detail="API Key is required")
    if not key_store.is_admin(api_key):
        raise HTTPException(status_code=403, detail="Unauthorized")


async def verify_api_key(
    api_key: Optional[str] = Query(None, alias="apiKey"),
    key_store: ApiKeyStore = Depends(get_key_store),
) -> str:
    """查询参数 apiKey 必须是配置中的 key（admin 以其它 key 查看时传入目标 key）。"""
    ensure_known_key(key_store, api_key)
    return api_key


async def verify_admin_api_key(
    api_key: Optional[str] = Query(None, alias="apiKey"),
    key_store: ApiKeyStore = Depends(get_key_store),
) -> str:
    ensure_admin_key(key_store, api_key)
    return api_key
