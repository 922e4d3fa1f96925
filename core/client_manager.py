"""
HTTP 客户端管理模块

统一管理渠道测试使用的 httpx.AsyncClient，按 host 维度复用连接池。
"""

from contextlib import asynccontextmanager
from typing import Dict
from urllib.parse import urlparse

import httpx


class ClientManager:
    """
    HTTP 客户端管理器

    - 按 host 维度复用 httpx.AsyncClient
    - 通过 init() 注入默认配置（headers/http2/verify/transport 等）
    """

    def __init__(self, pool_size: int = 50, max_keepalive_connections: int = 20) -> None:
        self.pool_size = pool_size
        self.max_keepalive_connections = max_keepalive_connections
        self.clients: Dict[str, httpx.AsyncClient] = {}
        self.default_config: dict = {}

    async def init(self, default_config: dict) -> None:
        """
        设置默认 client 配置
        """
        self.default_config = default_config

    @asynccontextmanager
    async def get_client(self, base_url: str):
        """
        获取或创建 base_url 所在 host 对应的 AsyncClient
        """
        host = urlparse(base_url).netloc

        if host not in self.clients:
            timeout = httpx.Timeout(connect=15.0, read=None, write=30.0, pool=10.0)
            limits = httpx.Limits(
                max_connections=self.pool_size,
                max_keepalive_connections=self.max_keepalive_connections,
            )
            self.clients[host] = httpx.AsyncClient(
                **{**self.default_config, "timeout": timeout, "limits": limits}
            )

        try:
            yield self.clients[host]
        finally:
            # 不在这里关闭客户端，由 close() 统一管理连接池生命周期
            pass

    async def close(self) -> None:
        """
        关闭所有已创建的 AsyncClient，并清空连接池
        """
        for client in self.clients.values():
            await client.aclose()
        self.clients.clear()
