import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.client_manager import ClientManager
from core.credentials import ApiKeyStore
from db import Base, CHAT_COMPLETIONS_ENDPOINT, ChannelStat, RequestStat, SQLiteLogStore

ADMIN_KEY = "sk-admin"
USER_KEY = "sk-user"
OTHER_KEY = "sk-other"

API_YAML = """\
providers:
  - provider: openai
    base_url: https://api.openai.com/v1/chat/completions
    api: sk-upstream-openai
    model:
      - gpt-4o
      - gpt-4o-mini: mini
  - provider: claude
    base_url: https://api.anthropic.com/v1/messages
    api: sk-ant-upstream
    model:
      - claude-3-5-sonnet
  - provider: gemini
    base_url: https://generativelanguage.googleapis.com/v1beta
    api: gemini-key
api_keys:
  - api: sk-admin
    role: admin
    name: Admin
  - api: sk-user
    role: user
  - api: sk-other
"""

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_request(index: int, **overrides) -> RequestStat:
    """构造一条请求记录，index 越大时间越新。"""
    values = {
        "request_id": f"req-{index}",
        "endpoint": CHAT_COMPLETIONS_ENDPOINT,
        "api_key": USER_KEY,
        "model": "gpt-4o",
        "provider": "openai",
        "process_time": 1.0,
        "first_response_time": 0.5,
        "prompt_tokens": 10,
        "completion_tokens": 20,
        "total_tokens": 30,
        "text": f"response {index}",
        "timestamp": BASE_TIME + timedelta(seconds=index),
    }
    values.update(overrides)
    return RequestStat(**values)


def make_outcome(request_id: str, success: bool, **overrides) -> ChannelStat:
    values = {
        "request_id": request_id,
        "provider": "openai",
        "model": "gpt-4o",
        "api_key": USER_KEY,
        "success": success,
    }
    values.update(overrides)
    return ChannelStat(**values)


@pytest_asyncio.fixture
async def log_store():
    """内存 SQLite 日志库（可写，便于造数据）。"""
    store = SQLiteLogStore("sqlite+aiosqlite:///:memory:", read_only=False)
    async with store.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield store
    await store.close()


@pytest.fixture
def seed(log_store):
    async def _seed(*records):
        async with AsyncSession(log_store.engine) as session:
            session.add_all(records)
            await session.commit()

    return _seed


@pytest.fixture
def api_yaml(tmp_path):
    path = tmp_path / "api.yaml"
    path.write_text(API_YAML, encoding="utf-8")
    return path


@pytest.fixture
def key_store(api_yaml):
    return ApiKeyStore(str(api_yaml))


class FakeUpstream:
    """记录渠道测试发出的请求，并按 handler 返回响应。"""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.handler = lambda request: httpx.Response(200, json={"choices": []})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return self.handler(request)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest_asyncio.fixture
async def client(log_store, key_store, upstream):
    from main import app

    client_manager = ClientManager()
    await client_manager.init({"transport": httpx.MockTransport(upstream)})

    app.state.log_store = log_store
    app.state.key_store = key_store
    app.state.client_manager = client_manager
    app.state.probe_timeout = 5.0

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    await client_manager.close()
    for name in ("log_store", "key_store", "client_manager", "probe_timeout"):
        delattr(app.state, name)
