import errno
import os
import stat

import httpx
import pytest

from conftest import ADMIN_KEY, API_YAML, OTHER_KEY, USER_KEY, make_outcome, make_request
from core.credentials import ApiKeyStore
from db import SQLiteLogStore


# ============== 鉴权 ==============

@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/api/stats/overview", "/api/stats/models", "/api/stats/channels", "/api/filters", "/api/logs"])
async def test_stats_endpoints_require_known_key(client, path):
    response = await client.get(path)
    assert response.status_code == 400
    assert response.json() == {"error": {"message": "API Key is required", "type": "invalid_request_error"}}

    response = await client.get(path, params={"apiKey": "sk-unknown"})
    assert response.status_code == 403

    response = await client.get(path, params={"apiKey": USER_KEY})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_validate_key(client):
    response = await client.post("/api/auth/validate-key", json={"apiKey": ADMIN_KEY})
    assert response.json() == {"valid": True, "role": "admin"}

    response = await client.post("/api/auth/validate-key", json={"apiKey": OTHER_KEY})
    assert response.json() == {"valid": True, "role": "user"}

    response = await client.post("/api/auth/validate-key", json={"apiKey": "sk-unknown"})
    assert response.status_code == 200
    assert response.json() == {"valid": False}

    response = await client.post("/api/auth/validate-key", json={})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_available_keys(client):
    response = await client.post("/api/auth/available-keys", json={"adminKey": ADMIN_KEY})
    assert response.status_code == 200
    assert response.json() == {
        "keys": [
            {"api": ADMIN_KEY, "role": "admin", "name": "Admin"},
            {"api": USER_KEY, "role": "user"},
            {"api": OTHER_KEY, "role": "user"},
        ]
    }

    response = await client.post("/api/auth/available-keys", json={"adminKey": USER_KEY})
    assert response.status_code == 403

    response = await client.post("/api/auth/available-keys", json={})
    assert response.status_code == 400


# ============== 统计与日志 ==============

@pytest.mark.asyncio
async def test_overview_empty(client):
    response = await client.get("/api/stats/overview", params={"apiKey": USER_KEY})
    assert response.json() == {
        "requests": 0,
        "totalTokens": 0,
        "promptTokens": 0,
        "completionTokens": 0,
        "avgProcessTime": 0.0,
        "avgFirstResponseTime": 0.0,
    }


@pytest.mark.asyncio
async def test_admin_views_other_key_by_passing_it(client, seed):
    await seed(make_request(1, api_key=OTHER_KEY), make_outcome("req-1", True, api_key=OTHER_KEY))

    response = await client.get("/api/stats/channels", params={"apiKey": OTHER_KEY})
    body = response.json()
    assert len(body) == 1
    assert body[0]["provider"] == "openai"
    assert body[0]["successRate"] == 1.0

    response = await client.get("/api/stats/channels", params={"apiKey": USER_KEY})
    assert response.json() == []


@pytest.mark.asyncio
async def test_logs_endpoint(client, seed):
    await seed(
        *[make_request(i) for i in range(1, 4)],
        make_outcome("req-3", True),
    )

    response = await client.get("/api/logs", params={"apiKey": USER_KEY, "limit": 2})
    body = response.json()
    assert [row["requestId"] for row in body["logs"]] == ["req-3", "req-2"]
    assert body["hasNextPage"] is True
    assert body["logs"][0]["success"] is True
    assert body["logs"][0]["timestamp"] == "2024-05-01T12:00:03+00:00"

    response = await client.get("/api/logs", params={"apiKey": USER_KEY, "status": "TRUE"})
    assert [row["requestId"] for row in response.json()["logs"]] == ["req-3"]

    # 无法识别的 status 不做过滤
    response = await client.get("/api/logs", params={"apiKey": USER_KEY, "status": "maybe"})
    assert len(response.json()["logs"]) == 3


@pytest.mark.asyncio
async def test_logs_rejects_non_numeric_page(client):
    response = await client.get("/api/logs", params={"apiKey": USER_KEY, "page": "abc"})
    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


@pytest.mark.asyncio
async def test_filters_endpoint(client, seed):
    await seed(
        make_request(1, model="o1", provider="openai"),
        make_request(2, model="gpt-4o", provider="azure"),
    )
    response = await client.get("/api/filters", params={"apiKey": USER_KEY})
    assert response.json() == {"models": ["gpt-4o", "o1"], "providers": ["azure", "openai"]}


@pytest.mark.asyncio
async def test_database_error_is_generic_500(client):
    from main import app

    broken = SQLiteLogStore("sqlite+aiosqlite:///:memory:")
    app.state.log_store = broken
    try:
        response = await client.get("/api/stats/overview", params={"apiKey": USER_KEY})
    finally:
        await broken.close()

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["message"] == "Database query failed"
    assert "request_stats" not in response.text


@pytest.mark.asyncio
async def test_missing_config_file_is_500(client, tmp_path):
    from main import app

    app.state.key_store = ApiKeyStore(str(tmp_path / "absent.yaml"))
    response = await client.get("/api/stats/overview", params={"apiKey": USER_KEY})
    assert response.status_code == 500
    assert response.json()["error"]["message"] == "Configuration file not found"


# ============== 配置编辑 ==============

@pytest.mark.asyncio
async def test_config_load(client):
    response = await client.get("/api/config/load", params={"apiKey": ADMIN_KEY})
    assert response.status_code == 200
    assert response.json() == {"config": API_YAML}

    response = await client.get("/api/config/load", params={"apiKey": USER_KEY})
    assert response.status_code == 403

    response = await client.get("/api/config/load")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_config_save_writes_text_verbatim(client, api_yaml):
    new_config = API_YAML + "# trailing comment\npreferences:\n  rate_limit: 10/min\n"
    response = await client.post("/api/config/save", json={"apiKey": ADMIN_KEY, "config": new_config})
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert api_yaml.read_text(encoding="utf-8") == new_config


@pytest.mark.asyncio
async def test_config_save_keeps_file_mode(client, api_yaml):
    """保存后 api.yaml 的权限不变，网关仍可读取。"""
    os.chmod(api_yaml, 0o644)
    response = await client.post("/api/config/save", json={"apiKey": ADMIN_KEY, "config": API_YAML + "# saved\n"})
    assert response.status_code == 200
    assert stat.S_IMODE(os.stat(api_yaml).st_mode) == 0o644


@pytest.mark.asyncio
async def test_config_save_writes_in_place_when_replace_fails(client, api_yaml, monkeypatch):
    """单文件挂载时 os.replace 报 EBUSY，改为原地写入，inode 不变。"""
    inode = os.stat(api_yaml).st_ino

    def busy_replace(src, dst):
        raise OSError(errno.EBUSY, "Device or resource busy")

    monkeypatch.setattr(os, "replace", busy_replace)
    new_config = API_YAML + "# bind mounted\n"
    response = await client.post("/api/config/save", json={"apiKey": ADMIN_KEY, "config": new_config})
    assert response.status_code == 200
    assert api_yaml.read_text(encoding="utf-8") == new_config
    assert os.stat(api_yaml).st_ino == inode
    assert [p.name for p in api_yaml.parent.iterdir() if p.name.startswith(".api.yaml.")] == []


@pytest.mark.asyncio
async def test_config_save_rejects_invalid_yaml(client, api_yaml):
    response = await client.post("/api/config/save", json={"apiKey": ADMIN_KEY, "config": "api_keys: [unclosed"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid YAML syntax"
    assert api_yaml.read_text(encoding="utf-8") == API_YAML


@pytest.mark.asyncio
async def test_config_save_requires_admin(client, api_yaml):
    response = await client.post("/api/config/save", json={"apiKey": USER_KEY, "config": "a: 1\n"})
    assert response.status_code == 403

    response = await client.post("/api/config/save", json={"apiKey": ADMIN_KEY})
    assert response.status_code == 400

    response = await client.post("/api/config/save", json={"config": "a: 1\n"})
    assert response.status_code == 400
    assert api_yaml.read_text(encoding="utf-8") == API_YAML


# ============== 渠道 ==============

@pytest.mark.asyncio
async def test_providers_list_get_and_post(client):
    for method in ("GET", "POST"):
        response = await client.request(method, "/api/providers/list", params={"apiKey": USER_KEY})
        assert response.status_code == 200
        providers = response.json()["providers"]
        assert [p["provider"] for p in providers] == ["openai", "claude", "gemini"]
        assert [p["supported"] for p in providers] == [True, True, False]
        assert providers[0]["models"][1] == {"original": "gpt-4o-mini", "display": "mini"}

    response = await client.get("/api/providers/list", params={"apiKey": "sk-unknown"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_provider_test_success(client, upstream):
    payload = {
        "apiKey": USER_KEY,
        "provider": "openai",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "api": "sk-upstream-openai",
        "model": "gpt-4o",
    }
    response = await client.post("/api/providers/test", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "测试成功"
    assert "responseTime" in body

    assert len(upstream.calls) == 1
    assert upstream.calls[0].headers["authorization"] == "Bearer sk-upstream-openai"


@pytest.mark.asyncio
async def test_provider_test_upstream_failure_is_200(client, upstream):
    upstream.handler = lambda request: httpx.Response(500, text="boom")
    payload = {
        "apiKey": ADMIN_KEY,
        "provider": "claude",
        "base_url": "https://api.anthropic.com/v1/messages",
        "api": "sk-ant-upstream",
        "model": "claude-3-5-sonnet",
    }
    response = await client.post("/api/providers/test", json=payload)
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["message"] == "HTTP 500: boom"
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_provider_test_validation(client, upstream):
    payload = {
        "apiKey": USER_KEY,
        "provider": "openai",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "api": "sk-upstream-openai",
    }
    response = await client.post("/api/providers/test", json=payload)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "缺少必要参数"

    payload["model"] = "gpt-4o"
    payload["apiKey"] = "sk-unknown"
    response = await client.post("/api/providers/test", json=payload)
    assert response.status_code == 403
    assert upstream.calls == []
