"""
渠道列表与连通性测试路由
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from core.client_manager import ClientManager
from core.credentials import ApiKeyStore
from core.providers import DEFAULT_PROBE_TIMEOUT, ProbeResult, parse_providers, probe_provider
from routes.deps import ensure_known_key, get_client_manager, get_key_store, verify_api_key

router = APIRouter(prefix="/providers")


class ProviderTestRequest(BaseModel):
    api_key: Optional[str] = Field(None, alias="apiKey")
    provider: Optional[str] = None
    base_url: Optional[str] = None
    api: Optional[str] = None
    model: Optional[str] = None


@router.api_route("/list", methods=["GET", "POST"])
async def list_providers(
    api_key: str = Depends(verify_api_key),
    key_store: ApiKeyStore = Depends(get_key_store),
):
    """
    返回配置中的渠道和模型映射；supported 表示 base_url 是否为可测试的 chat completion 端点。
    """
    providers = parse_providers(key_store.load_document())
    return {"providers": [p.model_dump() for p in providers]}


@router.post("/test", response_model=ProbeResult)
async def test_provider(
    request: Request,
    payload: ProviderTestRequest = Body(...),
    key_store: ApiKeyStore = Depends(get_key_store),
    client_manager: ClientManager = Depends(get_client_manager),
):
    """
    向渠道发送一次测试请求。超时、网络错误、非 2xx 都以 success=false 正常返回。
    """
    if not all([payload.api_key, payload.provider, payload.base_url, payload.api, payload.model]):
        raise HTTPException(status_code=400, detail="缺少必要参数")

    ensure_known_key(key_store, payload.api_key)

    timeout = getattr(request.app.state, "probe_timeout", DEFAULT_PROBE_TIMEOUT)
    async with client_manager.get_client(payload.base_url) as client:
        return await probe_provider(
            client,
            base_url=payload.base_url,
            api=payload.api,
            model=payload.model,
            timeout=timeout,
        )
