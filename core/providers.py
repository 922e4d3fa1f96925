"""
渠道目录与连通性测试

- parse_providers：从 api.yaml 的 providers 段解析渠道及模型映射
- probe_provider：向渠道发送一次最小的 chat completion 请求，报告成功/耗时/错误

两种鉴权方式按 base_url 形态区分：
- .../chat/completions：Authorization: Bearer <api>
- .../v1/messages：x-api-key + anthropic-version
"""

import asyncio
from time import time
from typing import Any, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.credentials import InvalidConfigError
from core.log_config import logger

OPENAI_STYLE = "openai"
ANTHROPIC_STYLE = "anthropic"
ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_PROBE_TIMEOUT = 60.0
PROBE_PROMPT = "渠道测试，仅回复ok"
ERROR_BODY_PREVIEW = 200


class ProviderModel(BaseModel):
    original: str
    display: str


class ProviderInfo(BaseModel):
    provider: str
    base_url: Optional[str] = None
    api: Optional[Union[str, List[str]]] = None
    models: List[ProviderModel] = []
    supported: bool = False


class ProbeResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message: str
    response_time: Optional[float] = None


def detect_auth_style(base_url: Optional[str]) -> Optional[str]:
    if not base_url:
        return None
    if "/v1/messages" in base_url:
        return ANTHROPIC_STYLE
    if "/chat/completions" in base_url:
        return OPENAI_STYLE
    return None


def _parse_models(provider_name: str, raw_models: Any) -> List[ProviderModel]:
    if raw_models is None:
        return []
    if not isinstance(raw_models, list):
        raise InvalidConfigError(f"providers[{provider_name}].model is not a list")

    models: List[ProviderModel] = []
    for entry in raw_models:
        if isinstance(entry, str):
            models.append(ProviderModel(original=entry, display=entry))
        elif isinstance(entry, dict):
            # 模型映射 original: display
            for original, display in entry.items():
                models.append(ProviderModel(original=str(original), display=str(display)))
        else:
            raise InvalidConfigError(f"providers[{provider_name}].model has unsupported entry {entry!r}")
    return models


def _normalize_api(raw_api: Any) -> Optional[Union[str, List[str]]]:
    if raw_api is None:
        return None
    if isinstance(raw_api, list):
        return [str(item) for item in raw_api]
    return str(raw_api)


def parse_providers(document: dict) -> List[ProviderInfo]:
    raw_providers = document.get("providers") or []
    if not isinstance(raw_providers, list):
        raise InvalidConfigError("providers is not a list")

    providers: List[ProviderInfo] = []
    for index, item in enumerate(raw_providers):
        if not isinstance(item, dict):
            raise InvalidConfigError(f"providers[{index}] is not a mapping")

        name = item.get("provider")
        if name is None or name == "":
            raise InvalidConfigError(f"providers[{index}].provider is missing")
        # 纯数字的渠道名按字符串处理
        name = str(name)

        base_url = item.get("base_url")
        base_url = str(base_url) if base_url is not None else None

        providers.append(
            ProviderInfo(
                provider=name,
                base_url=base_url,
                api=_normalize_api(item.get("api")),
                models=_parse_models(name, item.get("model")),
                supported=detect_auth_style(base_url) is not None,
            )
        )
    return providers


def build_probe_headers(auth_style: str, api: str) -> dict:
    headers = {"Content-Type": "application/json"}
    if auth_style == ANTHROPIC_STYLE:
        headers["x-api-key"] = api
        headers["anthropic-version"] = ANTHROPIC_VERSION
    else:
        headers["Authorization"] = f"Bearer {api}"
    return headers


async def probe_provider(
    client: httpx.AsyncClient,
    base_url: str,
    api: str,
    model: str,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> ProbeResult:
    """只发送一次请求，不做任何重试；所有失败都编码在返回值中。"""
    auth_style = detect_auth_style(base_url)
    if auth_style is None:
        return ProbeResult(success=False, message="不支持的端点类型")

    payload = {
        "model": model,
        "messages": [{"role": "user", "content": PROBE_PROMPT}],
    }
    headers = build_probe_headers(auth_style, api)

    start_time = time()
    try:
        response = await asyncio.wait_for(
            client.post(base_url, headers=headers, json=payload, timeout=timeout),
            timeout=timeout,
        )
    except (httpx.TimeoutException, asyncio.TimeoutError):
        logger.warning("Provider probe timed out: %s model=%s", base_url, model)
        return ProbeResult(
            success=False,
            message=f"请求超时({timeout:g}s)",
            response_time=time() - start_time,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("Provider probe network error: %s model=%s: %s", base_url, model, e)
        return ProbeResult(
            success=False,
            message=f"网络错误: {e}",
            response_time=time() - start_time,
        )

    response_time = time() - start_time
    if response.is_success:
        try:
            response.json()
        except ValueError as e:
            # 代理返回的 2xx HTML 错误页
            logger.warning("Provider probe got non-JSON body: %s model=%s: %s", base_url, model, e)
            return ProbeResult(success=False, message=f"网络错误: {e}", response_time=response_time)
        logger.info("Provider probe ok: %s model=%s %.2fs", base_url, model, response_time)
        return ProbeResult(success=True, message="测试成功", response_time=response_time)

    logger.info("Provider probe failed: %s model=%s HTTP %s", base_url, model, response.status_code)
    return ProbeResult(
        success=False,
        message=f"HTTP {response.status_code}: {response.text[:ERROR_BODY_PREVIEW]}",
        response_time=response_time,
    )
