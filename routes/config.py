"""
配置编辑路由（仅管理员）

保存时只做 YAML 语法校验，校验通过后原样写回 api.yaml。
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from core.credentials import ApiKeyStore
from core.log_config import logger
from routes.deps import ensure_admin_key, get_key_store, verify_admin_api_key
from utils import is_valid_yaml, write_text_atomic

router = APIRouter(prefix="/config")


class SaveConfigRequest(BaseModel):
    api_key: Optional[str] = Field(None, alias="apiKey")
    config: Optional[str] = None


@router.get("/load")
async def load_config(
    api_key: str = Depends(verify_admin_api_key),
    key_store: ApiKeyStore = Depends(get_key_store),
):
    return {"config": key_store.read_text()}


@router.post("/save")
async def save_config(
    payload: SaveConfigRequest = Body(...),
    key_store: ApiKeyStore = Depends(get_key_store),
):
    if not payload.api_key or not payload.config:
        raise HTTPException(status_code=400, detail="API Key and config are required")

    ensure_admin_key(key_store, payload.api_key)

    if not is_valid_yaml(payload.config):
        raise HTTPException(status_code=400, detail="Invalid YAML syntax")

    write_text_atomic(key_store.path, payload.config)
    logger.info("Config saved to %s", key_store.path)
    return {"success": True}
