"""
API Key 校验路由

前端用 API Key 登录；管理员可以列出全部 key，并切换到其它 key 查看统计。
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from core.credentials import ApiKeyStore
from routes.deps import ensure_admin_key, get_key_store

router = APIRouter(prefix="/auth")


class ValidateKeyRequest(BaseModel):
    api_key: Optional[str] = Field(None, alias="apiKey")


class AvailableKeysRequest(BaseModel):
    admin_key: Optional[str] = Field(None, alias="adminKey")


@router.post("/validate-key")
async def validate_key(
    payload: ValidateKeyRequest = Body(...),
    key_store: ApiKeyStore = Depends(get_key_store),
):
    if not payload.api_key:
        raise HTTPException(status_code=400, detail="API Key is required")

    role = key_store.resolve_role(payload.api_key)
    if role is None:
        return {"valid": False}
    return {"valid": True, "role": role.value}


@router.post("/available-keys")
async def available_keys(
    payload: AvailableKeysRequest = Body(...),
    key_store: ApiKeyStore = Depends(get_key_store),
):
    if not payload.admin_key:
        raise HTTPException(status_code=400, detail="Admin key is required")
    ensure_admin_key(key_store, payload.admin_key)

    keys = [entry.model_dump(mode="json", exclude_none=True) for entry in key_store.list_all()]
    return {"keys": keys}
