"""
API 路由模块

"""

from fastapi import APIRouter

# 创建主路由器
api_router = APIRouter()

# 导入并注册子路由
from routes.stats import router as stats_router
from routes.auth import router as auth_router
from routes.config import router as config_router
from routes.providers import router as providers_router

api_router.include_router(stats_router, tags=["Stats"])
api_router.include_router(auth_router, tags=["Auth"])
api_router.include_router(config_router, tags=["Config"])
api_router.include_router(providers_router, tags=["Providers"])

__all__ = ["api_router"]
