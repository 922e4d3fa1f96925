import os
import tomllib
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from core.client_manager import ClientManager
from core.credentials import ApiKeyStore, ConfigError
from core.env import env_bool, env_float
from core.error_response import create_error_response
from core.log_config import logger
from core.providers import DEFAULT_PROBE_TIMEOUT
from db import LogStoreError, create_log_store_from_env
from routes import api_router

# DEBUG 环境变量支持 true/false/1/0/yes/no
is_debug = env_bool("DEBUG", False)

# 从 pyproject.toml 读取版本号
try:
    with open('pyproject.toml', 'rb') as f:
        data = tomllib.load(f)
        VERSION = data['project']['version']
except Exception:
    VERSION = 'unknown'
logger.info("VERSION: %s", VERSION)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 启动时创建共享对象，之后只读；测试可预先注入
    if not hasattr(app.state, "log_store"):
        app.state.log_store = create_log_store_from_env()

    if not hasattr(app.state, "key_store"):
        app.state.key_store = ApiKeyStore()
        logger.info("API keys config: %s", app.state.key_store.path)

    if not hasattr(app.state, "probe_timeout"):
        app.state.probe_timeout = env_float("PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT)

    if not hasattr(app.state, "client_manager"):
        default_config = {
            "headers": {
                "User-Agent": "curl/7.68.0",
                "Accept": "*/*",
            },
            "http2": True,
            "verify": True,
            "follow_redirects": True,
        }
        app.state.client_manager = ClientManager()
        await app.state.client_manager.init(default_config)

    yield
    # 关闭时的代码
    await app.state.client_manager.close()
    await app.state.log_store.close()


app = FastAPI(title="UniAPI Dashboard", version=VERSION, lifespan=lifespan, debug=is_debug)
app.include_router(api_router, prefix="/api")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return create_error_response(message=str(exc.detail), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid parameter {location}: {first.get('msg')}"
    else:
        message = "Invalid request"
    return create_error_response(message=message, status_code=400)


@app.exception_handler(ConfigError)
async def config_exception_handler(request: Request, exc: ConfigError):
    logger.error("Config error on %s: %s", request.url.path, exc)
    return create_error_response(
        message=exc.message,
        status_code=500,
        detail=str(exc) if is_debug else None,
    )


@app.exception_handler(LogStoreError)
async def log_store_exception_handler(request: Request, exc: LogStoreError):
    # 查询细节已在 LogStore 中记录，生产环境不返回给调用方
    return create_error_response(
        message="Database query failed",
        status_code=500,
        detail=str(exc) if is_debug else None,
    )


@app.middleware("http")
async def catch_unhandled_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, e)
        return create_error_response(
            message="Internal server error",
            status_code=500,
            detail=str(e) if is_debug else None,
        )


# 配置 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


if __name__ == '__main__':
    import uvicorn
    PORT = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=PORT)
