import logging

from core.env import env_bool

logging.basicConfig(
    level=logging.DEBUG if env_bool("DEBUG", False) else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("UniAPI-Dashboard")

# 探测请求和 SQLite 驱动的日志过于频繁
logging.getLogger("httpx").setLevel(logging.CRITICAL)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
