"""
API Key 凭证模块

从 api.yaml 的 api_keys 列表解析调用方角色：
- admin：可列出全部 key，可以任意 key 的身份查看统计（view-as）
- user：只能查询自己的记录

每次调用都会重新读取配置文件，修改 api.yaml 后立即生效。
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel
from ruamel.yaml import YAMLError

from core.log_config import logger
from utils import get_api_yaml_path, parse_yaml_text, read_text_file


class ConfigError(Exception):
    """配置文件相关的服务端错误。"""

    message = "Configuration error"


class ConfigNotFoundError(ConfigError):
    message = "Configuration file not found"


class InvalidConfigError(ConfigError):
    message = "Invalid configuration"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ApiKeyEntry(BaseModel):
    api: str
    role: Role = Role.USER
    name: Optional[str] = None


def _parse_entry(index: int, item: Any) -> ApiKeyEntry:
    if not isinstance(item, dict):
        raise InvalidConfigError(f"api_keys[{index}] is not a mapping")

    api = item.get("api")
    if not isinstance(api, str) or not api:
        raise InvalidConfigError(f"api_keys[{index}].api is missing")

    role = item.get("role")
    if role is None:
        role = Role.USER
    else:
        try:
            role = Role(str(role))
        except ValueError:
            raise InvalidConfigError(f"api_keys[{index}].role must be 'admin' or 'user', got {role!r}")

    name = item.get("name")
    return ApiKeyEntry(api=str(api), role=role, name=str(name) if name is not None else None)


class ApiKeyStore:
    """基于 api.yaml 的 key 查询。"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_api_yaml_path()

    def read_text(self) -> str:
        try:
            return read_text_file(self.path)
        except FileNotFoundError:
            logger.error("'%s' not found. Please check API_YAML_PATH.", self.path)
            raise ConfigNotFoundError(self.path)

    def load_document(self) -> dict:
        """读取并解析配置文件，要求顶层为 mapping 且包含 api_keys 列表。"""
        text = self.read_text()
        try:
            document = parse_yaml_text(text)
        except YAMLError as e:
            logger.error("配置文件 '%s' 格式不正确。请检查 YAML 格式。%s", self.path, e)
            raise InvalidConfigError(str(e)) from e

        if not isinstance(document, dict):
            raise InvalidConfigError("config document is not a mapping")
        if not isinstance(document.get("api_keys"), list):
            raise InvalidConfigError("api_keys is missing or not a list")
        return document

    def entries(self) -> List[ApiKeyEntry]:
        document = self.load_document()
        try:
            return [_parse_entry(i, item) for i, item in enumerate(document["api_keys"])]
        except InvalidConfigError as e:
            logger.error("Invalid api_keys in '%s': %s", self.path, e)
            raise

    def resolve_role(self, api_key: str) -> Optional[Role]:
        """返回 key 对应的角色，不存在时返回 None。"""
        for entry in self.entries():
            if entry.api == api_key:
                return entry.role
        return None

    def is_admin(self, api_key: str) -> bool:
        return self.resolve_role(api_key) == Role.ADMIN

    def list_all(self) -> List[ApiKeyEntry]:
        return self.entries()
