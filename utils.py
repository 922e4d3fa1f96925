import os
import shutil
import tempfile
from typing import Any

from ruamel.yaml import YAML, YAMLError

from core.log_config import logger

yaml = YAML()
yaml.preserve_quotes = True
yaml.indent(mapping=2, sequence=4, offset=2)

DEFAULT_API_YAML_PATH = "./api.yaml"


def get_api_yaml_path() -> str:
    """配置文件路径，可通过 API_YAML_PATH 覆盖。"""
    return (os.getenv("API_YAML_PATH") or "").strip() or DEFAULT_API_YAML_PATH


def read_text_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def parse_yaml_text(text: str) -> Any:
    """解析 YAML 文本，语法错误时抛出 YAMLError。"""
    return yaml.load(text)


def is_valid_yaml(text: str) -> bool:
    try:
        parse_yaml_text(text)
    except YAMLError as e:
        logger.info("Rejected YAML document: %s", e)
        return False
    return True


def write_text_atomic(path: str, text: str) -> None:
    """原样写入文本。

    先写入同目录下的临时文件，再用 os.replace 覆盖目标文件，
    写入中途失败时原文件保持不变。目标文件的权限会被保留。
    单文件挂载（bind mount）时无法替换，改为原地覆盖写入。
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".api.yaml.", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        if os.path.exists(path):
            shutil.copymode(path, tmp_path)
        try:
            os.replace(tmp_path, path)
            return
        except OSError as e:
            logger.warning("Cannot replace '%s' (%s), writing in place", path, e)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        os.unlink(tmp_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
