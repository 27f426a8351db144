# src/config_manager.py

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError
from models import ProxyConfig

logger = logging.getLogger(__name__)

# 定义配置文件的路径
CONFIG_DIR = Path(__file__).parent.parent / "config"
CONFIG_FILE_PATH = CONFIG_DIR / "config.conf"
CONFIG_ENV_VAR = "PROXY_CONFIG"


class ConfigError(Exception):
    """配置缺失或无法解析。启动阶段遇到它必须直接退出。"""


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    if path:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return CONFIG_FILE_PATH


def parse_properties(text: str) -> Dict[str, str]:
    """
    解析 key=value 形式的 .conf 文件。
    以 '#' 或 '!' 开头的行是注释，':' 也可以作为分隔符。
    """
    data = {}
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line[0] in "#!":
            continue
        positions = [p for p in (line.find("="), line.find(":")) if p != -1]
        if not positions:
            raise ConfigError(f"line {lineno}: expected 'key=value', got {raw_line!r}")
        sep = min(positions)
        key = line[:sep].strip()
        if not key:
            raise ConfigError(f"line {lineno}: empty key")
        data[key] = line[sep + 1:].strip()
    return data


def load_config(path: Optional[Union[str, Path]] = None) -> ProxyConfig:
    """
    加载配置文件，只在启动时调用一次。
    文件不存在、格式错误或字段校验失败都会抛出 ConfigError，不再回退到默认值。
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if config_path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {config_path} must be an object")
    else:
        # 空值视为未设置
        data = {k: v for k, v in parse_properties(text).items() if v != ""}

    try:
        config = ProxyConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e

    logger.info(f"Configuration loaded from {config_path}")
    return config
