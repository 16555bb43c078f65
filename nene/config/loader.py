"""模块说明：loader。"""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

from nene.config.schema import Config


def get_config_path() -> Path:
    """函数说明：get_config_path。"""
    return Path.home() / ".nene" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """读取配置文件并叠加环境变量；文件损坏时回退到默认配置。"""
    path = config_path or get_config_path()
    config = Config()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            config = Config(**convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return _apply_env_overrides(config)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """函数说明：save_config。"""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    # 文件中统一使用 camelCase
    data = config.model_dump()
    data = convert_to_camel(data)

    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def _apply_env_overrides(config: Config) -> Config:
    """兼容旧版环境变量。"""
    if token := os.environ.get("TELEGRAM_BOT_TOKEN"):
        config.channels.telegram.token = token
    if proxy := os.environ.get("TELEGRAM_PROXY"):
        config.channels.telegram.proxy = proxy
    if prompt := os.environ.get("NENE_SYSTEM_PROMPT"):
        config.agents.defaults.system_prompt = prompt
    return config


def convert_keys(data: Any) -> Any:
    """函数说明：convert_keys。"""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """函数说明：convert_to_camel。"""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """函数说明：camel_to_snake。"""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """函数说明：snake_to_camel。"""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
