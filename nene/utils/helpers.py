"""模块说明：helpers。"""

import platform
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """函数说明：ensure_dir。"""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """函数说明：get_data_path。"""
    return ensure_dir(Path.home() / ".nene")


def get_memory_db_path() -> Path:
    """长期记忆数据库文件位置。"""
    return get_data_path() / "memory.db"


def host_os() -> str:
    """函数说明：host_os。"""
    system = platform.system()
    return {"Darwin": "macOS"}.get(system, system or "unknown")


def parse_session_key(key: str) -> tuple[str, str]:
    """函数说明：parse_session_key。"""
    parts = key.split(":", 1)
    if len(parts) != 2:
        raise ValueError(f"Invalid session key: {key}")
    return parts[0], parts[1]
