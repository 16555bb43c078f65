"""配置加载与模型定义。"""

from nene.config.loader import get_config_path, load_config, save_config
from nene.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
