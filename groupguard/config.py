"""应用配置与数据目录。

- AppConfig：从 YAML 加载的运行配置（API 地址、应用标识、超时等）
- StorageLocation：数据目录提供者，会话存储与凭据文件都放在该目录下
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/groupguard.yaml"
CONFIG_ENV_VAR = "GROUPGUARD_CONFIG"


class AppConfig(BaseModel):
    """运行配置；YAML 中缺失的字段取默认值。"""

    api_base_url: str = "https://api.vrchat.cloud/api/1"
    app_name: str = "VRChatGroupGuard"
    app_version: str = "1.0.0"
    app_contact: str = "admin@groupguard.app"
    request_timeout_seconds: float = 30.0
    restore_timeout_seconds: float = 15.0
    storage_config_path: str = "data/storage-config.json"
    default_data_dir: str = "data"


def load_config(path: str | None = None) -> AppConfig:
    """读取 YAML 配置文件；未指定路径时依次使用环境变量与默认路径，文件不存在则全部取默认值。"""
    config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        logger.info(f"[Config] 未找到配置文件 {config_path}，使用默认配置")
        return AppConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    logger.info(f"[Config] 已加载配置: {config_path}")
    return AppConfig.model_validate(data)


class StorageLocation:
    """数据目录提供者：记住用户选择的目录，未配置时回退到默认目录。"""

    def __init__(self, config_path: str, default_dir: str = "data"):
        self.config_path = Path(config_path)
        self.default_dir = Path(default_dir)
        self._data_dir: Path | None = None

    def initialize(self) -> None:
        """读取 storage-config.json；仅当记录的目录仍然存在时才采用。"""
        try:
            if not self.config_path.exists():
                logger.info("[StorageLocation] 未找到存储配置，等待用户设置")
                return

            with open(self.config_path, "r", encoding="utf-8") as f:
                config = json.load(f)

            data_dir = config.get("dataDir")
            if data_dir and Path(data_dir).exists():
                self._data_dir = Path(data_dir)
                logger.info(f"[StorageLocation] 已加载数据目录: {self._data_dir}")
            else:
                logger.warning(f"[StorageLocation] 配置的数据目录不存在: {data_dir}")
                self._data_dir = None
        except Exception as e:
            logger.error(f"[StorageLocation] 初始化失败: {e}")

    def is_configured(self) -> bool:
        return self._data_dir is not None

    def get_data_dir(self) -> Path:
        """返回数据目录；未配置时回退到默认目录（不存在则创建）。"""
        if self._data_dir is not None:
            return self._data_dir
        self.default_dir.mkdir(parents=True, exist_ok=True)
        return self.default_dir

    def set_location(self, dir_path: str) -> Path:
        """设置数据目录：目录不存在则创建，并写回配置文件。"""
        path = Path(dir_path)
        path.mkdir(parents=True, exist_ok=True)

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump({"dataDir": str(path)}, f)

        self._data_dir = path
        logger.info(f"[StorageLocation] 数据目录已设置为: {path}")
        return path
