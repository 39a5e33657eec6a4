"""保存的登录凭据：数据目录下的一个 JSON 文件。

只在用户选择记住我且登录成功后写入；Cookie 字段仅作为最后的兜底。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from groupguard.auth.errors import StoreFaultError
from groupguard.auth.models import StoredCredentials
from groupguard.config import StorageLocation

logger = logging.getLogger(__name__)

CREDENTIALS_FILE_NAME = "credentials.json"


class CredentialStore:
    """读写保存的凭据"""

    def __init__(self, location: StorageLocation):
        self.location = location

    def _file(self) -> Path:
        return self.location.get_data_dir() / CREDENTIALS_FILE_NAME

    def has_saved(self) -> bool:
        return self.load() is not None

    def load(self) -> StoredCredentials | None:
        """读取凭据；文件不存在、损坏或读取失败都返回 None"""
        try:
            file_path = self._file()
            if not file_path.exists():
                return None
            with open(file_path, "r", encoding="utf-8") as f:
                return StoredCredentials.model_validate_json(f.read())
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"[CredentialStore] 读取凭据失败: {e}")
            return None

    def save(self, username: str, password: str, auth_cookie: str | None = None) -> None:
        credentials = StoredCredentials(username=username, password=password, auth_cookie=auth_cookie)
        try:
            file_path = self._file()
            file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = file_path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(credentials.model_dump_json())
            os.replace(tmp_path, file_path)
        except OSError as e:
            raise StoreFaultError(f"Failed to save credentials: {e}") from e
        logger.info("[CredentialStore] 凭据已保存")

    def clear(self) -> None:
        try:
            self._file().unlink(missing_ok=True)
        except OSError as e:
            raise StoreFaultError(f"Failed to clear credentials: {e}") from e
        logger.info("[CredentialStore] 已清除保存的凭据")
