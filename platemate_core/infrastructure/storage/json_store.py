import json
import os
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from platemate_core.config.settings import settings
from platemate_core.domain.conversation import PersistenceStore
from platemate_core.domain.exceptions import BusinessError


class JsonStateStore(PersistenceStore):
    """把历史、偏好与收藏整体写入一个 JSON 文件。

    每次写入先落临时文件再 os.replace，保证读到的要么是旧状态要么是新状态。
    """

    def __init__(self, root: str | Path | None = None, filename: str = "state.json"):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / filename

    @property
    def path(self) -> Path:
        return self._path

    def load_state(self) -> Optional[Dict[str, Any]]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, dict):
            raise BusinessError(code="STORE_READ_ERROR", message=f"{self._path} is not a mapping")
        return data

    def save_state(self, state: Dict[str, Any]) -> None:
        tmp_path = self._root / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(state, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))


class MemoryStateStore(PersistenceStore):
    """进程内存储，供测试与无持久化场景使用。"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._state = json.loads(json.dumps(initial)) if initial is not None else None
        self.saves = 0

    def load_state(self) -> Optional[Dict[str, Any]]:
        return json.loads(json.dumps(self._state)) if self._state is not None else None

    def save_state(self, state: Dict[str, Any]) -> None:
        self._state = json.loads(json.dumps(state))
        self.saves += 1
