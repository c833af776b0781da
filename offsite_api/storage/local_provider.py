"""
Local filesystem storage provider for development.
Saves files to a local directory instead of Azure Blob Storage.
"""
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .provider import StorageProvider, make_key

log = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_dir: str = "var/storage", public_base_url: str = ""):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or "").rstrip("/")

    def _get_path(self, key: str) -> Path:
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def store(self, data: bytes, folder: str, name: str, content_type: Optional[str] = None) -> str:
        key = make_key(folder, name)
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        log.debug("stored %s bytes at %s", len(data), path)
        return f"{self.public_base_url}/files/{quote(key)}"
