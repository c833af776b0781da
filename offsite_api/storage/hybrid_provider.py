import logging
from typing import Optional

from .provider import StorageProvider

log = logging.getLogger(__name__)


class HybridStorageProvider(StorageProvider):
    """Write to primary (blob); fall back to secondary (local disk) if it is down."""

    def __init__(self, primary: StorageProvider, fallback: StorageProvider):
        self.primary = primary
        self.fallback = fallback

    def store(self, data: bytes, folder: str, name: str, content_type: Optional[str] = None) -> str:
        try:
            return self.primary.store(data, folder, name, content_type)
        except Exception:
            log.warning("primary storage failed for %s/%s, using fallback", folder, name, exc_info=True)
            return self.fallback.store(data, folder, name, content_type)
