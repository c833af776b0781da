import re
import uuid
from typing import Optional

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def make_key(folder: str, name: str) -> str:
    """folder/<uuid>_<sanitised name>; never escapes the folder."""
    clean = _UNSAFE.sub("_", (name or "file").replace("..", "_")).strip("._") or "file"
    return f"{folder.strip('/')}/{uuid.uuid4().hex}_{clean}"


class StorageProvider:
    def store(self, data: bytes, folder: str, name: str, content_type: Optional[str] = None) -> str:
        """Persist bytes and return a URL for them."""
        raise NotImplementedError
