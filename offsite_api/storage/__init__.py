# offsite_api/storage/__init__.py
from flask import current_app

from .provider import StorageProvider

_EXT_KEY = "offsite_storage"


def _build(app) -> StorageProvider:
    kind = (app.config.get("STORAGE_PROVIDER") or "local").lower()
    if kind == "local":
        from .local_provider import LocalStorageProvider
        return LocalStorageProvider(app.config["STORAGE_LOCAL_ROOT"], app.config["STORAGE_PUBLIC_BASE_URL"])
    if kind == "blob":
        from .blob_provider import BlobStorageProvider
        return BlobStorageProvider(app.config.get("AZURE_BLOB_CONNECTION"), app.config.get("AZURE_BLOB_CONTAINER"))
    if kind == "hybrid":
        from .blob_provider import BlobStorageProvider
        from .hybrid_provider import HybridStorageProvider
        from .local_provider import LocalStorageProvider
        return HybridStorageProvider(
            BlobStorageProvider(app.config.get("AZURE_BLOB_CONNECTION"), app.config.get("AZURE_BLOB_CONTAINER")),
            LocalStorageProvider(app.config["STORAGE_LOCAL_ROOT"], app.config["STORAGE_PUBLIC_BASE_URL"]),
        )
    raise RuntimeError(f"Unknown STORAGE_PROVIDER {kind!r}")


def get_storage() -> StorageProvider:
    """Provider for the current app, built lazily and cached on app.extensions."""
    app = current_app._get_current_object()
    provider = app.extensions.get(_EXT_KEY)
    if provider is None:
        provider = _build(app)
        app.extensions[_EXT_KEY] = provider
    return provider


def set_storage(app, provider: StorageProvider):
    app.extensions[_EXT_KEY] = provider
