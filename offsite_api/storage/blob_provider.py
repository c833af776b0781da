from typing import Optional

from azure.storage.blob import BlobServiceClient, ContentSettings

from .provider import StorageProvider, make_key


class BlobStorageProvider(StorageProvider):
    def __init__(self, connection_string: Optional[str], container: Optional[str]) -> None:
        if not connection_string or not container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = container

    def store(self, data: bytes, folder: str, name: str, content_type: Optional[str] = None) -> str:
        key = make_key(folder, name)
        client = self._service.get_blob_client(self._container, key)
        settings = ContentSettings(content_type=content_type) if content_type else None
        client.upload_blob(data, overwrite=True, content_settings=settings)
        return client.url
