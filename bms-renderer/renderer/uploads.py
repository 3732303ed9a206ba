from abc import ABC, abstractmethod
from pathlib import Path

from google.cloud import storage

from renderer.core import setup_logger
from renderer.errors import RenderError

logger = setup_logger("bms.uploads")


class UploadError(RenderError):
    """Raised when a rendered file cannot be stored."""
    pass


class ObjectStore(ABC):
    """
    Abstract storage interface for rendered artifacts.
    Keys are derived from the operation identifier by the caller.
    """
    @abstractmethod
    def upload(self, local_path: str, key: str) -> str:
        """Store the file under `key`; returns its location."""
        pass


class GCSObjectStore(ObjectStore):
    """Google Cloud Storage implementation of ObjectStore."""

    def __init__(self, bucket_name: str, client=None):
        self._bucket_name = bucket_name
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def upload(self, local_path: str, key: str) -> str:
        if not Path(local_path).exists():
            raise UploadError(f"Render output not found: {local_path}")
        blob = self._get_client().bucket(self._bucket_name).blob(key)
        try:
            blob.upload_from_filename(str(local_path))
        except Exception as exc:
            raise UploadError(f"Failed to upload render output to gs://{self._bucket_name}/{key}") from exc
        location = f"gs://{self._bucket_name}/{key}"
        logger.info(f"Uploaded {local_path} to {location}")
        return location
