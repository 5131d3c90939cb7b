"""
Storage adapters.

Attachments never touch a storage backend directly; they go through a
``StorageAdapter``. ``DjangoStorageAdapter`` wraps any backend configured in
``settings.STORAGES`` (local disk, S3 via django-storages, in-memory, ...).
"""

import logging
from abc import ABC, abstractmethod

from django.core.files.base import ContentFile
from django.core.files.storage import Storage, storages

from .conf import get_setting

logger = logging.getLogger(__name__)


class StorageAdapter(ABC):
    """
    Interface for the storage an attachment writes its variants to.

    Implementations must tolerate concurrent writes to distinct paths.
    """

    @abstractmethod
    def write(self, path: str, data: bytes) -> str:
        """
        Write bytes to a path, replacing any existing file.

        Returns:
            The path the file was actually stored under
        """
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        """
        Delete the file at path.

        Returns:
            True on success (or if nothing was stored there), False on failure
        """
        pass

    @abstractmethod
    def url(self, path: str) -> str:
        pass

    @abstractmethod
    def read(self, path: str) -> bytes:
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass


class DjangoStorageAdapter(StorageAdapter):
    """Adapter over a Django storage backend."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def write(self, path: str, data: bytes) -> str:
        # Django would pick an alternative name for an existing file
        if self.storage.exists(path):
            self.storage.delete(path)
        stored = self.storage.save(path, ContentFile(data))
        logger.debug(f"Stored {len(data)} bytes at {stored}")
        return stored

    def delete(self, path: str) -> bool:
        try:
            self.storage.delete(path)
        except OSError as e:
            logger.warning(f"Could not delete {path} from storage: {e}")
            return False
        logger.debug(f"Deleted {path}")
        return True

    def url(self, path: str) -> str:
        return self.storage.url(path)

    def read(self, path: str) -> bytes:
        with self.storage.open(path, 'rb') as fh:
            return fh.read()

    def exists(self, path: str) -> bool:
        return self.storage.exists(path)


def get_adapter(disk: str = None) -> StorageAdapter:
    """
    Get the storage adapter for a ``settings.STORAGES`` alias.

    Args:
        disk: Storage alias (defaults to PAPERCLIP['STORAGE'])
    """
    return DjangoStorageAdapter(storages[disk or get_setting('STORAGE')])
