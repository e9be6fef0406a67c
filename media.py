"""
Durable storage for weighment snapshots.

Keys are ``{category}/{epoch_ms}-{random}.jpg``. Terminals never coordinate,
so the random suffix (not a counter) keeps concurrent uploads apart.
Putting the same key twice replaces the content.
"""

import logging
import os
import secrets
import string
import time
from abc import ABC, abstractmethod

from errors import UploadError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg": ".jpg", "image/png": ".png"}
_KEY_ALPHABET = string.ascii_lowercase + string.digits


class ObjectStore(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        pass


class LocalObjectStore(ObjectStore):
    """Files under ``root_dir``, published by the app at ``{base_url}/media/``."""

    def __init__(self, root_dir: str, base_url: str):
        self.root_dir = os.path.abspath(root_dir)
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root_dir, key))
        if not path.startswith(self.root_dir + os.sep):
            raise ValueError(f"key escapes the media root: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValueError(f"unsupported content type {content_type!r}")
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = f"{path}.part"
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/media/{key}"


def snapshot_key(category: str, ext: str = ".jpg") -> str:
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(10))
    return f"{category}/{int(time.time() * 1000)}-{suffix}{ext}"


class SnapshotUploader:
    def __init__(self, store: ObjectStore, category: str = "snapshots"):
        self.store = store
        self.category = category

    def upload(self, image: bytes, content_type: str = "image/jpeg") -> str:
        """Store the image and return its public URL. Raises UploadError."""
        if not image:
            raise UploadError("Snapshot is empty")
        key = snapshot_key(self.category, ALLOWED_CONTENT_TYPES.get(content_type, ".jpg"))
        try:
            self.store.put(key, image, content_type)
            url = self.store.public_url(key)
        except (OSError, ValueError) as e:
            logger.error(f"snapshot upload failed for {key}: {e}")
            raise UploadError(f"Snapshot could not be stored: {e}")
        logger.info(f"snapshot stored as {key} ({len(image)} bytes)")
        return url
