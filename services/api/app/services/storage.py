import os
import logging
from pathlib import Path
from typing import Optional, Protocol

from ..settings import settings

logger = logging.getLogger("fridgemate.storage")


class UploadStore(Protocol):
    def put_bytes(self, key: str, data: bytes, content_type: str = ...) -> str: ...
    def get_bytes(self, key: str) -> bytes: ...
    def delete(self, key: str) -> bool: ...


def _media_root() -> Path:
    return Path(settings.media_root) if settings.media_root else (Path(os.getcwd()) / "media")


class LocalStorage:
    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else _media_root()
        if not self.root.exists():
            self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if ".." in key or key.startswith("/"):
            raise ValueError("Invalid storage key")
        return self.root / key

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """
        Save bytes to local disk.
        key: uploads/{owner_id}/{uuid}.{ext}
        Returns: the key, used as the stored image reference
        """
        file_path = self._path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "wb") as f:
            f.write(data)

        logger.info(f"Saved {len(data)} bytes to {file_path}")
        return key

    def get_bytes(self, key: str) -> bytes:
        with open(self._path(key), "rb") as f:
            return f.read()

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> bool:
        """
        Delete file from local disk.
        Returns True if deleted or didn't exist, False on error.
        """
        try:
            file_path = self._path(key)
        except ValueError:
            logger.warning(f"Invalid delete key: {key}")
            return False

        try:
            if file_path.exists():
                file_path.unlink()
                logger.info(f"Deleted file {file_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete {file_path}: {e}")
            return False


_storage: Optional[UploadStore] = None


def get_storage() -> UploadStore:
    global _storage
    if _storage is None:
        if settings.storage_backend == "s3":
            from ..storage.s3_compat import get_store
            _storage = get_store()
        else:
            _storage = LocalStorage()
    return _storage
