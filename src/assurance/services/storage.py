"""
Artifact storage capability consumed by HARD_DELETE.

The platform's object store is external; anything with a
delete(storage_key) method that raises StorageError on failure can be
plugged in through get_storage().
"""
import logging
import os
from typing import Protocol

from assurance.config import settings
from assurance.errors import StorageError

logger = logging.getLogger(__name__)


class ArtifactStorage(Protocol):
    def delete(self, storage_key: str) -> None: ...


class LocalArtifactStorage:
    """Filesystem-backed storage rooted at ARTIFACT_STORAGE_ROOT."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _path(self, storage_key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, storage_key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise StorageError(f"Storage key escapes storage root: {storage_key}")
        return path

    def delete(self, storage_key: str) -> None:
        path = self._path(storage_key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("Storage object already absent: %s", storage_key)
        except OSError as e:
            raise StorageError(f"Could not delete {storage_key}: {e}") from e


def get_storage() -> ArtifactStorage:
    return LocalArtifactStorage(settings.artifact_storage_root)
