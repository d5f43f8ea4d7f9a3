"""
File Storage Backend for Kollektiv

This module provides the path-addressable storage capability that every catalog
component reads and writes through. Paths are slash-separated strings rooted at
a single user-granted directory.

Key Features:
- Save/read/delete/list over a single root directory
- Atomic file writes to prevent partially written documents
- Intermediate directory creation on save
- Path normalization and rejection of paths escaping the root
"""

import os
import tempfile
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations"""
    pass


@dataclass
class StorageEntry:
    """An immediate child of a storage directory."""
    name: str
    kind: str  # "file" or "directory"
    path: str


def normalize_path(path: str) -> str:
    """
    Normalize a storage path to its canonical slash-separated form.

    Args:
        path: Path using slashes or backslashes

    Returns:
        Path with empty segments removed, e.g. "gallery//a\\b.png" -> "gallery/a/b.png"

    Raises:
        StorageError: If the path is empty, absolute or escapes the root
    """
    if not isinstance(path, str):
        raise StorageError(f"Storage path must be a string, got {type(path).__name__}")

    raw = path.replace("\\", "/")
    if raw.startswith("/"):
        raise StorageError(f"Storage path must be relative: {path}")

    segments = [segment for segment in raw.split("/") if segment and segment != "."]
    if not segments:
        raise StorageError("Storage path cannot be empty")
    if ".." in segments:
        raise StorageError(f"Storage path cannot contain '..': {path}")

    return "/".join(segments)


def join_path(*segments: Optional[str]) -> str:
    """Join path segments, skipping empty ones."""
    return "/".join(segment.strip("/") for segment in segments if segment and segment.strip("/"))


def basename(path: str) -> str:
    """Last segment of a slash-separated path."""
    return path.replace("\\", "/").rstrip("/").split("/")[-1]


class FileStorage:
    """
    Storage capability contract.

    Implementations must make ``delete`` idempotent and return ``None`` from
    ``read`` when no content exists at the path.
    """

    def save(self, path: str, content: bytes) -> str:
        """Write content at path and return the path actually used."""
        raise NotImplementedError

    def read(self, path: str) -> Optional[bytes]:
        """Return the content at path, or None if absent."""
        raise NotImplementedError

    def delete(self, path: str) -> None:
        """Remove the content at path. Deleting a missing path is not an error."""
        raise NotImplementedError

    def list(self, dir_path: str = "") -> List[StorageEntry]:
        """Enumerate the immediate children of a directory."""
        raise NotImplementedError

    def read_text(self, path: str) -> Optional[str]:
        content = self.read(path)
        if content is None:
            return None
        return content.decode("utf-8")

    def save_text(self, path: str, text: str) -> str:
        return self.save(path, text.encode("utf-8"))


class LocalDirectoryStorage(FileStorage):
    """
    FileStorage backed by a directory on the local filesystem.
    """

    def __init__(self, root_directory: str):
        """
        Initialize storage rooted at a directory.

        Args:
            root_directory: Directory granted for application data. Created if missing.

        Raises:
            StorageError: If the root directory cannot be created
        """
        self._root = os.path.abspath(root_directory)
        try:
            os.makedirs(self._root, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage root {self._root}: {e}")

    @property
    def root(self) -> str:
        return self._root

    def _resolve(self, path: str) -> str:
        return os.path.join(self._root, *normalize_path(path).split("/"))

    def save(self, path: str, content: bytes) -> str:
        """
        Atomically write content using a temporary file and replace.

        Args:
            path: Target storage path
            content: Bytes to write

        Returns:
            The normalized path the content was written to

        Raises:
            StorageError: If the write fails
        """
        normalized = normalize_path(path)
        target = self._resolve(normalized)
        target_dir = os.path.dirname(target)
        temp_path = None
        try:
            os.makedirs(target_dir, exist_ok=True)
            with tempfile.NamedTemporaryFile(mode="wb", dir=target_dir, delete=False, suffix=".tmp") as temp_file:
                temp_file.write(content)
                temp_path = temp_file.name
            os.replace(temp_path, target)
        except (OSError, TypeError) as e:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    logger.warning(f"Could not remove temporary file {temp_path}")
            raise StorageError(f"Failed to save {normalized}: {e}")

        return normalized

    def read(self, path: str) -> Optional[bytes]:
        try:
            target = self._resolve(path)
        except StorageError as e:
            logger.warning(f"Refusing to read invalid path {path!r}: {e}")
            return None

        if not os.path.isfile(target):
            return None

        try:
            with open(target, "rb") as f:
                return f.read()
        except OSError as e:
            logger.warning(f"Failed to read {path}: {e}")
            return None

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        except IsADirectoryError:
            raise StorageError(f"Refusing to delete directory {path}")
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")

    def list(self, dir_path: str = "") -> List[StorageEntry]:
        if dir_path and dir_path.strip("/"):
            directory = self._resolve(dir_path)
            prefix = normalize_path(dir_path)
        else:
            directory = self._root
            prefix = ""

        if not os.path.isdir(directory):
            return []

        entries = []
        for name in sorted(os.listdir(directory)):
            if name.endswith(".tmp"):
                continue
            kind = "directory" if os.path.isdir(os.path.join(directory, name)) else "file"
            entries.append(StorageEntry(name=name, kind=kind, path=join_path(prefix, name)))
        return entries
