"""Folder store abstraction and local filesystem implementation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class Folder(Protocol):
    """A resolved folder that new files can be created in."""

    def create_file(self, data: bytes, name: str) -> Path: ...


class FolderStore(Protocol):
    """Protocol for document storage backends."""

    def resolve_folder(self, path: str) -> Folder: ...


class LocalFileStore:
    """Local filesystem implementation of FolderStore.

    Folder paths are ``/``-separated and relative to ``root``; missing
    folders are created.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def resolve_folder(self, path: str) -> LocalFolder:
        """Return the folder for ``path``, creating it if needed."""
        parts = [p.strip() for p in (path or "").split("/")]
        parts = [p for p in parts if p and p not in (".", "..")]
        if not parts:
            msg = f"Folder path is empty: {path!r}"
            raise ValueError(msg)
        dir_path = self.root.joinpath(*parts)
        dir_path.mkdir(parents=True, exist_ok=True)
        logger.debug("Resolved folder %r to %s", path, dir_path)
        return LocalFolder(dir_path)


class LocalFolder:
    """A directory on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def create_file(self, data: bytes, name: str) -> Path:
        """Write ``data`` under ``name`` and return the file's path.

        An existing file is never overwritten; a numeric suffix is
        appended instead.
        """
        base = Path(Path(name).name)
        file_path = self.path / base

        counter = 1
        while file_path.exists():
            counter += 1
            file_path = self.path / f"{base.stem}_{counter}{base.suffix}"

        file_path.write_bytes(data)
        return file_path
