"""
Upload items: one file to send or one directory to create.
"""

from __future__ import annotations

import mimetypes
import posixpath
from typing import TYPE_CHECKING, Callable, Optional

from errors import InvariantViolation

if TYPE_CHECKING:
    from transports.base import Transport


class Item:
    """Base class. The session assigns ``id`` when the item is enqueued."""

    is_dir = False

    def __init__(self, path: str, size: int = 0, overwrite: bool = False):
        if not path:
            raise ValueError("empty path")
        if size < 0:
            raise ValueError(f"negative size for {path}: {size}")
        self.path = path
        self.size = size
        self.overwrite = overwrite
        self.id: Optional[int] = None

    @property
    def name(self) -> str:
        return posixpath.basename(self.path.rstrip("/")) or self.path

    @property
    def type(self) -> str:
        return ""

    def assign_id(self, item_id: int) -> None:
        if self.id is not None:
            raise InvariantViolation(f"item {self.path} already enqueued as #{self.id}")
        self.id = item_id

    async def transfer(self, transport: Transport, on_progress: Callable[[int], None]) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, path={self.path!r}, size={self.size})"


class FileItem(Item):
    """A file upload. ``handle`` is whatever the transport reads from."""

    def __init__(self, path: str, handle, size: int, overwrite: bool = False):
        super().__init__(path, size, overwrite)
        self.handle = handle

    @property
    def type(self) -> str:
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"

    async def transfer(self, transport: Transport, on_progress: Callable[[int], None]) -> None:
        await transport.upload_file(self.path, self.handle, self.overwrite, on_progress)


class DirectoryItem(Item):
    """A directory creation request. Size is nominal (always 0)."""

    is_dir = True

    def __init__(self, path: str):
        super().__init__(path, 0, False)
        self.handle = None

    async def transfer(self, transport: Transport, on_progress: Callable[[int], None]) -> None:
        await transport.create_directory(self.path)
