"""
Transport contract shared by every adapter.
"""

from __future__ import annotations

from typing import Callable


class Transport:
    """Performs a single item's transfer.

    ``upload_file`` reports absolute bytes sent through ``on_progress`` and
    raises on failure; ``create_directory`` raises on failure.
    """

    async def upload_file(
        self, path: str, handle, overwrite: bool, on_progress: Callable[[int], None]
    ) -> None:
        raise NotImplementedError

    async def create_directory(self, path: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def read_chunks(handle, chunk_size: int):
    """Yield ``chunk_size`` pieces of the local file at ``handle``."""
    with open(handle, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk
