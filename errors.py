"""
Exception types raised by the upload queue and its transports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from items import Item


class CapyUploadError(Exception):
    """Base class for every capyupload error."""


class ConfigurationError(CapyUploadError, ValueError):
    """Invalid setting (limit, interval, transport name...)."""


class InvariantViolation(CapyUploadError, RuntimeError):
    """Internal bookkeeping was asked to do something impossible.

    Double release, duplicate id or a queue over capacity. These always
    point at a bug, so they are raised instead of ignored.
    """


class TransportError(CapyUploadError):
    """A transport call failed with a status code and a message."""

    def __init__(self, code: int, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class TransferFailure(CapyUploadError):
    """One item could not be transferred. Handed to the host error hook."""

    def __init__(self, item: Item, cause: Optional[BaseException] = None):
        kind = "create directory" if item.is_dir else "upload"
        super().__init__(f"Failed to {kind} {item.path}: {cause}")
        self.item = item
        self.cause = cause
