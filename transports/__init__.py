"""Transport adapters, one module per wire protocol."""

from . import base, http, ws

__all__ = ["base", "http", "ws"]
