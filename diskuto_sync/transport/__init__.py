"""Access to the item APIs of the servers being synchronized."""

from .base import ItemSource, PutResult, TransportError
from .http import DiskutoClient
from .memory import MemoryServer

__all__ = ["ItemSource", "PutResult", "TransportError", "DiskutoClient", "MemoryServer"]
