"""Host documents the engine reads from"""

from .base import HostDocument, ReadWriteLock
from .memory_host import InMemoryHost, ExportedHost

__all__ = [
    'HostDocument',
    'ReadWriteLock',
    'InMemoryHost',
    'ExportedHost',
]
