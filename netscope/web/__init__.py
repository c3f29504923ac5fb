"""HTTP API for NetScope"""

from .server import WebUIServer

__all__ = ['WebUIServer']
