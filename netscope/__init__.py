"""NetScope - network surface detection for disassembled binaries"""

from .__version__ import __version__
from .catalog import SignatureCatalog, get_default_catalog
from .models import (
    AnalysisReport,
    ApiFamily,
    CallFinding,
    LiteralFinding,
    LiteralKind,
    NetworkCategory,
    ProtocolConclusion,
    SymbolSignature,
)
from .orchestrator import CancellationToken, NetworkAnalyzer

__all__ = [
    '__version__',
    'SignatureCatalog',
    'get_default_catalog',
    'AnalysisReport',
    'ApiFamily',
    'CallFinding',
    'LiteralFinding',
    'LiteralKind',
    'NetworkCategory',
    'ProtocolConclusion',
    'SymbolSignature',
    'CancellationToken',
    'NetworkAnalyzer',
]
