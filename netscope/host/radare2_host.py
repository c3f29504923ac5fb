"""
Radare2 host for NetScope

Uses r2pipe to read functions (aflj), outgoing references (axffj), imports
(iij), symbols (isj) and strings (izj) from a radare2 session, and writes
findings back as comments (CCu).
"""
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import r2pipe

from netscope.error_handling import AnnotationWriteFailure, ErrorContext, HostDataUnavailable
from netscope.host.base import HostDocument
from netscope.models import ProcedureRef, ReferenceEdge

logger = logging.getLogger(__name__)

# radare2 flag prefixes that wrap a real symbol name
SYMBOL_PREFIXES = ('sym.imp.', 'imp.', 'reloc.', 'sym.')

# Flags naming an address rather than a symbol
ANONYMOUS_PREFIXES = ('fcn.', 'sub.', 'loc.', 'entry')

# Characters with meaning on the r2 command line
_UNSAFE_COMMENT_CHARS = re.compile(r'[;|@>`"\r\n]')


class Radare2Host(HostDocument):
    """Host backed by an r2pipe session."""

    def __init__(self, binary_path: Optional[Union[str, Path]] = None,
                 analysis_level: str = 'aaa', r2=None):
        """
        Open a binary in radare2, or wrap an existing r2pipe session.

        Args:
            binary_path: Binary to open (ignored when r2 is given)
            analysis_level: Analysis command run after opening
            r2: Existing r2pipe session

        Raises:
            HostDataUnavailable: If radare2 cannot open the binary
        """
        super().__init__()
        self.binary_path = str(binary_path) if binary_path else None
        self._owns_session = r2 is None

        if r2 is None:
            if not self.binary_path:
                raise HostDataUnavailable("No binary path given for radare2")
            try:
                r2 = r2pipe.open(self.binary_path, flags=['-2'])
                r2.cmd(analysis_level)
            except Exception as e:
                raise HostDataUnavailable(
                    f"Cannot open binary in radare2: {e}",
                    context=ErrorContext(binary_path=self.binary_path),
                    suggestion="Install radare2 and make sure r2 is on PATH.",
                    original_exception=e,
                )
        self.r2 = r2

        info = self._cmdj('ij') or {}
        bintype = (info.get('bin') or {}).get('bintype', '') if isinstance(info, dict) else ''
        self.strip_underscore = bintype == 'mach0'
        self._symbols: Optional[Dict[int, str]] = None

    def _cmdj(self, command: str) -> Any:
        try:
            return self.r2.cmdj(command)
        except Exception as e:
            raise HostDataUnavailable(
                f"radare2 command '{command}' failed: {e}",
                context=ErrorContext(binary_path=self.binary_path),
                original_exception=e,
            )

    def normalize_symbol(self, name: Optional[str]) -> Optional[str]:
        """Turn an r2 flag name into a display symbol name."""
        if not name:
            return None
        if name.startswith(ANONYMOUS_PREFIXES):
            return None
        for prefix in SYMBOL_PREFIXES:
            if name.startswith(prefix):
                name = name[len(prefix):]
                break
        if self.strip_underscore and name.startswith('_') and not name.startswith('__'):
            name = name[1:]
        return name or None

    def list_procedures(self) -> Sequence[ProcedureRef]:
        procedures = []
        for function in self._cmdj('aflj') or []:
            address = function.get('offset', function.get('addr'))
            if address is None:
                continue
            edges: List[ReferenceEdge] = []
            for ref in self._cmdj(f'axffj @ {address:#x}') or []:
                if ref.get('type') == 'STRN':
                    continue
                edges.append(ReferenceEdge(
                    address=ref.get('at'),
                    target=ref.get('ref'),
                    symbol=self.normalize_symbol(ref.get('name')),
                ))
            procedures.append(ProcedureRef(address, function.get('name') or f"fcn_{address:x}", tuple(edges)))
        logger.info(f"radare2 reported {len(procedures)} function(s)")
        return procedures

    def list_strings(self) -> Sequence[Tuple[int, Union[bytes, str]]]:
        strings = []
        for entry in self._cmdj('izj') or []:
            address = entry.get('vaddr')
            value = entry.get('string')
            if address is None or value is None:
                continue
            strings.append((address, value))
        return strings

    def _load_symbols(self) -> Dict[int, str]:
        symbols: Dict[int, str] = {}
        for entry in self._cmdj('isj') or []:
            name = self.normalize_symbol(entry.get('realname') or entry.get('name'))
            if name and entry.get('vaddr') is not None:
                symbols[entry['vaddr']] = name
        for entry in self._cmdj('iij') or []:
            name = self.normalize_symbol(entry.get('name'))
            if name and entry.get('plt') is not None:
                symbols[entry['plt']] = name
        return symbols

    def resolve_reference_symbol(self, address: int) -> Optional[str]:
        if self._symbols is None:
            self._symbols = self._load_symbols()
        return self._symbols.get(address)

    @property
    def supports_annotation(self) -> bool:
        return True

    def annotate(self, address: int, text: str) -> None:
        comment = _UNSAFE_COMMENT_CHARS.sub(' ', text)
        try:
            self.r2.cmd(f'CCu {comment} @ {address:#x}')
        except Exception as e:
            raise AnnotationWriteFailure(
                f"radare2 rejected comment: {e}",
                context=ErrorContext(address=address),
                original_exception=e,
            )

    def describe(self) -> str:
        return self.binary_path or 'radare2 session'

    def close(self):
        if self._owns_session and self.r2 is not None:
            self.r2.quit()
            self.r2 = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
