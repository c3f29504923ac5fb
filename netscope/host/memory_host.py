"""In-memory host and JSON export loader"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from netscope.error_handling import HostDataUnavailable, ErrorContext
from netscope.host.base import HostDocument
from netscope.models import ProcedureRef, ReferenceEdge

logger = logging.getLogger(__name__)


def parse_address(value: Any) -> Optional[int]:
    """Parse an address given as int, "0x..." or decimal string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            return int(value, 0)
        except ValueError:
            try:
                return int(value, 16)
            except ValueError:
                return None
    return None


def _entries(container: Dict[str, Any], key: str) -> List[Any]:
    value = container.get(key) or []
    if not isinstance(value, list):
        logger.warning(f"Ignoring exported {key}: expected a list, got {type(value).__name__}")
        return []
    return value


def _reference_edge(ref: Any) -> ReferenceEdge:
    # Non-object references become malformed edges
    if not isinstance(ref, dict):
        return ReferenceEdge(address=None)
    return ReferenceEdge(
        address=parse_address(ref.get('address')),
        target=parse_address(ref.get('target')),
        symbol=ref.get('symbol'),
    )


class InMemoryHost(HostDocument):
    """
    Host backed by plain Python collections.

    Used by tests, by the web API and as the target of JSON exports produced
    by disassembler scripts. Annotations are kept in ``comments``.
    """

    def __init__(self, procedures: Iterable[ProcedureRef] = (),
                 strings: Iterable[Tuple[int, Union[bytes, str]]] = (),
                 symbols: Optional[Dict[int, str]] = None,
                 name: str = "memory"):
        super().__init__()
        self.name = name
        self.procedures: List[ProcedureRef] = list(procedures)
        self.strings: List[Tuple[int, Union[bytes, str]]] = list(strings)
        self.symbols: Dict[int, str] = dict(symbols or {})
        self.comments: Dict[int, List[str]] = {}

    def list_procedures(self) -> Sequence[ProcedureRef]:
        return list(self.procedures)

    def list_strings(self) -> Sequence[Tuple[int, Union[bytes, str]]]:
        return list(self.strings)

    def resolve_reference_symbol(self, address: int) -> Optional[str]:
        return self.symbols.get(address)

    @property
    def supports_annotation(self) -> bool:
        return True

    def annotate(self, address: int, text: str) -> None:
        self.comments.setdefault(address, []).append(text)

    def describe(self) -> str:
        return f"{self.name} ({len(self.procedures)} procedures, {len(self.strings)} strings)"


class ExportedHost(InMemoryHost):
    """
    Host loaded from a JSON export.

    Format::

        {
          "name": "sample.bin",
          "procedures": [
            {"address": "0x1000", "name": "main",
             "references": [{"address": "0x1004", "symbol": "socket"},
                            {"address": "0x1010", "target": "0x5000"}]}
          ],
          "strings": [{"address": "0x2000", "value": "https://example.com"}],
          "symbols": {"0x5000": "connect"}
        }
    """

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: Optional[str] = None) -> 'ExportedHost':
        if not isinstance(data, dict):
            raise HostDataUnavailable("Export must be a JSON object")

        procedures = []
        for entry in _entries(data, 'procedures'):
            if not isinstance(entry, dict):
                logger.warning(f"Skipping exported procedure that is not an object: {entry!r}")
                continue
            address = parse_address(entry.get('address'))
            if address is None:
                logger.warning(f"Skipping exported procedure without address: {entry.get('name')!r}")
                continue
            edges = tuple(_reference_edge(ref) for ref in _entries(entry, 'references'))
            procedures.append(ProcedureRef(address, entry.get('name') or f"sub_{address:x}", edges))

        strings = []
        for entry in _entries(data, 'strings'):
            if not isinstance(entry, dict):
                logger.warning(f"Skipping exported string that is not an object: {entry!r}")
                continue
            address = parse_address(entry.get('address'))
            if address is None:
                logger.warning("Skipping exported string without address")
                continue
            strings.append((address, entry.get('value', '')))

        symbols = {}
        raw_symbols = data.get('symbols') or {}
        if not isinstance(raw_symbols, dict):
            logger.warning("Ignoring exported symbols: expected an object")
            raw_symbols = {}
        for key, symbol in raw_symbols.items():
            address = parse_address(key)
            if address is not None and isinstance(symbol, str):
                symbols[address] = symbol

        return cls(procedures, strings, symbols, name=name or data.get('name', 'export'))

    @classmethod
    def from_json(cls, json_path: Union[str, Path]) -> 'ExportedHost':
        """
        Load an exported document.

        Raises:
            HostDataUnavailable: If the file cannot be read or parsed
        """
        json_path = Path(json_path)
        try:
            with open(json_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise HostDataUnavailable(
                f"Cannot load export {json_path}: {e}",
                context=ErrorContext(binary_path=str(json_path)),
                original_exception=e,
            )
        host = cls.from_dict(data, name=data.get('name', json_path.name) if isinstance(data, dict) else None)
        logger.info(f"Loaded export {json_path}: {host.describe()}")
        return host

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the export format"""
        return {
            'name': self.name,
            'procedures': [
                {
                    'address': hex(proc.address),
                    'name': proc.name,
                    'references': [
                        {
                            'address': hex(edge.address) if edge.address is not None else None,
                            'target': hex(edge.target) if edge.target is not None else None,
                            'symbol': edge.symbol,
                        }
                        for edge in proc.references
                    ],
                }
                for proc in self.procedures
            ],
            'strings': [
                {
                    'address': hex(address),
                    'value': value.decode('utf-8', errors='replace') if isinstance(value, bytes) else value,
                }
                for address, value in self.strings
            ],
            'symbols': {hex(address): symbol for address, symbol in self.symbols.items()},
        }
