#!/usr/bin/env python3
"""
PE file host for NetScope

Loads a Windows PE image with pefile and disassembles its executable
sections with Capstone to recover:
- Calls through the import address table (call [rip+disp] / call [abs])
- Calls to import thunks (jmp [IAT] stubs)
- Procedure starts (entry point, exports, direct call targets)
- Printable ASCII and UTF-16LE strings from data sections

Only x86 and x86-64 images are supported.
"""

import bisect
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pefile
from capstone import Cs, CsError, CS_ARCH_X86, CS_MODE_32, CS_MODE_64
from capstone.x86 import X86_OP_IMM, X86_OP_MEM, X86_REG_RIP

from netscope.error_handling import ErrorContext, HostDataUnavailable
from netscope.host.base import HostDocument
from netscope.models import ProcedureRef, ReferenceEdge

logger = logging.getLogger(__name__)

IMAGE_SCN_MEM_EXECUTE = 0x20000000


def _string_patterns(min_length: int):
    """ASCII and UTF-16LE printable-run patterns of at least min_length characters."""
    return (re.compile(rb'[\x20-\x7e]{%d,}' % min_length),
            re.compile(rb'(?:[\x20-\x7e]\x00){%d,}' % min_length))


class PEHost(HostDocument):
    """Host backed by a PE file on disk."""

    def __init__(self, binary_path: Union[str, Path], min_string_length: int = 4):
        """
        Open and index a PE file.

        Args:
            binary_path: Path to the PE file
            min_string_length: Shortest string to extract

        Raises:
            HostDataUnavailable: If the file is not a supported PE image
        """
        super().__init__()
        self.binary_path = Path(binary_path)
        self.min_string_length = max(1, min_string_length)
        context = ErrorContext(binary_path=str(self.binary_path))

        try:
            self.pe = pefile.PE(str(self.binary_path))
        except (OSError, pefile.PEFormatError) as e:
            raise HostDataUnavailable(f"Cannot parse PE file: {e}", context=context, original_exception=e)

        machine = self.pe.FILE_HEADER.Machine
        if machine == pefile.MACHINE_TYPE['IMAGE_FILE_MACHINE_AMD64']:
            mode = CS_MODE_64
        elif machine == pefile.MACHINE_TYPE['IMAGE_FILE_MACHINE_I386']:
            mode = CS_MODE_32
        else:
            raise HostDataUnavailable(f"Unsupported machine type {machine:#x}", context=context)

        try:
            self._cs = Cs(CS_ARCH_X86, mode)
            self._cs.detail = True
            self._cs.skipdata = True
        except CsError as e:
            raise HostDataUnavailable(f"Failed to initialize Capstone: {e}", context=context, original_exception=e)

        self.image_base = self.pe.OPTIONAL_HEADER.ImageBase
        self.entry_point = self.image_base + self.pe.OPTIONAL_HEADER.AddressOfEntryPoint
        self.imports = self._parse_imports()
        self.exports = self._parse_exports()
        self.thunks: Dict[int, str] = {}
        self._procedures: Optional[List[ProcedureRef]] = None
        self._strings: Optional[List[Tuple[int, Union[bytes, str]]]] = None

    def _parse_imports(self) -> Dict[int, str]:
        """Map IAT slot address -> imported function name."""
        imports = {}
        for attr in ('DIRECTORY_ENTRY_IMPORT', 'DIRECTORY_ENTRY_DELAY_IMPORT'):
            for entry in getattr(self.pe, attr, []):
                for imp in entry.imports:
                    if imp.name is None or imp.address is None:
                        continue  # ordinal-only import, no name to match
                    imports[imp.address] = imp.name.decode('ascii', errors='ignore')
        logger.debug(f"Parsed {len(imports)} named import(s)")
        return imports

    def _parse_exports(self) -> Dict[int, str]:
        exports = {}
        directory = getattr(self.pe, 'DIRECTORY_ENTRY_EXPORT', None)
        if directory is None:
            return exports
        for symbol in directory.symbols:
            if symbol.name:
                exports[self.image_base + symbol.address] = symbol.name.decode('ascii', errors='ignore')
        return exports

    def _executable_sections(self):
        return [s for s in self.pe.sections if s.Characteristics & IMAGE_SCN_MEM_EXECUTE]

    def _branch_target(self, insn) -> Optional[Tuple[str, int]]:
        """Return ('imm', address) or ('mem', slot address) for a call/jmp."""
        if len(insn.operands) != 1:
            return None
        op = insn.operands[0]
        if op.type == X86_OP_IMM:
            return 'imm', op.imm
        if op.type == X86_OP_MEM and op.mem.index == 0:
            if op.mem.base == X86_REG_RIP:
                return 'mem', insn.address + insn.size + op.mem.disp
            if op.mem.base == 0:
                return 'mem', op.mem.disp & 0xFFFFFFFF
        return None

    def _disassemble(self) -> List[ProcedureRef]:
        """Linear sweep over executable sections collecting call edges."""
        calls: List[Tuple[int, int]] = []
        starts = {self.entry_point}
        starts.update(self.exports)
        ranges = []

        for section in self._executable_sections():
            base = self.image_base + section.VirtualAddress
            data = section.get_data()
            starts.add(base)
            ranges.append((base, base + len(data)))

            for insn in self._cs.disasm(data, base):
                if insn.mnemonic not in ('call', 'jmp'):
                    continue
                target = self._branch_target(insn)
                if target is None:
                    continue
                kind, value = target
                if insn.mnemonic == 'jmp':
                    if kind == 'mem' and value in self.imports:
                        self.thunks[insn.address] = self.imports[value]
                    continue
                calls.append((insn.address, value))
                if kind == 'imm':
                    starts.add(value)

        ordered_starts = sorted(a for a in starts if any(lo <= a < hi for lo, hi in ranges))
        edges: Dict[int, List[ReferenceEdge]] = {start: [] for start in ordered_starts}
        for address, target in calls:
            index = bisect.bisect_right(ordered_starts, address) - 1
            if index < 0:
                continue
            edges[ordered_starts[index]].append(ReferenceEdge(address=address, target=target))

        procedures = [
            ProcedureRef(start, self._procedure_name(start), tuple(edges[start]))
            for start in ordered_starts
        ]
        logger.info(f"Disassembled {len(procedures)} procedure(s), {len(calls)} call site(s), "
                    f"{len(self.thunks)} import thunk(s)")
        return procedures

    def _procedure_name(self, address: int) -> str:
        if address in self.exports:
            return self.exports[address]
        if address == self.entry_point:
            return "entry"
        if address in self.thunks:
            return f"j_{self.thunks[address]}"
        return f"sub_{address:x}"

    def list_procedures(self) -> Sequence[ProcedureRef]:
        if self._procedures is None:
            self._procedures = self._disassemble()
        return list(self._procedures)

    def list_strings(self) -> Sequence[Tuple[int, Union[bytes, str]]]:
        if self._strings is None:
            self._strings = self._extract_strings()
        return list(self._strings)

    def _extract_strings(self) -> List[Tuple[int, Union[bytes, str]]]:
        strings: List[Tuple[int, Union[bytes, str]]] = []
        ascii_pattern, wide_pattern = _string_patterns(self.min_string_length)
        for section in self.pe.sections:
            if section.Characteristics & IMAGE_SCN_MEM_EXECUTE:
                continue
            base = self.image_base + section.VirtualAddress
            data = section.get_data()
            for match in ascii_pattern.finditer(data):
                strings.append((base + match.start(), match.group()))
            for match in wide_pattern.finditer(data):
                strings.append((base + match.start(), match.group().decode('utf-16le')))
        strings.sort(key=lambda item: item[0])
        logger.info(f"Extracted {len(strings)} string(s)")
        return strings

    def resolve_reference_symbol(self, address: int) -> Optional[str]:
        if address in self.imports:
            return self.imports[address]
        if self._procedures is None:
            self.list_procedures()
        return self.thunks.get(address)

    def describe(self) -> str:
        return str(self.binary_path)

    def close(self):
        self.pe.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
