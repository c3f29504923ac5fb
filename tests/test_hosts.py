"""Tests for the in-memory, export and radare2 hosts"""
import json
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from netscope.error_handling import AnnotationWriteFailure, HostDataUnavailable
from netscope.host.base import HostDocument, ReadWriteLock
from netscope.host.memory_host import ExportedHost, parse_address
from netscope.host.radare2_host import Radare2Host
from netscope.models import NetworkCategory
from netscope.orchestrator import NetworkAnalyzer

EXPORT = {
    'name': 'sample.bin',
    'procedures': [
        {'address': '0x1000', 'name': 'main', 'references': [
            {'address': '0x1004', 'symbol': 'socket'},
            {'address': '0x1010', 'target': '0x5000'},
            {'address': None, 'symbol': 'connect'},
        ]},
        {'name': 'no_address'},
    ],
    'strings': [
        {'address': '0x2000', 'value': 'https://api.example.com'},
        {'value': 'orphan'},
    ],
    'symbols': {'0x5000': 'SSL_connect'},
}


@pytest.mark.parametrize('value,expected', [
    (0x10, 0x10), ('0x10', 0x10), ('16', 16), ('ff', 0xff), ('', None), (None, None),
    (True, None), ('zz', None), (1.5, None),
])
def test_parse_address(value, expected):
    assert parse_address(value) == expected


def test_export_from_dict():
    host = ExportedHost.from_dict(EXPORT)
    assert host.name == 'sample.bin'
    assert len(host.list_procedures()) == 1
    assert len(host.list_procedures()[0].references) == 3
    assert host.list_strings() == [(0x2000, 'https://api.example.com')]
    assert host.resolve_reference_symbol(0x5000) == 'SSL_connect'


def test_export_round_trip_through_file(tmp_path):
    path = tmp_path / 'export.json'
    path.write_text(json.dumps(ExportedHost.from_dict(EXPORT).to_dict()))
    host = ExportedHost.from_json(path)
    report = NetworkAnalyzer().analyze(host)
    assert report.conclusion(NetworkCategory.SOCKET_RAW).addresses() == [0x1004]
    assert report.conclusion(NetworkCategory.TLS_HANDSHAKE).addresses() == [0x1010, 0x2000]
    assert report.skipped == 1


def test_export_bad_json(tmp_path):
    path = tmp_path / 'broken.json'
    path.write_text('{not json')
    with pytest.raises(HostDataUnavailable):
        ExportedHost.from_json(path)


def test_export_must_be_object():
    with pytest.raises(HostDataUnavailable):
        ExportedHost.from_dict(['procedures'])


def test_read_write_lock_excludes_writer_while_reading():
    lock = ReadWriteLock()
    events = []

    def writer():
        with lock.write_locked():
            events.append('write')

    with lock.read_locked():
        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        events.append('read-done')
    thread.join(timeout=5)
    assert events == ['read-done', 'write']


class FakeR2:
    """Answers the r2 commands Radare2Host issues."""

    def __init__(self, bintype='mach0', fail_on=None):
        self.bintype = bintype
        self.fail_on = fail_on
        self.commands = []
        self.closed = False

    def cmdj(self, command):
        self.commands.append(command)
        if command == self.fail_on:
            raise IOError("pipe closed")
        if command == 'ij':
            return {'bin': {'bintype': self.bintype}}
        if command == 'aflj':
            return [
                {'offset': 0x100003f00, 'name': 'sym._main'},
                {'offset': 0x100003f80, 'name': 'fcn.100003f80'},
            ]
        if command == 'axffj @ 0x100003f00':
            return [
                {'type': 'CALL', 'at': 0x100003f10, 'ref': 0x100004000, 'name': 'sym.imp._socket'},
                {'type': 'CALL', 'at': 0x100003f20, 'ref': 0x100004010, 'name': 'fcn.100004010'},
                {'type': 'STRN', 'at': 0x100003f30, 'ref': 0x100008000, 'name': 'str.https:__x'},
            ]
        if command == 'axffj @ 0x100003f80':
            return []
        if command == 'isj':
            return [{'vaddr': 0x100004010, 'name': 'sym.imp._SSLHandshake', 'realname': '_SSLHandshake'}]
        if command == 'iij':
            return [{'plt': 0x100004000, 'name': '_socket'}]
        if command == 'izj':
            return [
                {'vaddr': 0x100008000, 'string': 'https://api.example.com'},
                {'vaddr': 0x100008040, 'string': '10.0.0.1'},
            ]
        return None

    def cmd(self, command):
        self.commands.append(command)
        if command.startswith('CCu') and 'FAIL' in command:
            raise IOError("write refused")
        return ''

    def quit(self):
        self.closed = True


def test_radare2_normalizes_symbols():
    host = Radare2Host(r2=FakeR2())
    assert host.normalize_symbol('sym.imp._socket') == 'socket'
    assert host.normalize_symbol('imp.connect') == 'connect'
    assert host.normalize_symbol('reloc.SSL_read') == 'SSL_read'
    assert host.normalize_symbol('fcn.00401000') is None
    assert host.normalize_symbol('sym.__mh_execute_header') == '__mh_execute_header'
    assert host.normalize_symbol('') is None


def test_radare2_keeps_underscore_outside_macho():
    host = Radare2Host(r2=FakeR2(bintype='elf'))
    assert host.normalize_symbol('sym.imp._socket') == '_socket'


def test_radare2_procedures_and_strings():
    host = Radare2Host(r2=FakeR2())
    procedures = host.list_procedures()
    assert [p.address for p in procedures] == [0x100003f00, 0x100003f80]
    edges = procedures[0].references
    assert [e.address for e in edges] == [0x100003f10, 0x100003f20]
    assert edges[0].symbol == 'socket'
    assert edges[1].symbol is None
    assert host.resolve_reference_symbol(0x100004010) == 'SSLHandshake'
    assert host.list_strings()[0] == (0x100008000, 'https://api.example.com')


def test_radare2_end_to_end():
    r2 = FakeR2()
    host = Radare2Host(r2=r2)
    report = NetworkAnalyzer().analyze(host, annotate=True)
    assert report.conclusion(NetworkCategory.SOCKET_RAW).addresses() == [0x100003f10]
    assert report.conclusion(NetworkCategory.TLS_HANDSHAKE).addresses() == [0x100003f20, 0x100008000]
    assert report.annotations_written == 4
    assert any(c.startswith('CCu [NetScope]') and c.endswith('@ 0x100003f10') for c in r2.commands)


def test_radare2_comment_is_sanitized():
    r2 = FakeR2()
    Radare2Host(r2=r2).annotate(0x10, 'a; b | c @ d')
    assert r2.commands[-1] == 'CCu a  b   c   d @ 0x10'


def test_radare2_annotation_failure():
    with pytest.raises(AnnotationWriteFailure):
        Radare2Host(r2=FakeR2()).annotate(0x10, 'FAIL')


def test_radare2_command_failure_is_host_error():
    host = Radare2Host(r2=FakeR2(fail_on='aflj'))
    with pytest.raises(HostDataUnavailable):
        NetworkAnalyzer().analyze(host)


def test_radare2_injected_session_not_closed():
    r2 = FakeR2()
    with Radare2Host(r2=r2):
        pass
    assert not r2.closed


def test_radare2_requires_path():
    with pytest.raises(HostDataUnavailable):
        Radare2Host()


def test_pe_host_rejects_non_pe(tmp_path):
    from netscope.host.pe_host import PEHost

    path = tmp_path / 'junk.exe'
    path.write_bytes(b'MZ' + b'\x00' * 10)
    with pytest.raises(HostDataUnavailable):
        PEHost(path)
    with pytest.raises(HostDataUnavailable):
        PEHost(tmp_path / 'missing.exe')


def test_pe_string_patterns():
    from netscope.host.pe_host import _string_patterns

    ascii_pattern, wide_pattern = _string_patterns(4)
    data = b'\x00\x01http://a.io\x00ab\x01\x01' + 'wss://x.com'.encode('utf-16le') + b'\x00\x00'
    assert [m.group() for m in ascii_pattern.finditer(data)] == [b'http://a.io']
    assert [m.group().decode('utf-16le') for m in wide_pattern.finditer(data)] == ['wss://x.com']


def test_export_tolerates_non_object_entries(caplog):
    host = ExportedHost.from_dict({
        'procedures': [
            {'address': '0x1000', 'references': ['socket', 7, {'address': '0x1004', 'symbol': 'socket'}]},
            'main',
            {'address': '0x2000', 'references': 'socket'},
        ],
        'strings': ['https://x.example.com', {'address': '0x3000', 'value': 'api.internal:9443'}],
        'symbols': ['SSL_connect'],
    })
    procedures = host.list_procedures()
    assert [p.address for p in procedures] == [0x1000, 0x2000]
    assert [e.address for e in procedures[0].references] == [None, None, 0x1004]
    assert procedures[1].references == ()
    assert host.list_strings() == [(0x3000, 'api.internal:9443')]
    assert host.symbols == {}
    assert 'not an object' in caplog.text

    report = NetworkAnalyzer().analyze(host)
    assert report.skipped == 2
    assert report.conclusion(NetworkCategory.SOCKET_RAW).addresses() == [0x1004]
    assert report.ports == [9443]


class Section:
    """Stands in for a pefile section."""

    def __init__(self, rva, data, characteristics):
        self.VirtualAddress = rva
        self.Characteristics = characteristics
        self.data = data

    def get_data(self):
        return self.data


def synthetic_pe_host(mode, image_base, code, imports, data=b''):
    """A PEHost over hand-assembled code at RVA 0x1000 and data at RVA 0x4000."""
    from capstone import Cs, CS_ARCH_X86
    from netscope.host.pe_host import IMAGE_SCN_MEM_EXECUTE, PEHost

    host = PEHost.__new__(PEHost)
    HostDocument.__init__(host)
    host.binary_path = Path('synthetic.exe')
    host.min_string_length = 4
    host.pe = SimpleNamespace(
        sections=[Section(0x1000, code, IMAGE_SCN_MEM_EXECUTE), Section(0x4000, data, 0)],
        close=lambda: None,
    )
    host._cs = Cs(CS_ARCH_X86, mode)
    host._cs.detail = True
    host._cs.skipdata = True
    host.image_base = image_base
    host.entry_point = image_base + 0x1000
    host.imports = dict(imports)
    host.exports = {}
    host.thunks = {}
    host._procedures = None
    host._strings = None
    return host


X64_BASE = 0x140000000
X64_CODE = (
    b'\xff\x15\xfa\x1f\x00\x00'   # 0x1000  call [rip+0x1ffa]  -> IAT 0x3000
    b'\xe8\x15\x00\x00\x00'       # 0x1006  call 0x1020
    b'\xc3'                       # 0x100b  ret
    + b'\xcc' * 20                # 0x100c  padding
    + b'\xff\x25\xe2\x1f\x00\x00'  # 0x1020  jmp [rip+0x1fe2]   -> IAT 0x3008
    b'\xc3'
)
X64_IMPORTS = {X64_BASE + 0x3000: 'connect', X64_BASE + 0x3008: 'socket'}


def test_pe_rip_relative_call_and_thunk():
    from capstone import CS_MODE_64

    host = synthetic_pe_host(CS_MODE_64, X64_BASE, X64_CODE, X64_IMPORTS)
    procedures = host.list_procedures()

    assert [(p.address, p.name) for p in procedures] == [
        (X64_BASE + 0x1000, 'entry'),
        (X64_BASE + 0x1020, 'j_socket'),
    ]
    assert [(e.address, e.target) for e in procedures[0].references] == [
        (X64_BASE + 0x1000, X64_BASE + 0x3000),
        (X64_BASE + 0x1006, X64_BASE + 0x1020),
    ]
    assert procedures[1].references == ()
    assert host.thunks == {X64_BASE + 0x1020: 'socket'}
    assert host.resolve_reference_symbol(X64_BASE + 0x3000) == 'connect'
    assert host.resolve_reference_symbol(X64_BASE + 0x1020) == 'socket'
    assert host.resolve_reference_symbol(X64_BASE + 0x2000) is None


def test_pe_calls_become_findings():
    from capstone import CS_MODE_64

    host = synthetic_pe_host(CS_MODE_64, X64_BASE, X64_CODE, X64_IMPORTS,
                             data=b'\x00https://api.example.com\x00')
    report = NetworkAnalyzer().analyze(host)

    calls = [(f.address, f.matched_signature.symbol_name, f.caller_procedure.name) for f in report.call_findings]
    assert calls == [(X64_BASE + 0x1000, 'connect', 'entry'), (X64_BASE + 0x1006, 'socket', 'entry')]
    assert report.conclusion(NetworkCategory.SOCKET_RAW).addresses() == [X64_BASE + 0x1000, X64_BASE + 0x1006]
    assert [f.address for f in report.urls] == [X64_BASE + 0x4001]
    assert report.conclusion(NetworkCategory.TLS_HANDSHAKE).addresses() == [X64_BASE + 0x4001]


def test_pe_absolute_indirect_call():
    from capstone import CS_MODE_32

    code = b'\xff\x15\x00\x30\x40\x00\xc3'   # call [0x403000]; ret
    host = synthetic_pe_host(CS_MODE_32, 0x400000, code, {0x403000: 'send'})
    procedures = host.list_procedures()
    assert [(e.address, e.target) for e in procedures[0].references] == [(0x401000, 0x403000)]

    report = NetworkAnalyzer().analyze(host)
    assert [f.matched_signature.symbol_name for f in report.call_findings] == ['send']
    assert report.conclusion(NetworkCategory.SOCKET_RAW).addresses() == [0x401000]
