"""Shared fixtures for the NetScope test suite"""
from datetime import datetime

import pytest

from netscope.catalog import SignatureCatalog
from netscope.host.memory_host import InMemoryHost
from netscope.models import ProcedureRef, ReferenceEdge
from netscope.orchestrator import NetworkAnalyzer

FIXED_TIME = datetime(2024, 1, 2, 3, 4, 5)


def fixed_clock():
    return FIXED_TIME


def proc(address, name, *edges):
    """Build a ProcedureRef from (address, symbol) or ReferenceEdge items."""
    references = []
    for edge in edges:
        if isinstance(edge, ReferenceEdge):
            references.append(edge)
        else:
            references.append(ReferenceEdge(address=edge[0], symbol=edge[1]))
    return ProcedureRef(address, name, tuple(references))


@pytest.fixture
def catalog():
    return SignatureCatalog.default()


@pytest.fixture
def analyzer(catalog):
    return NetworkAnalyzer(catalog=catalog, clock=fixed_clock)


@pytest.fixture
def socket_and_https_host():
    """socket() called at 0x1000 and an https URL at 0x2000."""
    return InMemoryHost(
        procedures=[proc(0x900, 'main', (0x1000, 'socket'))],
        strings=[(0x2000, b'https://api.example.com')],
        name='sample',
    )


@pytest.fixture
def mixed_host():
    """A host exercising every API family and literal kind."""
    return InMemoryHost(
        procedures=[
            proc(0x1000, 'main',
                 (0x1010, 'socket'),
                 (0x1020, 'connect'),
                 ReferenceEdge(address=0x1030, target=0x9000)),
            proc(0x2000, 'fetch',
                 (0x2010, '-[NSURLSession dataTaskWithURL:]'),
                 (0x2020, 'SSL_connect')),
            proc(0x3000, 'stream',
                 (0x3010, 'URLSession.webSocketTask(with:)'),
                 (0x3020, 'printf')),
        ],
        strings=[
            (0x5000, b'https://api.example.com/v1'),
            (0x5100, b'wss://stream.example.com:8443/feed'),
            (0x5200, b'10.0.0.1:8080'),
            (0x5300, b'fe80::1'),
            (0x5400, b'updates.example.org'),
            (0x5500, b'hello world'),
        ],
        symbols={0x9000: 'getaddrinfo'},
        name='mixed',
    )
