"""Tests for the signature catalog"""
import json

import pytest

from netscope.catalog import CATALOG_VERSION, SignatureCatalog, get_default_catalog
from netscope.error_handling import CatalogLoadConflict, ConfigurationError
from netscope.models import ApiFamily, NetworkCategory, SymbolSignature


def test_lookup_exact_match(catalog):
    signature = catalog.lookup('socket')
    assert signature is not None
    assert signature.category == NetworkCategory.SOCKET_RAW
    assert signature.api_family == ApiFamily.C_SOCKET


def test_lookup_is_case_sensitive_and_not_partial(catalog):
    assert catalog.lookup('Socket') is None
    assert catalog.lookup('sockets') is None
    assert catalog.lookup('reconnect') is None
    assert catalog.lookup('') is None
    assert catalog.lookup(None) is None


def test_every_family_is_populated(catalog):
    for family in ApiFamily:
        assert catalog.by_family(family), family


def test_resolvers_are_dns(catalog):
    for name in ('getaddrinfo', 'gethostbyname', 'CFHostStartInfoResolution'):
        assert catalog.lookup(name).category == NetworkCategory.DNS_RESOLUTION


def test_tls_library_symbols(catalog):
    for name in ('SSLHandshake', 'SSL_connect', 'gnutls_handshake'):
        signature = catalog.lookup(name)
        assert signature.api_family == ApiFamily.TLS_LIBRARY
        assert signature.category == NetworkCategory.TLS_HANDSHAKE


def test_generic_io_symbols_not_catalogued(catalog):
    for name in ('read', 'write', 'close', 'select', 'poll'):
        assert name not in catalog


def test_all_categories(catalog):
    assert catalog.all_categories() == set(NetworkCategory)


def test_confidences_in_range(catalog):
    for signature in catalog.signatures():
        assert 0.0 <= signature.confidence <= 1.0


def test_duplicates_keep_first_registration(caplog):
    first = SymbolSignature('socket', NetworkCategory.SOCKET_RAW, ApiFamily.C_SOCKET, 0.9)
    second = SymbolSignature('socket', NetworkCategory.HTTP_CLIENT, ApiFamily.SWIFT_NETWORK, 0.1)
    catalog = SignatureCatalog([first, second])
    assert catalog.lookup('socket') is first
    assert len(catalog) == 1
    assert len(catalog.conflicts) == 1
    assert 'duplicate' in caplog.text


def test_duplicates_fatal_when_strict():
    sig = SymbolSignature('connect', NetworkCategory.SOCKET_RAW, ApiFamily.C_SOCKET, 0.9)
    with pytest.raises(CatalogLoadConflict):
        SignatureCatalog([sig, sig], strict=True)


def test_default_catalog_has_no_conflicts(catalog):
    assert catalog.conflicts == ()
    assert catalog.version == CATALOG_VERSION


def test_default_catalog_is_shared():
    assert get_default_catalog() is get_default_catalog()


def test_catalog_is_read_only(catalog):
    with pytest.raises(TypeError):
        catalog._table['socket'] = None


def test_load_extension_file(tmp_path):
    path = tmp_path / 'extra.json'
    path.write_text(json.dumps({
        'version': 'test-1',
        'signatures': [
            {'symbol': 'curl_easy_perform', 'category': 'HTTPClient',
             'api_family': 'CSocket', 'confidence': 0.9},
        ],
    }))
    catalog = SignatureCatalog.load(path)
    assert catalog.version == f"{CATALOG_VERSION}+test-1"
    assert catalog.lookup('curl_easy_perform').category == NetworkCategory.HTTP_CLIENT
    assert catalog.lookup('socket') is not None


def test_load_extension_duplicate_of_builtin(tmp_path):
    path = tmp_path / 'dup.json'
    path.write_text(json.dumps({'signatures': [
        {'symbol': 'socket', 'category': 'HTTPClient', 'api_family': 'CSocket', 'confidence': 0.1},
    ]}))
    assert SignatureCatalog.load(path).lookup('socket').category == NetworkCategory.SOCKET_RAW
    with pytest.raises(CatalogLoadConflict):
        SignatureCatalog.load(path, strict=True)


@pytest.mark.parametrize('entry', [
    {'symbol': '', 'category': 'HTTPClient', 'api_family': 'CSocket'},
    {'symbol': 'x', 'category': 'Carrier', 'api_family': 'CSocket'},
    {'symbol': 'x', 'category': 'HTTPClient', 'api_family': 'Rust'},
    {'symbol': 'x', 'category': 'HTTPClient', 'api_family': 'CSocket', 'confidence': 1.5},
    {'symbol': 'x', 'category': 'HTTPClient', 'api_family': 'CSocket', 'confidence': True},
    'socket',
])
def test_load_rejects_bad_entries(tmp_path, entry):
    path = tmp_path / 'bad.json'
    path.write_text(json.dumps({'signatures': [entry]}))
    with pytest.raises(ConfigurationError):
        SignatureCatalog.load(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        SignatureCatalog.load(tmp_path / 'missing.json')


def test_load_requires_signature_list(tmp_path):
    path = tmp_path / 'empty.json'
    path.write_text('{"version": "1"}')
    with pytest.raises(ConfigurationError):
        SignatureCatalog.load(path)
