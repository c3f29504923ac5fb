"""
Signature catalog of network-related API symbols.

Maps exact display symbol names to a network category, API family and a
confidence weight. The catalog is built once, never mutated afterwards, and
is safe to share between analysis runs and threads.
"""

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from netscope.error_handling import CatalogLoadConflict, ConfigurationError, ErrorContext
from netscope.models import ApiFamily, NetworkCategory, SymbolSignature

logger = logging.getLogger(__name__)

CATALOG_VERSION = "2025.1"

_SOCK = NetworkCategory.SOCKET_RAW
_HTTP = NetworkCategory.HTTP_CLIENT
_WS = NetworkCategory.WEBSOCKET
_TLS = NetworkCategory.TLS_HANDSHAKE
_DNS = NetworkCategory.DNS_RESOLUTION
_NET = NetworkCategory.UNKNOWN_NETWORK_API

# (symbol, category, confidence, description), grouped by API family
DEFAULT_SIGNATURES: Dict[ApiFamily, List[Tuple[str, NetworkCategory, float, str]]] = {
    ApiFamily.C_SOCKET: [
        ('socket', _SOCK, 0.9, 'Create a socket endpoint'),
        ('connect', _SOCK, 0.9, 'Connect a socket to a remote address'),
        ('bind', _SOCK, 0.8, 'Bind a socket to a local address'),
        ('listen', _SOCK, 0.85, 'Listen for incoming connections'),
        ('accept', _SOCK, 0.85, 'Accept an incoming connection'),
        ('send', _SOCK, 0.75, 'Send data on a connected socket'),
        ('recv', _SOCK, 0.75, 'Receive data from a connected socket'),
        ('sendto', _SOCK, 0.8, 'Send a datagram'),
        ('recvfrom', _SOCK, 0.8, 'Receive a datagram'),
        ('sendmsg', _SOCK, 0.75, 'Send a message on a socket'),
        ('recvmsg', _SOCK, 0.75, 'Receive a message from a socket'),
        ('shutdown', _SOCK, 0.5, 'Shut down part of a full-duplex connection'),
        ('setsockopt', _SOCK, 0.6, 'Set socket options'),
        ('getsockopt', _SOCK, 0.6, 'Get socket options'),
        ('getpeername', _SOCK, 0.7, 'Get the address of the connected peer'),
        ('getsockname', _SOCK, 0.6, 'Get the local socket address'),
        ('WSAStartup', _SOCK, 0.9, 'Initialize Winsock'),
        ('WSASocketA', _SOCK, 0.9, 'Create a Winsock socket'),
        ('WSASocketW', _SOCK, 0.9, 'Create a Winsock socket'),
        ('WSAConnect', _SOCK, 0.9, 'Connect a Winsock socket'),
        ('WSASend', _SOCK, 0.8, 'Send data on a Winsock socket'),
        ('WSARecv', _SOCK, 0.8, 'Receive data on a Winsock socket'),
        ('closesocket', _SOCK, 0.7, 'Close a Winsock socket'),
        ('getaddrinfo', _DNS, 0.85, 'Resolve a host name'),
        ('freeaddrinfo', _DNS, 0.5, 'Free resolver results'),
        ('getnameinfo', _DNS, 0.75, 'Reverse-resolve an address'),
        ('gethostbyname', _DNS, 0.85, 'Resolve a host name (legacy)'),
        ('gethostbyname2', _DNS, 0.85, 'Resolve a host name for an address family'),
        ('gethostbyaddr', _DNS, 0.75, 'Reverse-resolve an address (legacy)'),
        ('GetAddrInfoW', _DNS, 0.85, 'Resolve a host name (Winsock)'),
        ('DnsQuery_A', _DNS, 0.85, 'Query a DNS record (Windows)'),
        ('DnsQuery_W', _DNS, 0.85, 'Query a DNS record (Windows)'),
        ('res_query', _DNS, 0.8, 'Send a raw DNS query'),
        ('res_search', _DNS, 0.8, 'Send a raw DNS query with search domains'),
        ('DNSServiceQueryRecord', _DNS, 0.8, 'Query a DNS record through dns_sd'),
        ('inet_pton', _NET, 0.4, 'Convert an address string to binary form'),
        ('inet_ntop', _NET, 0.4, 'Convert a binary address to a string'),
        ('inet_addr', _NET, 0.4, 'Convert a dotted-quad string to an address'),
        ('inet_ntoa', _NET, 0.4, 'Convert an address to a dotted-quad string'),
    ],
    ApiFamily.OBJC_FOUNDATION: [
        ('NSURLSession', _HTTP, 0.8, 'Foundation URL loading session'),
        ('-[NSURLSession dataTaskWithURL:]', _HTTP, 0.85, 'Create a data task for a URL'),
        ('-[NSURLSession dataTaskWithRequest:]', _HTTP, 0.85, 'Create a data task for a request'),
        ('-[NSURLSession dataTaskWithURL:completionHandler:]', _HTTP, 0.85, 'Create a data task for a URL'),
        ('-[NSURLSession dataTaskWithRequest:completionHandler:]', _HTTP, 0.85,
         'Create a data task for a request'),
        ('-[NSURLSession uploadTaskWithRequest:fromData:]', _HTTP, 0.85, 'Create an upload task'),
        ('-[NSURLSession downloadTaskWithURL:]', _HTTP, 0.85, 'Create a download task'),
        ('+[NSURLSession sharedSession]', _HTTP, 0.8, 'Shared URL session'),
        ('+[NSURLSession sessionWithConfiguration:]', _HTTP, 0.8, 'URL session with configuration'),
        ('-[NSURLSession webSocketTaskWithURL:]', _WS, 0.9, 'Create a WebSocket task'),
        ('-[NSURLSession webSocketTaskWithRequest:]', _WS, 0.9, 'Create a WebSocket task'),
        ('NSURLSessionWebSocketTask', _WS, 0.85, 'Foundation WebSocket task class'),
        ('NSURLConnection', _HTTP, 0.75, 'Legacy URL connection class'),
        ('+[NSURLConnection sendSynchronousRequest:returningResponse:error:]', _HTTP, 0.85,
         'Synchronous HTTP request'),
        ('+[NSURLConnection sendAsynchronousRequest:queue:completionHandler:]', _HTTP, 0.85,
         'Asynchronous HTTP request'),
        ('+[NSURLConnection connectionWithRequest:delegate:]', _HTTP, 0.8, 'Create a URL connection'),
        ('CFHTTPMessageCreateRequest', _HTTP, 0.85, 'Create a CFNetwork HTTP request'),
        ('CFReadStreamCreateForHTTPRequest', _HTTP, 0.85, 'Open a CFNetwork HTTP stream'),
        ('CFURLCreateWithString', _NET, 0.3, 'Create a CFURL'),
        ('CFStreamCreatePairWithSocketToHost', _SOCK, 0.8, 'Open a socket stream pair to a host'),
        ('CFSocketCreate', _SOCK, 0.8, 'Create a CFSocket'),
        ('CFSocketConnectToAddress', _SOCK, 0.85, 'Connect a CFSocket'),
        ('CFHostCreateWithName', _DNS, 0.7, 'Create a CFHost for a name'),
        ('CFHostStartInfoResolution', _DNS, 0.85, 'Resolve a CFHost'),
        ('CFNetServiceCreate', _NET, 0.6, 'Create a Bonjour service'),
        ('+[NSStream getStreamsToHostWithName:port:inputStream:outputStream:]', _SOCK, 0.8,
         'Open a stream pair to a host'),
    ],
    ApiFamily.SWIFT_NETWORK: [
        ('URLSession', _HTTP, 0.8, 'Swift URL loading session'),
        ('URLSession.shared', _HTTP, 0.8, 'Shared Swift URL session'),
        ('URLSession.dataTask(with:completionHandler:)', _HTTP, 0.85, 'Create a data task'),
        ('URLSession.data(from:delegate:)', _HTTP, 0.85, 'Async data request'),
        ('URLSession.data(for:delegate:)', _HTTP, 0.85, 'Async data request'),
        ('URLSession.webSocketTask(with:)', _WS, 0.9, 'Create a WebSocket task'),
        ('URLSessionWebSocketTask', _WS, 0.85, 'Swift WebSocket task class'),
        ('NWConnection', _SOCK, 0.85, 'Network.framework connection'),
        ('NWConnection.start(queue:)', _SOCK, 0.85, 'Start a Network.framework connection'),
        ('NWListener', _SOCK, 0.85, 'Network.framework listener'),
        ('NWParameters', _NET, 0.5, 'Network.framework connection parameters'),
        ('NWProtocolWebSocket', _WS, 0.85, 'Network.framework WebSocket protocol'),
        ('nw_connection_create', _SOCK, 0.85, 'Create a Network.framework connection (C API)'),
        ('nw_connection_start', _SOCK, 0.85, 'Start a Network.framework connection (C API)'),
        ('nw_ws_create_options', _WS, 0.85, 'Network.framework WebSocket options (C API)'),
    ],
    ApiFamily.TLS_LIBRARY: [
        ('SSLCreateContext', _TLS, 0.85, 'Secure Transport context'),
        ('SSLSetConnection', _TLS, 0.8, 'Attach a connection to a Secure Transport context'),
        ('SSLHandshake', _TLS, 0.95, 'Secure Transport handshake'),
        ('SSLRead', _TLS, 0.85, 'Secure Transport read'),
        ('SSLWrite', _TLS, 0.85, 'Secure Transport write'),
        ('SSLClose', _TLS, 0.8, 'Secure Transport close'),
        ('SecTrustEvaluate', _TLS, 0.7, 'Evaluate a certificate trust chain'),
        ('SecTrustEvaluateWithError', _TLS, 0.7, 'Evaluate a certificate trust chain'),
        ('sec_protocol_options_set_min_tls_protocol_version', _TLS, 0.8,
         'Network.framework TLS options'),
        ('NWProtocolTLS', _TLS, 0.8, 'Network.framework TLS protocol'),
        ('SSL_library_init', _TLS, 0.7, 'OpenSSL initialization'),
        ('OPENSSL_init_ssl', _TLS, 0.7, 'OpenSSL initialization'),
        ('SSL_CTX_new', _TLS, 0.85, 'OpenSSL context'),
        ('SSL_new', _TLS, 0.85, 'OpenSSL connection object'),
        ('SSL_set_fd', _TLS, 0.85, 'Attach a socket to an OpenSSL connection'),
        ('SSL_connect', _TLS, 0.95, 'OpenSSL client handshake'),
        ('SSL_accept', _TLS, 0.95, 'OpenSSL server handshake'),
        ('SSL_do_handshake', _TLS, 0.95, 'OpenSSL handshake'),
        ('SSL_read', _TLS, 0.85, 'OpenSSL read'),
        ('SSL_write', _TLS, 0.85, 'OpenSSL write'),
        ('SSL_shutdown', _TLS, 0.8, 'OpenSSL shutdown'),
        ('TLS_client_method', _TLS, 0.9, 'OpenSSL TLS client method'),
        ('TLS_server_method', _TLS, 0.9, 'OpenSSL TLS server method'),
        ('TLS_method', _TLS, 0.85, 'OpenSSL TLS method'),
        ('SSLv23_client_method', _TLS, 0.9, 'OpenSSL legacy client method'),
        ('gnutls_handshake', _TLS, 0.95, 'GnuTLS handshake'),
        ('mbedtls_ssl_handshake', _TLS, 0.95, 'mbedTLS handshake'),
        ('mbedtls_ssl_setup', _TLS, 0.85, 'mbedTLS context setup'),
    ],
}


class SignatureCatalog:
    """
    Immutable mapping from symbol name to SymbolSignature.

    Lookup is a case-sensitive exact match; no partial matching is done so
    that unrelated symbols sharing a substring (``reconnect``, ``sockets``)
    never match.
    """

    def __init__(self, signatures: Iterable[SymbolSignature], version: str = CATALOG_VERSION,
                 strict: bool = False):
        """
        Build the catalog.

        Args:
            signatures: Signatures in registration order
            version: Catalog version string
            strict: Raise CatalogLoadConflict on duplicate symbol names instead
                of keeping the first registration

        Raises:
            CatalogLoadConflict: In strict mode, on the first duplicate
        """
        self.version = version
        table: Dict[str, SymbolSignature] = {}
        conflicts: List[Tuple[SymbolSignature, SymbolSignature]] = []

        for signature in signatures:
            existing = table.get(signature.symbol_name)
            if existing is None:
                table[signature.symbol_name] = signature
                continue

            error = CatalogLoadConflict(
                f"Duplicate signature '{signature.symbol_name}' "
                f"({existing.api_family.value} vs {signature.api_family.value})",
                context=ErrorContext(symbol=signature.symbol_name),
            )
            if strict:
                raise error
            conflicts.append((existing, signature))

        if conflicts:
            names = ", ".join(sorted({dup.symbol_name for _, dup in conflicts}))
            logger.error(f"Signature catalog has {len(conflicts)} duplicate symbol(s), "
                         f"keeping first registration: {names}")

        self._table = MappingProxyType(table)
        self.conflicts: Tuple[Tuple[SymbolSignature, SymbolSignature], ...] = tuple(conflicts)

    def lookup(self, symbol_name: Optional[str]) -> Optional[SymbolSignature]:
        """Return the signature registered for symbol_name, if any."""
        if not symbol_name:
            return None
        return self._table.get(symbol_name)

    def all_categories(self) -> Set[NetworkCategory]:
        """Return every category at least one signature maps to."""
        return {signature.category for signature in self._table.values()}

    def signatures(self) -> Iterator[SymbolSignature]:
        return iter(self._table.values())

    def by_family(self, family: ApiFamily) -> List[SymbolSignature]:
        return [s for s in self._table.values() if s.api_family == family]

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, symbol_name: str) -> bool:
        return symbol_name in self._table

    @classmethod
    def default(cls) -> 'SignatureCatalog':
        """Catalog built from the built-in table."""
        return cls(_default_signatures())

    @classmethod
    def load(cls, path: Union[str, Path], strict: bool = False) -> 'SignatureCatalog':
        """
        Build the default catalog extended with a JSON signature file.

        Entries from the file are appended after the built-in table, so on a
        name clash the built-in entry wins (or CatalogLoadConflict is raised
        when strict).

        Args:
            path: Path to the extension file
            strict: Treat duplicate symbol names as fatal

        Returns:
            Extended SignatureCatalog
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read catalog file {path}: {e}", original_exception=e)

        if not isinstance(document, dict) or not isinstance(document.get('signatures'), list):
            raise ConfigurationError(f"Catalog file {path} must contain a 'signatures' list")

        extra = [_parse_signature(entry, index, path) for index, entry in enumerate(document['signatures'])]
        version = f"{CATALOG_VERSION}+{document.get('version', path.stem)}"
        logger.info(f"Loaded {len(extra)} extra signature(s) from {path}")
        return cls(_default_signatures() + extra, version=version, strict=strict)


def _default_signatures() -> List[SymbolSignature]:
    signatures = []
    for family, entries in DEFAULT_SIGNATURES.items():
        for symbol, category, confidence, description in entries:
            signatures.append(SymbolSignature(symbol, category, family, confidence, description))
    return signatures


def _parse_signature(entry, index: int, path: Path) -> SymbolSignature:
    """Validate one entry of a catalog extension file."""
    where = f"{path} entry #{index}"
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{where}: expected an object")

    symbol = entry.get('symbol')
    if not isinstance(symbol, str) or not symbol:
        raise ConfigurationError(f"{where}: 'symbol' must be a non-empty string")

    try:
        category = NetworkCategory(entry.get('category'))
        family = ApiFamily(entry.get('api_family'))
    except ValueError as e:
        raise ConfigurationError(f"{where} ({symbol}): {e}", original_exception=e)

    confidence = entry.get('confidence', 0.5)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
        raise ConfigurationError(f"{where} ({symbol}): confidence must be a number in [0, 1]")

    return SymbolSignature(symbol, category, family, float(confidence), entry.get('description', ''))


_default_catalog: Optional[SignatureCatalog] = None


def get_default_catalog() -> SignatureCatalog:
    """Process-wide default catalog, built on first use."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = SignatureCatalog.default()
    return _default_catalog
