"""Literal matching: URL, IP address and host name classification of strings"""
import ipaddress
import logging
import re
from typing import Iterable, List, Optional, Set, Tuple, Union

from netscope.error_handling import ErrorContext, StringDecodeError
from netscope.models import LiteralFinding, LiteralKind, StringLiteral

logger = logging.getLogger(__name__)

# Bound on regex input, to keep worst-case matching cost predictable
MAX_LITERAL_LENGTH = 2048

URL_SCHEMES = ('http', 'https', 'ws', 'wss', 'ftp')

URL_PATTERN = re.compile(
    r'^(?P<scheme>' + '|'.join(URL_SCHEMES) + r')://'
    r'(?:[^\s/@]+@)?'
    r'(?P<host>\[[0-9A-Fa-f:.]+\]|[A-Za-z0-9](?:[A-Za-z0-9.\-_]*[A-Za-z0-9])?)'
    r'(?::(?P<port>\d{1,5}))?'
    r'(?P<rest>[/?#]\S*)?',
    re.IGNORECASE,
)

_OCTET = r'(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)'
IPV4_PATTERN = re.compile(
    r'(?<![\d.])(?P<ip>' + _OCTET + r'(?:\.' + _OCTET + r'){3})(?![\d.])(?::(?P<port>\d{1,5})(?!\d))?'
)

IPV6_CANDIDATE = re.compile(
    r'(?<![0-9A-Za-z:])(?P<ip>(?:[0-9A-Fa-f]{0,4}:){2,7}[0-9A-Fa-f]{0,4})(?![0-9A-Za-z:])'
)

# Top-level domains worth reporting for bare host names
DOMAIN_TLDS = ('com', 'net', 'org', 'edu', 'gov', 'mil', 'io', 'co', 'us', 'uk', 'de', 'fr', 'cn', 'ru')

DOMAIN_PATTERN = re.compile(
    r'^(?P<host>(?:[A-Za-z0-9](?:[A-Za-z0-9\-]{0,61}[A-Za-z0-9])?\.)+'
    r'(?P<tld>' + '|'.join(DOMAIN_TLDS) + r'))(?::(?P<port>\d{1,5}))?$',
    re.IGNORECASE,
)

# host:port anywhere in a string, whatever the string classifies as
PORT_PATTERN = re.compile(r'(?<![A-Za-z0-9\-._\]])(?P<host>[A-Za-z0-9\-._\]]+):(?P<port>\d{2,5})(?![\w:])')


def _valid_port(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    port = int(text)
    return port if 0 < port <= 65535 else None


def decode_literal(address: int, data: Union[bytes, str]) -> str:
    """
    Decode a raw string literal to text.

    Raises:
        StringDecodeError: If data is not valid UTF-8
    """
    if isinstance(data, str):
        return data
    try:
        return bytes(data).rstrip(b'\x00').decode('utf-8')
    except UnicodeDecodeError as e:
        raise StringDecodeError(
            f"Not valid UTF-8 ({e.reason} at byte {e.start})",
            context=ErrorContext(address=address),
            original_exception=e,
        )
    except TypeError as e:
        raise StringDecodeError(
            f"Unsupported literal type {type(data).__name__}",
            context=ErrorContext(address=address),
            original_exception=e,
        )


def classify(text: str) -> Tuple[LiteralKind, dict]:
    """
    Classify one string. First match wins: URL, IPv4, IPv6, then host name.

    Returns:
        (kind, details) where kind is LiteralKind.UNKNOWN for a non-match
    """
    text = text.strip()

    match = URL_PATTERN.match(text)
    if match:
        host = match.group('host')
        return LiteralKind.URL, {
            'scheme': match.group('scheme').lower(),
            'value': match.group(0),
            'host': host.strip('[]'),
            'port': _valid_port(match.group('port')),
        }

    match = IPV4_PATTERN.search(text)
    if match:
        return LiteralKind.IPV4, {
            'value': match.group('ip'),
            'host': match.group('ip'),
            'port': _valid_port(match.group('port')),
        }

    for match in IPV6_CANDIDATE.finditer(text):
        candidate = match.group('ip')
        if not any(c in '0123456789abcdefABCDEF' for c in candidate):
            continue
        try:
            ipaddress.IPv6Address(candidate)
        except ValueError:
            continue
        return LiteralKind.IPV6, {'value': candidate, 'host': candidate}

    match = DOMAIN_PATTERN.match(text)
    if match:
        return LiteralKind.DOMAIN, {
            'value': match.group('host'),
            'host': match.group('host').lower(),
            'port': _valid_port(match.group('port')),
        }

    return LiteralKind.UNKNOWN, {}


def extract_ports(text: str) -> List[int]:
    """Ports written as host:port anywhere in text, in order of appearance."""
    ports: List[int] = []
    for match in PORT_PATTERN.finditer(text):
        # "12:30" is a time, not a port
        if match.group('host').isdigit():
            continue
        port = _valid_port(match.group('port'))
        if port is not None and port not in ports:
            ports.append(port)
    return ports


class LiteralMatcher:
    """
    Classifies extracted string literals.

    Pure: never touches the binary. Each address yields at most one
    finding. Strings longer than MAX_LITERAL_LENGTH are cut before matching.
    Port tokens of every decoded string, matched or not, collect in ``ports``.
    """

    def __init__(self, max_length: int = MAX_LITERAL_LENGTH):
        self.max_length = max_length
        self.skipped = 0
        self.ports: Set[int] = set()

    def match_literal(self, address: int, data: Union[bytes, str]) -> Optional[LiteralFinding]:
        """
        Classify one literal.

        Raises:
            StringDecodeError: If the literal cannot be decoded
        """
        text = decode_literal(address, data)[:self.max_length]
        self.ports.update(extract_ports(text))
        kind, details = classify(text)
        if kind == LiteralKind.UNKNOWN:
            return None
        return LiteralFinding(
            address=address,
            raw_string=text,
            kind=kind,
            scheme=details.get('scheme'),
            value=details.get('value'),
            host=details.get('host'),
            port=details.get('port'),
        )

    def match_strings(self, strings: Iterable) -> List[LiteralFinding]:
        """
        Classify (address, data) pairs or StringLiteral items, skipping undecodable ones.

        Returns:
            Literal findings in discovery order
        """
        findings: List[LiteralFinding] = []
        for item in strings:
            address, data = (item.address, item.data) if isinstance(item, StringLiteral) else item
            try:
                finding = self.match_literal(address, data)
            except StringDecodeError as e:
                self.skipped += 1
                logger.warning(f"Skipping string: {e.short()}")
                continue
            if finding is not None:
                findings.append(finding)
        return findings
