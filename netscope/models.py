"""Core data models for NetScope"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Union


class NetworkCategory(Enum):
    """Kinds of network activity a binary can be concluded to perform"""
    SOCKET_RAW = "SocketRaw"
    HTTP_CLIENT = "HTTPClient"
    WEBSOCKET = "WebSocket"
    TLS_HANDSHAKE = "TLSHandshake"
    DNS_RESOLUTION = "DNSResolution"
    UNKNOWN_NETWORK_API = "UnknownNetworkAPI"


class ApiFamily(Enum):
    """API families the signature catalog is grouped by"""
    C_SOCKET = "CSocket"
    OBJC_FOUNDATION = "ObjCFoundation"
    SWIFT_NETWORK = "SwiftNetwork"
    TLS_LIBRARY = "TLSLibrary"


class LiteralKind(Enum):
    """Classification of a string literal"""
    URL = "URL"
    IPV4 = "IPv4"
    IPV6 = "IPv6"
    DOMAIN = "Domain"
    UNKNOWN = "Unknown"  # internal non-match sentinel, never reported


# Stable ordering used everywhere a report is rendered or serialized
CATEGORY_ORDER = list(NetworkCategory)


@dataclass(frozen=True)
class SymbolSignature:
    """A catalogued API symbol and what it says about network usage"""
    symbol_name: str
    category: NetworkCategory
    api_family: ApiFamily
    confidence: float
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol_name,
            'category': self.category.value,
            'api_family': self.api_family.value,
            'confidence': self.confidence,
            'description': self.description,
        }


@dataclass(frozen=True)
class ReferenceEdge:
    """An outgoing reference from a procedure, as reported by the host"""
    address: Optional[int]           # Address of the referencing instruction
    target: Optional[int] = None     # Referenced address, if known
    symbol: Optional[str] = None     # Display name of the target, if already resolved


@dataclass(frozen=True)
class ProcedureRef:
    """A disassembled procedure and its outgoing reference edges"""
    address: int
    name: str
    references: Tuple[ReferenceEdge, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'address': hex(self.address), 'name': self.name}


@dataclass(frozen=True)
class StringLiteral:
    """A string extracted from the binary's data sections"""
    address: int
    data: Union[bytes, str]


@dataclass(frozen=True)
class CallFinding:
    """A reference from a procedure to a catalogued network symbol"""
    address: int
    caller_procedure: ProcedureRef
    matched_signature: SymbolSignature

    @property
    def category(self) -> NetworkCategory:
        return self.matched_signature.category

    @property
    def api_family(self) -> ApiFamily:
        return self.matched_signature.api_family

    @property
    def confidence(self) -> float:
        return self.matched_signature.confidence

    def dedup_key(self) -> Tuple[int, NetworkCategory]:
        return (self.address, self.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'call',
            'address': hex(self.address),
            'symbol': self.matched_signature.symbol_name,
            'api_family': self.api_family.value,
            'category': self.category.value,
            'confidence': self.confidence,
            'caller': self.caller_procedure.to_dict(),
        }

    def __str__(self) -> str:
        return (f"[{self.address:#x}] {self.matched_signature.symbol_name} "
                f"({self.api_family.value}) in {self.caller_procedure.name}")


@dataclass(frozen=True)
class LiteralFinding:
    """A string literal classified as a URL, IP address or host name"""
    address: int
    raw_string: str
    kind: LiteralKind
    scheme: Optional[str] = None
    value: Optional[str] = None      # Matched portion of raw_string
    host: Optional[str] = None
    port: Optional[int] = None

    def dedup_key(self) -> Tuple[int, LiteralKind]:
        return (self.address, self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'literal',
            'address': hex(self.address),
            'kind': self.kind.value,
            'value': self.value if self.value is not None else self.raw_string,
            'raw': self.raw_string,
            'scheme': self.scheme,
            'host': self.host,
            'port': self.port,
        }

    def __str__(self) -> str:
        return f"[{self.address:#x}] {self.value if self.value is not None else self.raw_string}"


Finding = Union[CallFinding, LiteralFinding]


@dataclass
class ProtocolConclusion:
    """Aggregated, confidence-scored determination for one category"""
    category: NetworkCategory
    evidence: List[Finding] = field(default_factory=list)
    confidence: float = 0.0

    def addresses(self) -> List[int]:
        return [item.address for item in self.evidence]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category.value,
            'confidence': round(self.confidence, 4),
            'evidence': [item.to_dict() for item in self.evidence],
        }


@dataclass
class AnalysisReport:
    """Root result object of one analysis run"""
    findings: Dict[NetworkCategory, ProtocolConclusion] = field(default_factory=dict)
    urls: List[LiteralFinding] = field(default_factory=list)
    ip_addresses: List[LiteralFinding] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)
    call_findings: List[CallFinding] = field(default_factory=list)
    domains: List[LiteralFinding] = field(default_factory=list)
    ports: List[int] = field(default_factory=list)
    complete: bool = True
    procedures_processed: int = 0
    strings_processed: int = 0
    procedures_total: int = 0
    strings_total: int = 0
    skipped: int = 0
    annotations_written: int = 0
    annotation_failures: int = 0
    catalog_version: str = ""

    def has_detections(self) -> bool:
        return bool(self.findings or self.urls or self.ip_addresses)

    def conclusion(self, category: NetworkCategory) -> Optional[ProtocolConclusion]:
        return self.findings.get(category)

    def family_counts(self) -> Dict[str, int]:
        """Number of call findings per API family"""
        counts = {family.value: 0 for family in ApiFamily}
        for finding in self.call_findings:
            counts[finding.api_family.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'generated_at': self.generated_at.isoformat(),
            'catalog_version': self.catalog_version,
            'complete': self.complete,
            'progress': {
                'procedures_processed': self.procedures_processed,
                'procedures_total': self.procedures_total,
                'strings_processed': self.strings_processed,
                'strings_total': self.strings_total,
                'skipped': self.skipped,
            },
            'conclusions': [
                self.findings[category].to_dict()
                for category in CATEGORY_ORDER if category in self.findings
            ],
            'calls': [finding.to_dict() for finding in self.call_findings],
            'urls': [finding.to_dict() for finding in self.urls],
            'ip_addresses': [finding.to_dict() for finding in self.ip_addresses],
            'domains': [finding.to_dict() for finding in self.domains],
            'ports': list(self.ports),
            'summary': self.family_counts(),
            'annotations': {
                'written': self.annotations_written,
                'failed': self.annotation_failures,
            },
        }
