"""
Protocol inference.

Turns the raw call and literal findings of one run into per-category
conclusions. Rules are independent, so a binary can be concluded for any
number of categories:

- TLSHandshake: a TLS-library call, or an https:// / wss:// URL
- HTTPClient: an HTTP client call, or an http:// / https:// URL
- WebSocket: a WebSocket call, or a ws:// / wss:// URL
- SocketRaw: a socket-level call, or any call into the C socket API family
- DNSResolution: a resolver call (no literal evidence)
- UnknownNetworkAPI: a call to any other catalogued networking symbol

A URL alone counts with SCHEME_EVIDENCE_CONFIDENCE. Categories without
evidence are absent from the result.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from netscope.models import (
    ApiFamily, CallFinding, CATEGORY_ORDER, Finding, LiteralFinding, LiteralKind,
    NetworkCategory, ProtocolConclusion,
)

logger = logging.getLogger(__name__)

SCHEME_EVIDENCE_CONFIDENCE = 0.6

# URL scheme -> categories it is evidence for
SCHEME_CATEGORIES: Dict[str, tuple] = {
    'http': (NetworkCategory.HTTP_CLIENT,),
    'https': (NetworkCategory.HTTP_CLIENT, NetworkCategory.TLS_HANDSHAKE),
    'ws': (NetworkCategory.WEBSOCKET,),
    'wss': (NetworkCategory.WEBSOCKET, NetworkCategory.TLS_HANDSHAKE),
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def call_categories(finding: CallFinding) -> List[NetworkCategory]:
    """Categories a call finding is evidence for."""
    categories = [finding.category]
    if finding.api_family == ApiFamily.TLS_LIBRARY and NetworkCategory.TLS_HANDSHAKE not in categories:
        categories.append(NetworkCategory.TLS_HANDSHAKE)
    if finding.api_family == ApiFamily.C_SOCKET and NetworkCategory.SOCKET_RAW not in categories:
        categories.append(NetworkCategory.SOCKET_RAW)
    return categories


def literal_categories(finding: LiteralFinding) -> Sequence[NetworkCategory]:
    """Categories a literal finding is evidence for."""
    if finding.kind != LiteralKind.URL or not finding.scheme:
        return ()
    return SCHEME_CATEGORIES.get(finding.scheme.lower(), ())


def evidence_confidence(finding: Finding) -> float:
    if isinstance(finding, CallFinding):
        return finding.confidence
    return SCHEME_EVIDENCE_CONFIDENCE


class ProtocolInference:
    """Derives ProtocolConclusions from merged raw findings."""

    def infer(self, call_findings: Iterable[CallFinding],
              literal_findings: Iterable[LiteralFinding]) -> Dict[NetworkCategory, ProtocolConclusion]:
        """
        Build conclusions for one run.

        Evidence keeps discovery order with call sites before literals, and
        holds each address at most once per conclusion.

        Args:
            call_findings: Call findings in discovery order
            literal_findings: Literal findings in discovery order

        Returns:
            Mapping from category to conclusion, in category order
        """
        evidence: Dict[NetworkCategory, List[Finding]] = {}
        seen: Dict[NetworkCategory, set] = {}

        def add(category: NetworkCategory, finding: Finding):
            addresses = seen.setdefault(category, set())
            if finding.address in addresses:
                return
            addresses.add(finding.address)
            evidence.setdefault(category, []).append(finding)

        for finding in call_findings:
            for category in call_categories(finding):
                add(category, finding)

        for finding in literal_findings:
            for category in literal_categories(finding):
                add(category, finding)

        conclusions: Dict[NetworkCategory, ProtocolConclusion] = {}
        for category in CATEGORY_ORDER:
            items = evidence.get(category)
            if not items:
                continue
            confidence = _clamp(max(evidence_confidence(item) for item in items))
            conclusions[category] = ProtocolConclusion(category, items, confidence)
            logger.debug(f"Concluded {category.value} from {len(items)} item(s), confidence {confidence:.2f}")

        return conclusions

    @staticmethod
    def strongest(conclusions: Dict[NetworkCategory, ProtocolConclusion]) -> Optional[ProtocolConclusion]:
        """Conclusion with the highest confidence, ties broken by category order."""
        best = None
        for category in CATEGORY_ORDER:
            conclusion = conclusions.get(category)
            if conclusion is not None and (best is None or conclusion.confidence > best.confidence):
                best = conclusion
        return best
