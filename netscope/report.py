"""Report aggregation: deduplicate, order and group findings into an AnalysisReport"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from netscope.models import (
    AnalysisReport, CallFinding, CATEGORY_ORDER, LiteralFinding, LiteralKind,
    NetworkCategory, ProtocolConclusion,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def dedupe(items: Iterable[T], key: Callable[[T], object]) -> List[T]:
    """Drop later items whose key was already seen."""
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


def _call_sort_key(finding: CallFinding):
    return (finding.address, CATEGORY_ORDER.index(finding.category), finding.matched_signature.symbol_name)


def _literal_sort_key(finding: LiteralFinding):
    return (finding.address, finding.kind.value, finding.raw_string)


class ReportAggregator:
    """
    Builds the final AnalysisReport.

    Dedup keys are (address, category) for calls and (address, kind) for
    literals. Every list in the report is ordered by ascending address, and
    inside a conclusion call sites come before literals.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now

    def build(self, conclusions: Dict[NetworkCategory, ProtocolConclusion],
              call_findings: Iterable[CallFinding],
              literal_findings: Iterable[LiteralFinding],
              ports: Iterable[int] = (),
              **progress) -> AnalysisReport:
        """
        Assemble a report.

        Args:
            conclusions: Output of ProtocolInference.infer
            call_findings: All raw call findings of the run
            literal_findings: All raw literal findings of the run
            ports: Port tokens collected from every decoded string
            **progress: Extra AnalysisReport fields (counters, complete flag)

        Returns:
            The report
        """
        calls = sorted(dedupe(call_findings, CallFinding.dedup_key), key=_call_sort_key)
        literals = sorted(dedupe(literal_findings, LiteralFinding.dedup_key), key=_literal_sort_key)

        ordered: Dict[NetworkCategory, ProtocolConclusion] = {}
        for category in CATEGORY_ORDER:
            conclusion = conclusions.get(category)
            if conclusion is None or not conclusion.evidence:
                continue
            ordered[category] = ProtocolConclusion(
                category=category,
                evidence=self._order_evidence(conclusion.evidence),
                confidence=conclusion.confidence,
            )

        urls = [f for f in literals if f.kind == LiteralKind.URL]
        ips = [f for f in literals if f.kind in (LiteralKind.IPV4, LiteralKind.IPV6)]
        domains = [f for f in literals if f.kind == LiteralKind.DOMAIN]
        ports = sorted({f.port for f in literals if f.port is not None} | set(ports))

        report = AnalysisReport(
            findings=ordered,
            urls=urls,
            ip_addresses=ips,
            generated_at=self.clock(),
            call_findings=calls,
            domains=domains,
            ports=ports,
            **progress,
        )
        logger.info(f"Report: {len(ordered)} conclusion(s), {len(calls)} call(s), "
                    f"{len(urls)} URL(s), {len(ips)} IP address(es)")
        return report

    @staticmethod
    def _order_evidence(evidence) -> list:
        calls = [item for item in evidence if isinstance(item, CallFinding)]
        literals = [item for item in evidence if isinstance(item, LiteralFinding)]
        calls = sorted(dedupe(calls, CallFinding.dedup_key), key=_call_sort_key)
        literals = sorted(dedupe(literals, LiteralFinding.dedup_key), key=_literal_sort_key)

        # One entry per address, call sites first
        ordered = []
        addresses = set()
        for item in calls + literals:
            if item.address in addresses:
                continue
            addresses.add(item.address)
            ordered.append(item)
        return ordered
