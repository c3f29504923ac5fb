"""Call-site matching: procedure reference edges against the signature catalog"""
import logging
from typing import Iterable, List, Optional

from netscope.catalog import SignatureCatalog
from netscope.error_handling import ErrorContext, MalformedReference
from netscope.host.base import HostDocument
from netscope.models import CallFinding, ProcedureRef, ReferenceEdge

logger = logging.getLogger(__name__)


class CallSiteMatcher:
    """
    Produces a CallFinding for every reference edge whose target resolves
    to a catalogued symbol.

    Only directly referenced symbols are considered. Indirect or dynamic
    calls the host could not resolve to a name are skipped without being
    reported; that is a known limitation, not an error.
    """

    def __init__(self, catalog: SignatureCatalog, host: HostDocument):
        self.catalog = catalog
        self.host = host
        self.skipped = 0
        self.unresolved = 0

    def match_procedures(self, procedures: Iterable[ProcedureRef]) -> List[CallFinding]:
        """
        Match every edge of every procedure.

        Args:
            procedures: Procedures to scan, in host order

        Returns:
            Call findings in discovery order
        """
        findings: List[CallFinding] = []
        for procedure in procedures:
            findings.extend(self.match_procedure(procedure))
        return findings

    def match_procedure(self, procedure: ProcedureRef) -> List[CallFinding]:
        findings = []
        for edge in procedure.references:
            try:
                symbol = self._resolve(procedure, edge)
            except MalformedReference as e:
                self.skipped += 1
                logger.warning(f"Skipping reference in {procedure.name}: {e.short()}")
                continue

            if symbol is None:
                self.unresolved += 1
                logger.debug(f"Unresolved reference at {edge.address:#x} in {procedure.name}")
                continue

            signature = self.catalog.lookup(symbol)
            if signature is not None:
                findings.append(CallFinding(edge.address, procedure, signature))
                logger.debug(f"Matched {symbol} at {edge.address:#x} in {procedure.name}")
        return findings

    def _resolve(self, procedure: ProcedureRef, edge: ReferenceEdge) -> Optional[str]:
        """Return the symbol name an edge points at, or None if unresolvable."""
        if edge is None or edge.address is None:
            raise MalformedReference(
                "Reference edge has no address",
                context=ErrorContext(procedure=procedure.name, address=procedure.address),
            )

        if isinstance(edge.symbol, str) and edge.symbol.strip():
            return edge.symbol.strip()

        if edge.target is None:
            raise MalformedReference(
                "Reference edge has neither a symbol nor a target",
                context=ErrorContext(procedure=procedure.name, address=edge.address),
            )

        return self.host.resolve_reference_symbol(edge.target) or None
