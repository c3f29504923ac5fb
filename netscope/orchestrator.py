"""
Analysis orchestrator.

Single entry point for one "Analyze Network Operations" request. Drives the
matchers, protocol inference and report aggregation over a host document,
and owns cancellation, progress reporting and the optional annotation pass.
"""
import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from netscope.catalog import SignatureCatalog, get_default_catalog
from netscope.error_handling import (
    AnnotationWriteFailure, ErrorContext, HostDataUnavailable, NetScopeError,
)
from netscope.host.base import HostDocument
from netscope.matchers import CallSiteMatcher, LiteralMatcher
from netscope.matchers.literal_matcher import MAX_LITERAL_LENGTH
from netscope.models import AnalysisReport, CallFinding, LiteralFinding, ProcedureRef
from netscope.protocol_inference import ProtocolInference
from netscope.report import ReportAggregator

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 64
ANNOTATION_PREFIX = "[NetScope]"

ProgressCallback = Callable[[float], None]


class CancellationToken:
    """Cooperative cancellation flag, checked between batches."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _ProgressTracker:
    """Reports a monotonic completion fraction from any worker thread."""

    def __init__(self, callback: Optional[ProgressCallback], total: int):
        self.callback = callback
        self.total = total
        self.done = 0
        self._last = 0.0
        self._lock = threading.Lock()

    def advance(self, count: int):
        with self._lock:
            self.done += count
            self._emit(self.done / self.total if self.total else 1.0)

    def finish(self):
        with self._lock:
            self._emit(1.0)

    def _emit(self, fraction: float):
        fraction = min(1.0, fraction)
        if fraction < self._last:
            return
        self._last = fraction
        if self.callback is not None:
            self.callback(fraction)


class NetworkAnalyzer:
    """
    Network surface analyzer.

    Usage::

        analyzer = NetworkAnalyzer()
        report = analyzer.analyze(host)
    """

    def __init__(self, catalog: Optional[SignatureCatalog] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 parallel: bool = True,
                 clock: Optional[Callable[[], datetime]] = None,
                 max_literal_length: int = MAX_LITERAL_LENGTH):
        """
        Args:
            catalog: Signature catalog (process-wide default if omitted)
            batch_size: Items processed between cancellation checks
            parallel: Run the two matchers on worker threads
            clock: Timestamp source for generated_at
            max_literal_length: Truncation bound for string matching
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.catalog = catalog or get_default_catalog()
        self.batch_size = batch_size
        self.parallel = parallel
        self.max_literal_length = max_literal_length
        self.inference = ProtocolInference()
        self.aggregator = ReportAggregator(clock=clock)

    def analyze(self, host: HostDocument,
                cancel_token: Optional[CancellationToken] = None,
                progress: Optional[ProgressCallback] = None,
                annotate: bool = False) -> AnalysisReport:
        """
        Run one analysis pass.

        Args:
            host: Document to analyze
            cancel_token: Cancels the run between batches
            progress: Called with the completed fraction (0..1, monotonic)
            annotate: Write findings back to the host after analysis

        Returns:
            AnalysisReport; ``complete`` is False if the run was cancelled

        Raises:
            HostDataUnavailable: If the host cannot provide its data
        """
        token = cancel_token or CancellationToken()
        logger.info(f"Analyzing network operations in {host.describe()}")

        with host.read_lock():
            procedures, strings = self._load(host)
            tracker = _ProgressTracker(progress, len(procedures) + len(strings))
            call_matcher = CallSiteMatcher(self.catalog, host)
            literal_matcher = LiteralMatcher(self.max_literal_length)

            try:
                if self.parallel and procedures and strings:
                    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="netscope") as pool:
                        calls_job = pool.submit(self._match_calls, call_matcher, procedures, token, tracker)
                        literals_job = pool.submit(self._match_strings, literal_matcher, strings, token, tracker)
                        call_findings, procedures_done = calls_job.result()
                        literal_findings, strings_done = literals_job.result()
                else:
                    call_findings, procedures_done = self._match_calls(call_matcher, procedures, token, tracker)
                    literal_findings, strings_done = self._match_strings(literal_matcher, strings, token, tracker)
            except NetScopeError:
                raise
            except Exception as e:
                raise HostDataUnavailable(
                    f"Host failed during analysis: {e}",
                    context=ErrorContext(binary_path=host.describe()),
                    original_exception=e,
                ) from e

        complete = procedures_done == len(procedures) and strings_done == len(strings)
        if not complete:
            logger.warning(f"Analysis cancelled after {procedures_done}/{len(procedures)} procedures "
                           f"and {strings_done}/{len(strings)} strings; report is partial")

        conclusions = self.inference.infer(call_findings, literal_findings)
        report = self.aggregator.build(
            conclusions, call_findings, literal_findings,
            ports=literal_matcher.ports,
            complete=complete,
            procedures_processed=procedures_done,
            strings_processed=strings_done,
            procedures_total=len(procedures),
            strings_total=len(strings),
            skipped=call_matcher.skipped + literal_matcher.skipped,
            catalog_version=self.catalog.version,
        )

        if annotate:
            self.annotate(host, report)

        if complete:
            tracker.finish()
        return report

    def _load(self, host: HostDocument) -> Tuple[List[ProcedureRef], list]:
        try:
            procedures = list(host.list_procedures())
            strings = list(host.list_strings())
        except HostDataUnavailable:
            raise
        except Exception as e:
            raise HostDataUnavailable(
                f"Cannot read procedures or strings: {e}",
                context=ErrorContext(binary_path=host.describe()),
                original_exception=e,
            ) from e
        logger.info(f"Loaded {len(procedures)} procedure(s) and {len(strings)} string(s)")
        return procedures, strings

    def _match_calls(self, matcher: CallSiteMatcher, procedures: Sequence[ProcedureRef],
                     token: CancellationToken, tracker: _ProgressTracker) -> Tuple[List[CallFinding], int]:
        findings: List[CallFinding] = []
        processed = 0
        for start in range(0, len(procedures), self.batch_size):
            if token.is_cancelled:
                break
            batch = procedures[start:start + self.batch_size]
            findings.extend(matcher.match_procedures(batch))
            processed += len(batch)
            tracker.advance(len(batch))
        logger.debug(f"Call-site matching: {len(findings)} finding(s) in {processed} procedure(s)")
        return findings, processed

    def _match_strings(self, matcher: LiteralMatcher, strings: Sequence,
                       token: CancellationToken, tracker: _ProgressTracker) -> Tuple[List[LiteralFinding], int]:
        findings: List[LiteralFinding] = []
        processed = 0
        for start in range(0, len(strings), self.batch_size):
            if token.is_cancelled:
                break
            batch = strings[start:start + self.batch_size]
            findings.extend(matcher.match_strings(batch))
            processed += len(batch)
            tracker.advance(len(batch))
        logger.debug(f"Literal matching: {len(findings)} finding(s) in {processed} string(s)")
        return findings, processed

    def annotate(self, host: HostDocument, report: AnalysisReport) -> int:
        """
        Write one comment per finding address into the host document.

        Runs under the host's write lock. Individual write failures are
        logged and counted on the report; they never discard results.

        Returns:
            Number of annotations written
        """
        if not host.supports_annotation:
            logger.warning(f"{host.describe()} does not support annotations; skipping write-back")
            return 0

        with host.write_lock():
            for address, text in annotation_texts(report).items():
                try:
                    host.annotate(address, text)
                except Exception as e:
                    failure = e if isinstance(e, AnnotationWriteFailure) else AnnotationWriteFailure(
                        str(e), context=ErrorContext(address=address), original_exception=e)
                    report.annotation_failures += 1
                    logger.warning(f"Annotation not written: {failure.short()}")
                else:
                    report.annotations_written += 1

        logger.info(f"Wrote {report.annotations_written} annotation(s), "
                    f"{report.annotation_failures} failure(s)")
        return report.annotations_written


def annotation_texts(report: AnalysisReport) -> Dict[int, str]:
    """Comment text per address, in ascending address order."""
    notes: Dict[int, List[str]] = {}
    for finding in report.call_findings:
        notes.setdefault(finding.address, []).append(
            f"{finding.matched_signature.symbol_name} -> {finding.category.value} "
            f"({finding.api_family.value}, {finding.confidence:.2f})"
        )
    for finding in report.urls + report.ip_addresses + report.domains:
        notes.setdefault(finding.address, []).append(
            f"{finding.kind.value}: {finding.value or finding.raw_string}"
        )
    return OrderedDict(
        (address, f"{ANNOTATION_PREFIX} " + "; ".join(parts))
        for address, parts in sorted(notes.items())
    )
