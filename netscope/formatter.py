"""Output formatter for network analysis reports"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from netscope.models import (
    AnalysisReport, ApiFamily, CATEGORY_ORDER, LiteralFinding,
)
from netscope.protocol_inference import ProtocolInference

logger = logging.getLogger(__name__)

RULE_HEAVY = "═" * 70
RULE_LIGHT = "━" * 70

FAMILY_TITLES = {
    ApiFamily.C_SOCKET: "C SOCKET API DETECTION",
    ApiFamily.OBJC_FOUNDATION: "OBJECTIVE-C / FOUNDATION API DETECTION",
    ApiFamily.SWIFT_NETWORK: "SWIFT NETWORK API DETECTION",
    ApiFamily.TLS_LIBRARY: "TLS LIBRARY DETECTION",
}


class ReportFormatter:
    """Renders an AnalysisReport as a text report or JSON"""

    def __init__(self, source: Optional[str] = None):
        """
        Args:
            source: Name of the analyzed document, shown in the header
        """
        self.source = source

    def format_text(self, report: AnalysisReport) -> str:
        """
        Format a report as a sectioned plain-text document.

        Args:
            report: Analysis result

        Returns:
            Report text
        """
        lines: List[str] = []
        lines.append(RULE_HEAVY)
        lines.append("            NETWORK OPERATIONS ANALYSIS REPORT")
        lines.append(RULE_HEAVY)
        lines.append("")
        if self.source:
            lines.append(f"Target: {self.source}")
        lines.append(f"Analysis Date: {report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append(f"Catalog Version: {report.catalog_version}")
        lines.append("")

        if not report.complete:
            lines.append("⚠️  Analysis was cancelled; results below are partial "
                         f"({report.procedures_processed}/{report.procedures_total} procedures, "
                         f"{report.strings_processed}/{report.strings_total} strings).")
            lines.append("")

        section = 1
        for family in ApiFamily:
            findings = [f for f in report.call_findings if f.api_family == family]
            self._section(lines, section, FAMILY_TITLES[family])
            if findings:
                lines.append(f"Call sites: {len(findings)}")
                lines.append("")
                for finding in findings:
                    lines.append(f"  {finding}  -> {finding.category.value}")
            else:
                lines.append("No API usage detected.")
            lines.append("")
            section += 1

        self._section(lines, section, "NETWORK STRING EXTRACTION")
        self._literal_block(lines, "URLs", report.urls)
        self._literal_block(lines, "IP Addresses", report.ip_addresses)
        self._literal_block(lines, "Domain Names", report.domains)
        if report.ports:
            lines.append(f"Ports: {', '.join(str(port) for port in report.ports)}")
            lines.append("")
        section += 1

        self._section(lines, section, "PROTOCOL CONCLUSIONS")
        if report.findings:
            for category in CATEGORY_ORDER:
                conclusion = report.conclusion(category)
                if conclusion is None:
                    continue
                lines.append(f"{category.value}: confidence {conclusion.confidence:.2f}, "
                             f"{len(conclusion.evidence)} evidence item(s)")
                for item in conclusion.evidence:
                    lines.append(f"  {item}")
                lines.append("")
        else:
            lines.append("No network protocols concluded.")
            lines.append("")
        section += 1

        self._section(lines, section, "ANALYSIS SUMMARY")
        counts = report.family_counts()
        lines.append(f"{'C Socket APIs Found:':<29}{counts[ApiFamily.C_SOCKET.value]}")
        lines.append(f"{'Objective-C APIs Found:':<29}{counts[ApiFamily.OBJC_FOUNDATION.value]}")
        lines.append(f"{'Swift Network APIs Found:':<29}{counts[ApiFamily.SWIFT_NETWORK.value]}")
        lines.append(f"{'TLS Library APIs Found:':<29}{counts[ApiFamily.TLS_LIBRARY.value]}")
        total_strings = len(report.urls) + len(report.ip_addresses) + len(report.domains)
        lines.append(f"{'Network Strings Found:':<29}{total_strings}")
        lines.append(f"{'  • URLs:':<29}{len(report.urls)}")
        lines.append(f"{'  • IP Addresses:':<29}{len(report.ip_addresses)}")
        lines.append(f"{'  • Domain Names:':<29}{len(report.domains)}")
        lines.append(f"{'  • Port Numbers:':<29}{len(report.ports)}")
        strongest = ProtocolInference.strongest(report.findings)
        if strongest is not None:
            lines.append(f"{'Strongest Signal:':<29}{strongest.category.value} ({strongest.confidence:.2f})")
        if report.skipped:
            lines.append(f"{'Skipped Items:':<29}{report.skipped}")
        if report.annotations_written or report.annotation_failures:
            lines.append(f"{'Annotations Written:':<29}{report.annotations_written}")
            lines.append(f"{'Annotation Failures:':<29}{report.annotation_failures}")
        lines.append("")

        lines.append(RULE_HEAVY)
        lines.append("                          END OF REPORT")
        lines.append(RULE_HEAVY)
        return "\n".join(lines) + "\n"

    def format_json_dict(self, report: AnalysisReport) -> Dict[str, Any]:
        data = report.to_dict()
        if self.source:
            data['target'] = self.source
        return data

    def format_json(self, report: AnalysisReport, indent: int = 2) -> str:
        """Serialize a report to JSON"""
        return json.dumps(self.format_json_dict(report), indent=indent)

    def save(self, report: AnalysisReport, path: Union[str, Path], as_json: bool = False) -> Path:
        """
        Write the rendered report to a file.

        Args:
            report: Analysis result
            path: Output file
            as_json: Write JSON instead of text

        Returns:
            The path written
        """
        path = Path(path)
        content = self.format_json(report) if as_json else self.format_text(report)
        path.write_text(content, encoding='utf-8')
        logger.info(f"Report written to {path}")
        return path

    @staticmethod
    def _section(lines: List[str], number: int, title: str):
        lines.append(RULE_LIGHT)
        lines.append(f"[{number}] {title}")
        lines.append(RULE_LIGHT)
        lines.append("")

    @staticmethod
    def _literal_block(lines: List[str], title: str, items: List[LiteralFinding]):
        if not items:
            return
        lines.append(f"{title}: {len(items)}")
        lines.append("")
        for item in items:
            lines.append(f"  {item}")
        lines.append("")
