#!/usr/bin/env python3
"""
NetScope - Network Surface Analysis Tool

Finds the network operations a binary performs: catalogued socket, HTTP,
WebSocket, TLS and DNS API calls, plus URL and IP literals, and concludes
which protocols it speaks.
"""

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from netscope.__version__ import __version__
from netscope.catalog import SignatureCatalog, get_default_catalog
from netscope.error_handling import (
    ConfigurationError, ErrorContext, ErrorHandler, InputError, NetScopeError,
)
from netscope.formatter import ReportFormatter
from netscope.host.base import HostDocument
from netscope.host.memory_host import ExportedHost
from netscope.orchestrator import CancellationToken, DEFAULT_BATCH_SIZE, NetworkAnalyzer

BACKENDS = ('auto', 'pe', 'r2', 'export')


def open_host(target: str, backend: str = 'auto') -> HostDocument:
    """
    Open the analysis target with the requested backend.

    ``auto`` treats ``.json`` files as disassembler exports and anything else
    as a PE image.

    Raises:
        InputError: If the target does not exist
        HostDataUnavailable: If the backend cannot read it
    """
    path = Path(target)
    if not path.exists():
        raise InputError(f"File not found: {target}", suggestion="Check the path and try again.")

    if backend == 'auto':
        backend = 'export' if path.suffix.lower() == '.json' else 'pe'

    if backend == 'export':
        return ExportedHost.from_json(path)
    if backend == 'r2':
        from netscope.host.radare2_host import Radare2Host
        return Radare2Host(path)
    from netscope.host.pe_host import PEHost
    return PEHost(path)


def load_catalog(path: Optional[str], strict: bool) -> SignatureCatalog:
    if path is None:
        return get_default_catalog()
    return SignatureCatalog.load(path, strict=strict)


def run_analysis(analyzer: NetworkAnalyzer, host: HostDocument, annotate: bool):
    """Run the analysis on a worker thread so Ctrl+C cancels it cleanly."""
    token = CancellationToken()
    outcome = {}

    def worker():
        try:
            outcome['report'] = analyzer.analyze(host, cancel_token=token, annotate=annotate)
        except Exception as e:
            outcome['error'] = e

    thread = threading.Thread(target=worker, name="netscope-analysis", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        print("\n⏹️  Cancelling analysis...", file=sys.stderr)
        token.cancel()
        thread.join()

    if 'error' in outcome:
        raise outcome['error']
    return outcome['report']


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='netscope',
        description='🌐 NetScope - Network Surface Analysis for Binaries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
📖 QUICK START:

  Analyze a PE binary:
    netscope sample.exe

  Analyze a disassembler export:
    netscope sample.json --json -o report.json

  Use radare2 and write findings back as comments:
    netscope sample.bin --backend r2 --annotate

  Serve the HTTP API:
    netscope --web --port 8080
        """
    )

    parser.add_argument(
        'target',
        nargs='?',
        type=str,
        help='Binary or JSON export to analyze'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    core = parser.add_argument_group('🔍 Analysis Options')
    core.add_argument(
        '--backend',
        choices=BACKENDS,
        default='auto',
        help='How to read the target (default: auto)'
    )
    core.add_argument(
        '--catalog',
        type=str,
        metavar='FILE',
        help='Extra signature catalog (JSON) merged over the built-in one'
    )
    core.add_argument(
        '--strict-catalog',
        action='store_true',
        help='Fail when the catalog contains duplicate symbols'
    )
    core.add_argument(
        '--annotate',
        action='store_true',
        help='Write findings back into the host document as comments'
    )

    perf = parser.add_argument_group('⚙️  Performance Options')
    perf.add_argument(
        '--no-parallel',
        action='store_true',
        help='Run call-site and string matching on one thread'
    )
    perf.add_argument(
        '--batch-size',
        type=int,
        default=DEFAULT_BATCH_SIZE,
        metavar='N',
        help=f'Items processed between cancellation checks (default: {DEFAULT_BATCH_SIZE})'
    )

    output = parser.add_argument_group('💾 Output Options')
    output.add_argument(
        '--json',
        action='store_true',
        help='Emit the report as JSON'
    )
    output.add_argument(
        '--output', '-o',
        type=str,
        metavar='FILE',
        help='Save the report to a file instead of printing it'
    )
    output.add_argument(
        '--debug',
        action='store_true',
        help='Verbose logging and tracebacks'
    )

    web = parser.add_argument_group('🌐 Web Interface Options')
    web.add_argument(
        '--web',
        action='store_true',
        help='Start the HTTP API server'
    )
    web.add_argument(
        '--port',
        type=int,
        default=8080,
        metavar='PORT',
        help='Port for the web server (default: 8080)'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the NetScope CLI"""
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = ErrorHandler(debug_mode=args.debug)
    if not args.debug:
        logging.getLogger(ErrorHandler.LOGGER_NAME).setLevel(logging.WARNING)

    try:
        if args.batch_size < 1:
            raise ConfigurationError("--batch-size must be at least 1")
        catalog = load_catalog(args.catalog, args.strict_catalog)
        analyzer = NetworkAnalyzer(
            catalog=catalog,
            batch_size=args.batch_size,
            parallel=not args.no_parallel,
        )

        if args.web:
            from netscope.web.server import WebUIServer
            WebUIServer(analyzer=analyzer).start(port=args.port, debug=args.debug)
            return 0

        if not args.target:
            parser.print_help()
            print("\n❌ Error: No input provided", file=sys.stderr)
            print("💡 Try: netscope yourfile.exe", file=sys.stderr)
            return 1

        host = open_host(args.target, args.backend)
        try:
            report = run_analysis(analyzer, host, annotate=args.annotate)
            if args.output:
                ReportFormatter(args.target).save(report, args.output, as_json=args.json)
                print(f"✅ Report written to {args.output}")
            elif args.json:
                print(ReportFormatter(args.target).format_json(report))
            else:
                print(host.render(report))
        finally:
            close = getattr(host, 'close', None)
            if close is not None:
                close()

        return 0 if report.complete else 130

    except NetScopeError as e:
        handler.handle_error(e)
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except Exception as e:
        handler.handle_error(e, context=ErrorContext(binary_path=args.target))
        return 1


if __name__ == '__main__':
    sys.exit(main())
