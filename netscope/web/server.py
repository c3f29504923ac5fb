"""Flask web server for the NetScope HTTP API"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from netscope.catalog import SignatureCatalog
from netscope.error_handling import NetScopeError
from netscope.formatter import ReportFormatter
from netscope.host.memory_host import ExportedHost
from netscope.orchestrator import NetworkAnalyzer

logger = logging.getLogger(__name__)


class WebUIServer:
    """HTTP front end that runs analyses and serves their results"""

    def __init__(self, analyzer: Optional[NetworkAnalyzer] = None,
                 analysis_results: Optional[Dict[str, Any]] = None):
        """
        Initialize the web server.

        Args:
            analyzer: Analyzer used for POSTed documents
            analysis_results: Results to serve before the first analysis
        """
        self.app = Flask(__name__)
        self.app.config['MAX_CONTENT_LENGTH'] = 256 * 1024 * 1024  # 256MB max upload
        self.analyzer = analyzer or NetworkAnalyzer()
        self.analysis_results = analysis_results or {}
        self.port = 8080

        self._register_routes()

    @property
    def catalog(self) -> SignatureCatalog:
        return self.analyzer.catalog

    def _analyze_upload(self, upload) -> Dict[str, Any]:
        """Save an uploaded binary to a temp file and analyze it as PE"""
        from netscope.host.pe_host import PEHost

        suffix = Path(upload.filename).suffix
        fd, temp_path = tempfile.mkstemp(prefix='netscope_', suffix=suffix)
        os.close(fd)
        try:
            upload.save(temp_path)
            with PEHost(temp_path) as host:
                report = self.analyzer.analyze(host)
            return ReportFormatter(upload.filename).format_json_dict(report)
        finally:
            os.unlink(temp_path)

    def _register_routes(self):
        """Register all Flask routes"""

        @self.app.route('/api/catalog')
        def api_catalog():
            """Signatures in the active catalog"""
            family = request.args.get('family')
            signatures = [
                sig.to_dict() for sig in self.catalog.signatures()
                if family is None or sig.api_family.value == family
            ]
            return jsonify({
                'version': self.catalog.version,
                'count': len(signatures),
                'signatures': signatures,
            })

        @self.app.route('/api/analyze', methods=['POST'])
        def api_analyze():
            """Analyze a JSON export body or an uploaded PE file"""
            try:
                if 'file' in request.files:
                    upload = request.files['file']
                    if upload.filename == '':
                        return jsonify({'error': 'No file selected'}), 400
                    results = self._analyze_upload(upload)
                else:
                    data = request.get_json(silent=True)
                    if data is None:
                        return jsonify({'error': 'Expected a JSON export body or a file upload'}), 400
                    host = ExportedHost.from_dict(data)
                    report = self.analyzer.analyze(host)
                    results = ReportFormatter(host.name).format_json_dict(report)
            except NetScopeError as e:
                logger.error(f"Analysis request failed: {e.short()}")
                return jsonify({'error': e.message, 'category': e.category.value}), 422
            except Exception as e:
                logger.exception("Unexpected failure while analyzing request")
                return jsonify({'error': f'Analysis failed: {e}'}), 500

            self.analysis_results = results
            return jsonify(results)

        @self.app.route('/api/results')
        def api_results():
            """Results of the most recent analysis"""
            return jsonify(self.analysis_results)

    def start(self, port: int = 8080, debug: bool = False):
        """
        Start the Flask web server.

        Args:
            port: Port number to listen on
            debug: Enable debug mode
        """
        self.port = port
        print(f"Starting NetScope API on http://localhost:{port}")
        print(f"Press Ctrl+C to stop the server")
        self.app.run(host='0.0.0.0', port=port, debug=debug)
