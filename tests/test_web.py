"""Tests for the HTTP API"""
import io

import pytest

from conftest import fixed_clock

from netscope.orchestrator import NetworkAnalyzer
from netscope.web.server import WebUIServer

EXPORT = {
    'name': 'upload.bin',
    'procedures': [
        {'address': '0x1000', 'name': 'main', 'references': [{'address': '0x1000', 'symbol': 'socket'}]},
    ],
    'strings': [{'address': '0x2000', 'value': 'https://api.example.com'}],
}


@pytest.fixture
def client(catalog):
    server = WebUIServer(analyzer=NetworkAnalyzer(catalog, clock=fixed_clock))
    server.app.config['TESTING'] = True
    return server.app.test_client()


def test_catalog_endpoint(client, catalog):
    response = client.get('/api/catalog')
    assert response.status_code == 200
    data = response.get_json()
    assert data['version'] == catalog.version
    assert data['count'] == len(catalog)
    assert any(sig['symbol'] == 'socket' for sig in data['signatures'])


def test_catalog_filtered_by_family(client):
    data = client.get('/api/catalog?family=TLSLibrary').get_json()
    assert data['count'] > 0
    assert {sig['api_family'] for sig in data['signatures']} == {'TLSLibrary'}


def test_results_empty_before_analysis(client):
    assert client.get('/api/results').get_json() == {}


def test_analyze_export(client):
    response = client.post('/api/analyze', json=EXPORT)
    assert response.status_code == 200
    data = response.get_json()
    categories = [c['category'] for c in data['conclusions']]
    assert categories == ['SocketRaw', 'HTTPClient', 'TLSHandshake']
    assert data['urls'][0]['address'] == '0x2000'
    assert data['target'] == 'upload.bin'
    assert client.get('/api/results').get_json() == data


def test_analyze_requires_body(client):
    response = client.post('/api/analyze', data='not json', content_type='text/plain')
    assert response.status_code == 400


def test_analyze_rejects_empty_filename(client):
    response = client.post('/api/analyze', data={'file': (io.BytesIO(b''), '')},
                           content_type='multipart/form-data')
    assert response.status_code == 400


def test_analyze_invalid_pe_upload(client):
    response = client.post('/api/analyze', data={'file': (io.BytesIO(b'not a pe file'), 'sample.exe')},
                           content_type='multipart/form-data')
    assert response.status_code == 422
    assert response.get_json()['category'] == 'Host Error'


def test_analyze_invalid_export(client):
    response = client.post('/api/analyze', json=['not', 'an', 'object'])
    assert response.status_code == 422


def test_analyze_export_with_non_object_reference(client):
    body = dict(EXPORT, procedures=[
        {'address': '0x1000', 'name': 'main', 'references': ['socket', {'address': '0x1000', 'symbol': 'socket'}]},
    ])
    response = client.post('/api/analyze', json=body)
    assert response.status_code == 200
    data = response.get_json()
    assert data['progress']['skipped'] == 1
    assert data['conclusions'][0]['category'] == 'SocketRaw'


def test_analyze_unexpected_failure_is_500(client, monkeypatch):
    def broken(self, host, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(NetworkAnalyzer, 'analyze', broken)
    response = client.post('/api/analyze', json=EXPORT)
    assert response.status_code == 500
    assert 'boom' in response.get_json()['error']
