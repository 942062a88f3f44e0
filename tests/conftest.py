from unittest.mock import patch

import pytest
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from hls_proxy import create_app
from hls_proxy.policy import RewritePolicy


class FakeUpstream:
    """Stand-in for a streamed ``requests.Response``."""

    def __init__(self, status_code=200, body=b'', headers=None, url=None, reason='OK'):
        self.status_code = status_code
        self._body = body.encode('utf-8') if isinstance(body, str) else body
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.reason = reason
        self.encoding = get_encoding_from_headers(self.headers)
        self.closed = False

    @property
    def content(self):
        return self._body

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]

    def close(self):
        self.closed = True


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'PROXY_TIMEOUT': 5,
        'PROXY_SEGMENT_ACTION': 'proxy',
        'PROXY_DEFAULT_ACTION': 'passthrough',
        'PROXY_REWRITE_TAG_URIS': False,
        'PROXY_MAX_UNWRAP_DEPTH': 5,
        'PROXY_UNWRAP_FOREIGN': True,
        'PROXY_SEGMENT_CACHE_CONTROL': None,
        'PROXY_TRUST_FORWARDED': False,
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def policy():
    return RewritePolicy.from_config({})


@pytest.fixture
def upstream():
    """Patch the outbound call; set ``return_value`` or ``side_effect`` per test."""
    with patch('hls_proxy.upstream.requests.request') as mock_request:
        yield mock_request
