import logging

import requests
from flask import Response, current_app

from .policy import PLAYLIST_CONTENT_TYPE, PLAYLIST_MIME_TYPE

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD, POST, OPTIONS',
    'Access-Control-Allow-Headers': '*',
    'Access-Control-Expose-Headers': 'Content-Length, Content-Range, Accept-Ranges',
    'Access-Control-Max-Age': '86400',
}

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

# Upstream response headers copied onto pass-through responses.
PASSTHROUGH_HEADERS = (
    'Content-Type',
    'Content-Length',
    'Content-Range',
    'Accept-Ranges',
    'Cache-Control',
    'Expires',
    'ETag',
    'Last-Modified',
)

CHUNK_SIZE = 64 * 1024


def set_cors_headers(response):
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    response.headers['X-Content-Type-Options'] = 'nosniff'
    return response


def preflight_response():
    response = current_app.make_default_options_response()
    return set_cors_headers(response)


def error_response(message, status):
    return Response(message, status=status, content_type='text/plain; charset=utf-8')


def playlist_response(body, status=200, charset='utf-8'):
    """``body`` is the encoded playlist; ``charset`` labels the codec it was read and written with."""
    if charset.lower().replace('_', '-') in ('utf-8', 'utf8'):
        content_type = PLAYLIST_CONTENT_TYPE
    else:
        content_type = f"{PLAYLIST_MIME_TYPE}; charset={charset}"
    response = Response(body, status=status, content_type=content_type)
    response.headers.update(NO_CACHE_HEADERS)
    response.headers['Content-Disposition'] = 'inline; filename="playlist.m3u8"'
    return response


def _stream(upstream, target):
    try:
        for chunk in upstream.iter_content(chunk_size=CHUNK_SIZE):
            if chunk:
                yield chunk
    except requests.exceptions.RequestException as e:
        # status and headers are already on the wire, all we can do is stop
        logger.warning("Upstream stream for %s broke off: %s", target, e)
    finally:
        upstream.close()


def passthrough_response(upstream, target, policy, cache_control=None):
    """Relay a segment/key/other body unchanged, streaming it chunk by chunk.

    Closing the response (client gone, or done) closes the upstream
    connection as well.
    """
    headers = {}
    for name in PASSTHROUGH_HEADERS:
        if name in upstream.headers:
            headers[name] = upstream.headers[name]
    if 'Content-Encoding' in upstream.headers:
        # iter_content() decodes gzip/deflate, so the upstream length no longer applies
        headers.pop('Content-Length', None)
    if not headers.get('Content-Type'):
        headers['Content-Type'] = policy.default_content_type(target)
    if cache_control:
        headers['Cache-Control'] = cache_control

    response = Response(
        _stream(upstream, target),
        status=upstream.status_code,
        headers=headers,
        direct_passthrough=True,
    )
    response.call_on_close(upstream.close)
    return response
