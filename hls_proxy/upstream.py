import logging
from urllib.parse import urlsplit

import requests
from urllib3.exceptions import ReadTimeoutError

from .errors import UpstreamUnreachableError

logger = logging.getLogger(__name__)

# Inbound headers that are never forwarded: hop-by-hop, proxy identity,
# cache validators and everything the proxy sets itself.
DROPPED_HEADERS = frozenset([
    'host',
    'connection',
    'keep-alive',
    'proxy-authorization',
    'proxy-connection',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
    'content-length',
    'accept-encoding',
    'cookie',
    'forwarded',
    'x-real-ip',
    'if-modified-since',
    'if-none-match',
    'if-match',
    'if-unmodified-since',
    'user-agent',
    'referer',
    'origin',
])
DROPPED_PREFIXES = ('x-forwarded-', 'cf-', 'cdn-loop')

# A partial response would truncate a manifest.
PLAYLIST_DROPPED_HEADERS = frozenset(['range', 'if-range'])


def origin_of(url):
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def build_headers(inbound, target, user_agent, send_origin=True, playlist_target=False):
    """Outbound headers for ``target`` derived from the inbound request headers."""
    headers = {}
    for name, value in inbound.items():
        key = name.lower()
        if key in DROPPED_HEADERS or key.startswith(DROPPED_PREFIXES):
            continue
        if playlist_target and key in PLAYLIST_DROPPED_HEADERS:
            continue
        headers[name] = value

    origin = origin_of(target)
    headers['User-Agent'] = user_agent
    headers['Referer'] = origin + '/'
    if send_origin:
        headers['Origin'] = origin
    return headers


def _is_timeout(error):
    if isinstance(error, requests.exceptions.Timeout):
        return True
    # body reads wrap urllib3's timeout in a ConnectionError
    return any(isinstance(arg, ReadTimeoutError) for arg in error.args)


def _unreachable(target, error):
    if _is_timeout(error):
        return UpstreamUnreachableError(f"Upstream timed out: {target}", status_code=504)
    return UpstreamUnreachableError(f"Upstream unreachable: {target} ({error})", status_code=502)


def fetch(method, target, headers, body=None, timeout=15):
    """Send the request upstream, following redirects, with the body left unread."""
    logger.debug("Fetching %s %s", method, target)
    try:
        return requests.request(
            method,
            target,
            headers=headers,
            data=body or None,
            stream=True,
            allow_redirects=True,
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        logger.error("Error fetching %s: %s", target, e)
        raise _unreachable(target, e) from e


def read_text(response, target):
    """Read a playlist body as text, returning ``(text, encoding)``.

    A declared charset wins, otherwise UTF-8. Undecodable bytes survive as
    surrogates, so ``encode_text`` with the returned encoding gives back the
    original bytes for every line that was not rewritten.
    """
    try:
        content = response.content
    except requests.exceptions.RequestException as e:
        logger.error("Error reading playlist body from %s: %s", target, e)
        raise _unreachable(target, e) from e

    content_type = response.headers.get('Content-Type', '').lower()
    encoding = response.encoding if 'charset=' in content_type and response.encoding else 'utf-8'
    try:
        return content.decode(encoding, errors='surrogateescape'), encoding
    except LookupError:
        logger.debug("Unknown charset %r from %s, reading as utf-8", encoding, target)
        return content.decode('utf-8', errors='surrogateescape'), 'utf-8'


def encode_text(text, encoding):
    return text.encode(encoding, errors='surrogateescape')
