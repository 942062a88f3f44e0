"""Recognising, building and peeling proxy wrapper URIs.

A wrapped URI is ``<proxy base>?url=<percent-encoded absolute URI>``. Anything
whose authority equals the proxy's own is ours; with ``foreign`` enabled any
URI whose ``url`` query parameter carries an absolute http(s) URI is treated
as a wrapper too, which catches other deployments of the same proxy.
"""
import logging
from urllib.parse import parse_qs, quote, unquote, urlsplit

from .errors import RecursionLimitExceededError

logger = logging.getLogger(__name__)

WRAPPER_PARAM = 'url'
SECURE_SCHEMES = {'http': 'https'}
# playlist bytes that are not valid UTF-8 travel through URIs as surrogates
URI_ERRORS = 'surrogateescape'


def is_absolute(uri):
    try:
        parts = urlsplit(uri)
        parts.port
    except ValueError:
        return False
    return parts.scheme in ('http', 'https') and bool(parts.hostname)


def upgrade_scheme(uri):
    scheme, sep, rest = uri.partition('://')
    secure = SECURE_SCHEMES.get(scheme.lower())
    if sep and secure:
        return f"{secure}://{rest}"
    return uri


def authority(uri):
    try:
        return urlsplit(uri).netloc.lower()
    except ValueError:
        return ''


def is_proxy_owned(uri, proxy_base):
    return bool(authority(uri)) and authority(uri) == authority(proxy_base)


def wrap(uri, proxy_base):
    return f"{proxy_base}?{WRAPPER_PARAM}={quote(uri, safe='', errors=URI_ERRORS)}"


def decode_nested(value, max_depth=5):
    """Percent-decode ``value`` until it is an absolute URI, at most ``max_depth`` times.

    Returns None when no absolute URI turns up.
    """
    for _ in range(max_depth):
        if is_absolute(value):
            return value
        decoded = unquote(value, errors=URI_ERRORS)
        if decoded == value:
            return None
        value = decoded
    return value if is_absolute(value) else None


def wrapped_target(uri, proxy_base, foreign=True, max_depth=5):
    """Return the URI one wrapper layer down, or None if ``uri`` is not a wrapper."""
    if not foreign and not is_proxy_owned(uri, proxy_base):
        return None
    try:
        query = urlsplit(uri).query
    except ValueError:
        return None
    values = parse_qs(query, keep_blank_values=True, errors=URI_ERRORS).get(WRAPPER_PARAM)
    if not values:
        return None
    return decode_nested(values[0], max_depth)


def unwrap(uri, proxy_base, max_depth=5, foreign=True):
    """Peel wrapper layers off ``uri`` until a plain target remains.

    At most ``max_depth`` layers are removed; a URI that is still wrapped after
    that raises RecursionLimitExceededError.
    """
    current = uri
    for _ in range(max_depth):
        inner = wrapped_target(current, proxy_base, foreign=foreign, max_depth=max_depth)
        if inner is None:
            return current
        current = upgrade_scheme(inner)
    if wrapped_target(current, proxy_base, foreign=foreign, max_depth=max_depth) is not None:
        logger.warning("Proxy nesting deeper than %d levels: %s", max_depth, uri)
        raise RecursionLimitExceededError(
            f"Refusing to proxy {uri}: still wrapped after {max_depth} unwrap steps"
        )
    return current
