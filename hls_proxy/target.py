import logging

from .errors import MalformedTargetError, MissingTargetError, RecursionLimitExceededError
from .guard import WRAPPER_PARAM, decode_nested, is_proxy_owned, unwrap, upgrade_scheme

logger = logging.getLogger(__name__)

USAGE = (
    f"Missing '{WRAPPER_PARAM}' parameter. "
    f"Usage: ?{WRAPPER_PARAM}=<percent-encoded playlist or segment URL>"
)


def proxy_base_uri(request):
    """Address players use to reach this proxy: scheme, host and mount path of the request."""
    return request.base_url


def decode_target(value, max_depth=5):
    value = value.strip()
    if '\ufffd' in value or any(ord(char) < 0x20 for char in value):
        raise MalformedTargetError(f"'{WRAPPER_PARAM}' is not a valid percent-encoded URL")
    target = decode_nested(value, max_depth)
    if target is not None and any('\udc80' <= char <= '\udcff' for char in target):
        raise MalformedTargetError(f"'{WRAPPER_PARAM}' does not decode to valid UTF-8")
    if target is None:
        raise MalformedTargetError(
            f"'{WRAPPER_PARAM}' must be an absolute http(s) URL, got {value!r}"
        )
    return target


def resolve_target(request, policy):
    """Pull the upstream URI out of the inbound request.

    Returns ``(target, proxy_base)``. The target is absolute, uses https and
    has any proxy wrapper layers removed.
    """
    raw = request.args.get(WRAPPER_PARAM)
    if raw is None or not raw.strip():
        raise MissingTargetError(USAGE)

    proxy_base = proxy_base_uri(request)
    target = upgrade_scheme(decode_target(raw, policy.max_unwrap_depth))
    target = unwrap(target, proxy_base, max_depth=policy.max_unwrap_depth,
                    foreign=policy.unwrap_foreign)
    if is_proxy_owned(target, proxy_base):
        logger.warning("Rejecting self-referencing target %s", target)
        raise RecursionLimitExceededError(f"Refusing to proxy {target}: it points back at this proxy")

    logger.debug("Resolved target %s (proxy base %s)", target, proxy_base)
    return target, proxy_base
