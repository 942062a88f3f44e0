import os

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36'
)

_TRUTHY = ('1', 'true', 'yes', 'on')


def env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def env_list(name, default=()):
    value = os.environ.get(name)
    if value is None:
        return tuple(default)
    return tuple(item.strip() for item in value.split(',') if item.strip())


def load_config():
    """Read the proxy settings from the environment.

    The returned mapping is loaded into ``app.config``; callers that need
    different values (tests, embedding) pass their own overrides to
    ``create_app`` instead of touching the environment.
    """
    return {
        'HOST': os.environ.get('HOST', '0.0.0.0'),
        'PORT': int(os.environ.get('PORT', 8080)),
        'PROXY_TIMEOUT': float(os.environ.get('PROXY_TIMEOUT', 15)),
        'PROXY_USER_AGENT': os.environ.get('PROXY_USER_AGENT', DEFAULT_USER_AGENT),
        'PROXY_SEND_ORIGIN': env_flag('PROXY_SEND_ORIGIN', True),
        'PROXY_SEGMENT_ACTION': os.environ.get('PROXY_SEGMENT_ACTION', 'proxy'),
        'PROXY_DEFAULT_ACTION': os.environ.get('PROXY_DEFAULT_ACTION', 'passthrough'),
        'PROXY_REWRITE_TAG_URIS': env_flag('PROXY_REWRITE_TAG_URIS', False),
        'PROXY_PLAYLIST_PATHS': env_list('PROXY_PLAYLIST_PATHS', ('iptv.php',)),
        'PROXY_MAX_UNWRAP_DEPTH': int(os.environ.get('PROXY_MAX_UNWRAP_DEPTH', 5)),
        'PROXY_UNWRAP_FOREIGN': env_flag('PROXY_UNWRAP_FOREIGN', True),
        'PROXY_SEGMENT_CACHE_CONTROL': os.environ.get('PROXY_SEGMENT_CACHE_CONTROL') or None,
        'PROXY_TRUST_FORWARDED': env_flag('PROXY_TRUST_FORWARDED', False),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO').upper(),
    }
