from collections import namedtuple
from posixpath import basename, splitext
from urllib.parse import urlsplit

from .guard import is_proxy_owned, wrapped_target

PROXY = 'proxy'
PASSTHROUGH = 'passthrough'
UNWRAP = 'unwrap'

PLAYLIST_MIME_TYPE = 'application/vnd.apple.mpegurl'
PLAYLIST_CONTENT_TYPE = PLAYLIST_MIME_TYPE + '; charset=utf-8'

PLAYLIST_MIME_TOKENS = (
    'application/vnd.apple.mpegurl',
    'application/x-mpegurl',
    'audio/mpegurl',
    'audio/x-mpegurl',
)

PLAYLIST_TYPES = {
    '.m3u8': PLAYLIST_MIME_TYPE,
    '.m3u': 'audio/x-mpegurl',
}

SEGMENT_TYPES = {
    '.ts': 'video/mp2t',
    '.aac': 'audio/aac',
    '.ac3': 'audio/ac3',
    '.ec3': 'audio/eac3',
    '.mp3': 'audio/mpeg',
    '.m4a': 'audio/mp4',
    '.m4s': 'video/iso.segment',
    '.m4v': 'video/mp4',
    '.mp4': 'video/mp4',
    '.cmfa': 'audio/mp4',
    '.cmfv': 'video/mp4',
    '.vtt': 'text/vtt',
    '.webvtt': 'text/vtt',
}

KEY_TYPES = {
    '.key': 'application/octet-stream',
    '.bin': 'application/octet-stream',
}

DEFAULT_SEGMENT_TYPE = 'application/octet-stream'

Rule = namedtuple('Rule', 'name suffixes action names', defaults=(frozenset(),))

# Script endpoints known to serve playlists without a playlist suffix.
PLAYLIST_PATHS = ('iptv.php',)


def _path(uri):
    try:
        return urlsplit(uri).path
    except ValueError:
        return ''


def path_suffix(uri):
    """Lower-cased extension of the URI's path, ignoring query and fragment."""
    return splitext(_path(uri))[1].lower()


def path_name(uri):
    return basename(_path(uri)).lower()


class RewritePolicy:
    """Decides what happens to every URI found in a playlist.

    Rules are checked in order against the path suffix (or file name) of the
    resolved URI; the first match wins and anything unmatched gets
    ``default_action``.
    URIs that already point back through a proxy are answered with
    ``unwrap`` before any rule is consulted.
    """

    def __init__(self, rules, default_action=PASSTHROUGH, max_unwrap_depth=5,
                 unwrap_foreign=True, rewrite_tag_uris=False, playlist_paths=PLAYLIST_PATHS):
        for rule in rules:
            _check_action(rule.action, rule.name)
        _check_action(default_action, 'default')
        self.rules = tuple(rules)
        self.default_action = default_action
        self.max_unwrap_depth = max_unwrap_depth
        self.unwrap_foreign = unwrap_foreign
        self.rewrite_tag_uris = rewrite_tag_uris
        self.playlist_paths = frozenset(path.lower() for path in playlist_paths)

    @classmethod
    def from_config(cls, config):
        segment_action = config.get('PROXY_SEGMENT_ACTION', PROXY)
        playlist_paths = config.get('PROXY_PLAYLIST_PATHS', PLAYLIST_PATHS)
        return cls(
            default_rules(segment_action, playlist_paths),
            default_action=config.get('PROXY_DEFAULT_ACTION', PASSTHROUGH),
            max_unwrap_depth=config.get('PROXY_MAX_UNWRAP_DEPTH', 5),
            unwrap_foreign=config.get('PROXY_UNWRAP_FOREIGN', True),
            rewrite_tag_uris=config.get('PROXY_REWRITE_TAG_URIS', False),
            playlist_paths=playlist_paths,
        )

    def wrapped_target(self, uri, proxy_base):
        return wrapped_target(uri, proxy_base, foreign=self.unwrap_foreign,
                              max_depth=self.max_unwrap_depth)

    def action_for(self, uri, proxy_base):
        if self.wrapped_target(uri, proxy_base) is not None:
            return UNWRAP
        if is_proxy_owned(uri, proxy_base):
            # proxy-owned but carries no target, never re-wrapped
            return PASSTHROUGH
        suffix = path_suffix(uri)
        name = path_name(uri)
        for rule in self.rules:
            if suffix in rule.suffixes or name in rule.names:
                return rule.action
        return self.default_action

    def is_playlist_uri(self, uri):
        return path_suffix(uri) in PLAYLIST_TYPES or path_name(uri) in self.playlist_paths

    def is_playlist_type(self, content_type):
        content_type = (content_type or '').lower()
        return any(token in content_type for token in PLAYLIST_MIME_TOKENS)

    def default_content_type(self, uri):
        suffix = path_suffix(uri)
        for table in (SEGMENT_TYPES, KEY_TYPES, PLAYLIST_TYPES):
            if suffix in table:
                return table[suffix]
        return DEFAULT_SEGMENT_TYPE


def default_rules(segment_action=PROXY, playlist_paths=PLAYLIST_PATHS):
    if segment_action not in (PROXY, PASSTHROUGH):
        raise ValueError(f"segment action must be '{PROXY}' or '{PASSTHROUGH}', got {segment_action!r}")
    return (
        # nested playlists are always wrapped
        Rule('playlist', frozenset(PLAYLIST_TYPES), PROXY,
             frozenset(path.lower() for path in playlist_paths)),
        Rule('segment', frozenset(SEGMENT_TYPES), segment_action),
        Rule('key', frozenset(KEY_TYPES), segment_action),
    )


def _check_action(action, name):
    if action not in (PROXY, PASSTHROUGH):
        raise ValueError(f"unsupported action {action!r} for {name} rule")
