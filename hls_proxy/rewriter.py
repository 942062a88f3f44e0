"""Line-by-line rewriting of HLS playlists so every reference routes back through the proxy."""
import logging
import re
from collections import namedtuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from .guard import is_absolute, unwrap, upgrade_scheme, wrap
from .policy import PROXY, UNWRAP

logger = logging.getLogger(__name__)

DIRECTIVE_MARKER = '#'
BYTE_ORDER_MARK = '\ufeff'

BLANK = 'blank'
DIRECTIVE = 'directive'
URI_REFERENCE = 'uri'

_LINE_BREAK = re.compile(r'(\r\n|\r|\n)')
_TAG_URI = re.compile(r'(URI=")([^"]*)(")')


class PlaylistLine(namedtuple('PlaylistLine', 'raw category resolved rewritten')):
    __slots__ = ()

    @property
    def text(self):
        return self.raw if self.rewritten is None else self.rewritten


def base_directory(target):
    """``target`` truncated after the last ``/`` of its path, query and fragment dropped."""
    parts = urlsplit(target)
    directory = parts.path[:parts.path.rfind('/') + 1] or '/'
    return urlunsplit((parts.scheme, parts.netloc, directory, '', ''))


def resolve_reference(reference, base):
    try:
        resolved = urljoin(base, reference)
    except ValueError:
        return None
    resolved = upgrade_scheme(resolved)
    if not is_absolute(resolved):
        return None
    return resolved


class PlaylistRewriter:

    def __init__(self, target, proxy_base, policy):
        self.target = target
        self.base = base_directory(target)
        self.proxy_base = proxy_base
        self.policy = policy

    def rewrite_uri(self, reference):
        """Return ``(resolved, rewritten)`` for one reference, both None when it cannot be resolved."""
        resolved = resolve_reference(reference, self.base)
        if resolved is None:
            return None, None

        action = self.policy.action_for(resolved, self.proxy_base)
        if action == UNWRAP:
            resolved = unwrap(resolved, self.proxy_base,
                              max_depth=self.policy.max_unwrap_depth,
                              foreign=self.policy.unwrap_foreign)
            action = self.policy.action_for(resolved, self.proxy_base)

        if action == PROXY:
            return resolved, wrap(resolved, self.proxy_base)
        return resolved, resolved

    def _rewrite_tag(self, match):
        _, rewritten = self.rewrite_uri(match.group(2))
        if rewritten is None:
            return match.group(0)
        return f"{match.group(1)}{rewritten}{match.group(3)}"

    def classify(self, raw):
        stripped = raw.strip().lstrip(BYTE_ORDER_MARK)
        if not stripped:
            return PlaylistLine(raw, BLANK, None, None)

        if stripped.startswith(DIRECTIVE_MARKER):
            if self.policy.rewrite_tag_uris and 'URI="' in raw:
                return PlaylistLine(raw, DIRECTIVE, None, _TAG_URI.sub(self._rewrite_tag, raw))
            return PlaylistLine(raw, DIRECTIVE, None, None)

        resolved, rewritten = self.rewrite_uri(stripped)
        if rewritten is None:
            logger.debug("Leaving unresolvable playlist line as is: %r", raw)
        return PlaylistLine(raw, URI_REFERENCE, resolved, rewritten)

    def rewrite(self, text):
        # split() with a capture group alternates content and line terminators
        pieces = _LINE_BREAK.split(text)
        out = []
        for index, piece in enumerate(pieces):
            if index % 2:
                out.append(piece)
            else:
                out.append(self.classify(piece).text)
        return ''.join(out)


def rewrite_playlist(text, target, proxy_base, policy):
    return PlaylistRewriter(target, proxy_base, policy).rewrite(text)
