from urllib.parse import quote, unquote

import pytest

from hls_proxy.errors import RecursionLimitExceededError
from hls_proxy.guard import wrap
from hls_proxy.policy import RewritePolicy
from hls_proxy.rewriter import (
    BLANK,
    DIRECTIVE,
    URI_REFERENCE,
    PlaylistRewriter,
    base_directory,
    rewrite_playlist,
)

PROXY_BASE = 'https://proxy.test/'
TARGET = 'https://origin.test/chan/index.m3u8'

MEDIA_PLAYLIST = (
    '#EXTM3U\n'
    '#EXTINF:10,\n'
    'seg1.ts\n'
    '#EXTINF:10,\n'
    'https://other.cdn/seg2.ts\n'
)

MASTER_PLAYLIST = (
    '#EXTM3U\n'
    '#EXT-X-VERSION:3\n'
    '#EXT-X-KEY:METHOD=AES-128,URI="keys/key1.key",IV=0xabcdef\n'
    '#EXT-X-STREAM-INF:BANDWIDTH=1280000\n'
    'variant/playlist.m3u8\n'
    '#EXT-X-STREAM-INF:BANDWIDTH=2560000\n'
    'http://origin.test/hd/playlist.m3u8?token=abc&exp=1\n'
)


def inner(line):
    assert line.startswith(PROXY_BASE + '?url=')
    return unquote(line[len(PROXY_BASE + '?url='):])


def uri_lines(text):
    return [line for line in text.splitlines() if line and not line.startswith('#')]


def test_media_playlist_scenario(policy):
    assert rewrite_playlist(MEDIA_PLAYLIST, TARGET, PROXY_BASE, policy) == (
        '#EXTM3U\n'
        '#EXTINF:10,\n'
        'https://proxy.test/?url=https%3A%2F%2Forigin.test%2Fchan%2Fseg1.ts\n'
        '#EXTINF:10,\n'
        'https://proxy.test/?url=https%3A%2F%2Fother.cdn%2Fseg2.ts\n'
    )


def test_relative_reference_resolves_against_playlist_directory(policy):
    out = rewrite_playlist('seg/a.ts', 'https://cdn.example/live/index.m3u8', PROXY_BASE, policy)
    assert inner(out) == 'https://cdn.example/live/seg/a.ts'


def test_root_relative_and_parent_references(policy):
    out = rewrite_playlist('/abs/a.ts\n../up/b.ts', TARGET, PROXY_BASE, policy)
    assert [inner(line) for line in uri_lines(out)] == [
        'https://origin.test/abs/a.ts',
        'https://origin.test/up/b.ts',
    ]


def test_base_directory_drops_file_and_query():
    assert base_directory('https://cdn.example/live/index.m3u8?t=a/b#x') == 'https://cdn.example/live/'
    assert base_directory('https://cdn.example') == 'https://cdn.example/'


def test_directives_are_never_altered(policy):
    out = rewrite_playlist(MASTER_PLAYLIST, TARGET, PROXY_BASE, policy)
    original = [line for line in MASTER_PLAYLIST.splitlines() if line.startswith('#')]
    rewritten = [line for line in out.splitlines() if line.startswith('#')]
    assert rewritten == original


def test_nested_playlists_wrapped_and_scheme_upgraded(policy):
    out = rewrite_playlist(MASTER_PLAYLIST, TARGET, PROXY_BASE, policy)
    assert [inner(line) for line in uri_lines(out)] == [
        'https://origin.test/chan/variant/playlist.m3u8',
        'https://origin.test/hd/playlist.m3u8?token=abc&exp=1',
    ]


def test_inner_query_string_survives(policy):
    out = rewrite_playlist('seg1.ts?token=a&b=c', TARGET, PROXY_BASE, policy)
    assert out == PROXY_BASE + '?url=' + quote('https://origin.test/chan/seg1.ts?token=a&b=c', safe='')
    assert '%3Ftoken%3Da%26b%3Dc' in out


def test_rewriting_is_idempotent(policy):
    for playlist in (MEDIA_PLAYLIST, MASTER_PLAYLIST):
        once = rewrite_playlist(playlist, TARGET, PROXY_BASE, policy)
        twice = rewrite_playlist(once, TARGET, PROXY_BASE, policy)
        assert twice == once


def test_idempotent_with_passthrough_segments():
    policy = RewritePolicy.from_config({'PROXY_SEGMENT_ACTION': 'passthrough'})
    once = rewrite_playlist(MEDIA_PLAYLIST, TARGET, PROXY_BASE, policy)
    assert rewrite_playlist(once, TARGET, PROXY_BASE, policy) == once


def test_line_terminators_are_preserved(policy):
    out = rewrite_playlist('#EXTM3U\r\n#EXTINF:10,\r\nseg1.ts\r\n\r\n', TARGET, PROXY_BASE, policy)
    assert out == (
        '#EXTM3U\r\n#EXTINF:10,\r\n'
        + wrap('https://origin.test/chan/seg1.ts', PROXY_BASE)
        + '\r\n\r\n'
    )


def test_missing_trailing_newline_is_kept(policy):
    out = rewrite_playlist('#EXTM3U\nseg1.ts', TARGET, PROXY_BASE, policy)
    assert not out.endswith('\n')


def test_already_wrapped_reference_is_unwrapped_not_rewrapped(policy):
    segment = 'https://origin.test/chan/seg1.ts'
    twice_wrapped = wrap(wrap(segment, PROXY_BASE), PROXY_BASE)
    out = rewrite_playlist(twice_wrapped, TARGET, PROXY_BASE, policy)
    assert out == wrap(segment, PROXY_BASE)


def test_doubly_encoded_wrapper_is_unwrapped(policy):
    segment = 'https://origin.test/chan/seg1.ts'
    line = PROXY_BASE + '?url=' + quote(quote(segment, safe=''), safe='')
    assert rewrite_playlist(line, TARGET, PROXY_BASE, policy) == wrap(segment, PROXY_BASE)


def test_foreign_proxy_wrapper_is_rewrapped_through_us(policy):
    segment = 'https://origin.test/chan/seg1.ts'
    line = wrap(segment, 'https://some-worker.example.dev/')
    assert rewrite_playlist(line, TARGET, PROXY_BASE, policy) == wrap(segment, PROXY_BASE)


def test_self_referential_chain_beyond_bound_raises(policy):
    line = 'https://origin.test/chan/index.m3u8'
    for _ in range(7):
        line = wrap(line, PROXY_BASE)
    with pytest.raises(RecursionLimitExceededError):
        rewrite_playlist('#EXTM3U\n' + line + '\n', TARGET, PROXY_BASE, policy)


def test_proxy_owned_uri_without_target_is_left_alone(policy):
    out = rewrite_playlist('https://proxy.test/health', TARGET, PROXY_BASE, policy)
    assert out == 'https://proxy.test/health'


def test_segment_passthrough_policy():
    policy = RewritePolicy.from_config({'PROXY_SEGMENT_ACTION': 'passthrough'})
    out = rewrite_playlist(MEDIA_PLAYLIST.replace('https://other', 'http://other'), TARGET, PROXY_BASE, policy)
    assert uri_lines(out) == [
        'https://origin.test/chan/seg1.ts',
        'https://other.cdn/seg2.ts',
    ]


def test_unknown_suffix_defaults_to_passthrough(policy):
    out = rewrite_playlist('http://iptv.example/live/channel/42', TARGET, PROXY_BASE, policy)
    assert out == 'https://iptv.example/live/channel/42'


def test_default_action_can_wrap_everything():
    policy = RewritePolicy.from_config({'PROXY_DEFAULT_ACTION': 'proxy'})
    out = rewrite_playlist('http://iptv.example/live/channel/42', TARGET, PROXY_BASE, policy)
    assert inner(out) == 'https://iptv.example/live/channel/42'


def test_unresolvable_line_fails_open(policy):
    playlist = '#EXTM3U\nhttp://[broken/seg.ts\nmailto:someone@example.com\nseg1.ts\n'
    lines = rewrite_playlist(playlist, TARGET, PROXY_BASE, policy).splitlines()
    assert lines[1] == 'http://[broken/seg.ts'
    assert lines[2] == 'mailto:someone@example.com'
    assert inner(lines[3]) == 'https://origin.test/chan/seg1.ts'


def test_tag_uris_rewritten_when_enabled():
    policy = RewritePolicy.from_config({'PROXY_REWRITE_TAG_URIS': True})
    out = rewrite_playlist(MASTER_PLAYLIST, TARGET, PROXY_BASE, policy)
    key_line = next(line for line in out.splitlines() if line.startswith('#EXT-X-KEY'))
    key_uri = key_line.split('URI="', 1)[1].split('"', 1)[0]
    assert inner(key_uri) == 'https://origin.test/chan/keys/key1.key'
    assert key_line.endswith('",IV=0xabcdef')
    assert rewrite_playlist(out, TARGET, PROXY_BASE, policy) == out


def test_rewrite_respects_proxy_mount_path(policy):
    out = rewrite_playlist('seg1.ts', TARGET, 'https://proxy.test/proxy', policy)
    assert out.startswith('https://proxy.test/proxy?url=https%3A%2F%2Forigin.test')


def test_classify_lines(policy):
    rewriter = PlaylistRewriter(TARGET, PROXY_BASE, policy)
    assert rewriter.classify('   ').category == BLANK
    assert rewriter.classify('#EXTINF:10,').category == DIRECTIVE
    line = rewriter.classify(' seg1.ts ')
    assert line.category == URI_REFERENCE
    assert line.raw == ' seg1.ts '
    assert line.resolved == 'https://origin.test/chan/seg1.ts'
    assert line.text == wrap('https://origin.test/chan/seg1.ts', PROXY_BASE)


def test_byte_order_mark_line_stays_a_directive(policy):
    out = rewrite_playlist('\ufeff#EXTM3U\nseg1.ts\n', TARGET, PROXY_BASE, policy)
    assert out.startswith('\ufeff#EXTM3U\n')
    assert inner(out.splitlines()[1]) == 'https://origin.test/chan/seg1.ts'


def test_undecodable_bytes_in_references_round_trip(policy):
    text = b'#EXTINF:-1,Caf\xe9\ncaf\xe9.ts\nhttp://iptv.example/caf\xe9\n'.decode('utf-8', 'surrogateescape')
    out = rewrite_playlist(text, TARGET, PROXY_BASE, policy)
    lines = out.encode('utf-8', 'surrogateescape').split(b'\n')
    assert lines[0] == b'#EXTINF:-1,Caf\xe9'
    assert lines[1] == b'https://proxy.test/?url=https%3A%2F%2Forigin.test%2Fchan%2Fcaf%E9.ts'
    assert lines[2] == b'https://iptv.example/caf\xe9'
    assert rewrite_playlist(out, TARGET, PROXY_BASE, policy) == out
