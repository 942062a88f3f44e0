def is_playlist_target(target, policy):
    return policy.is_playlist_uri(target)


def is_playlist(content_type, policy, *uris):
    """True when the response should be parsed and rewritten as a playlist.

    Either the declared content type carries a playlist MIME token or one of
    ``uris`` (the requested target, the post-redirect URL) has a playlist
    suffix. The suffix check matters because origins often mislabel
    manifests as text/plain or octet-stream.
    """
    if policy.is_playlist_type(content_type):
        return True
    return any(policy.is_playlist_uri(uri) for uri in uris if uri)
