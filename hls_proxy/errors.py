class ProxyError(Exception):
    """Base class for every failure the proxy turns into an HTTP response."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message


class MissingTargetError(ProxyError):
    status_code = 400


class MalformedTargetError(ProxyError):
    status_code = 400


class RecursionLimitExceededError(ProxyError):
    status_code = 400


class UpstreamUnreachableError(ProxyError):
    # 502 for DNS / refused connections, 504 for timeouts
    status_code = 502


class UpstreamError(ProxyError):
    """The origin answered, but with a non-2xx status for a playlist target."""

    def __init__(self, status_code, reason, url):
        status = f"{status_code} {reason}" if reason else str(status_code)
        super().__init__(f"Failed to fetch playlist ({status}): {url}", status_code=status_code)
        self.reason = reason
        self.url = url
