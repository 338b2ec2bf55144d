# core/errors.py
"""Error types of the rewriting proxy"""

from typing import Optional


class ProxyError(Exception):
    """Base error. Carries the HTTP status the endpoint answers with."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingParameter(ProxyError):
    status = 400

    def __init__(self, name: str):
        super().__init__(f"Missing {name} query param")
        self.name = name


class ForbiddenTarget(ProxyError):
    status = 403

    def __init__(self, target: str):
        super().__init__("Proxy to localhost is disabled for safety")
        self.target = target


class FetchFailed(ProxyError):
    """
    Upstream fetch failed.

    Either the upstream answered with a non-2xx status (status/reason are set)
    or the network operation itself failed (cause is set). message is the bare
    detail; the endpoint adds its own prefix.
    """

    status = 500

    def __init__(self, url: str, status: Optional[int] = None, reason: Optional[str] = None,
                 cause: Optional[BaseException] = None, detail: Optional[str] = None):
        self.url = url
        self.upstream_status = status
        self.reason = reason
        self.cause = cause

        if detail is None:
            if status is not None:
                detail = f"{status} {reason or ''}".strip()
            elif cause is not None:
                detail = str(cause) or type(cause).__name__
            else:
                detail = "unknown error"

        super().__init__(detail)


class MalformedUrl(ValueError):
    """Relative URL resolution failed. Never leaves the rewriter."""

    def __init__(self, value: str, base_url: str):
        super().__init__(f"Cannot resolve {value!r} against {base_url!r}")
        self.value = value
        self.base_url = base_url
