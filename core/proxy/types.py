# core/proxy/types.py
"""Request-scoped data shapes of a proxied transaction"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import unquote

from core.errors import MissingParameter

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ResourceKind(str, Enum):
    HTML = "html"
    ASSET = "asset"


@dataclass(frozen=True)
class HtmlResource:
    """Decoded HTML page plus the URL it was finally served from"""
    body: str
    effective_base_url: str

    kind = ResourceKind.HTML


@dataclass(frozen=True)
class AssetResource:
    """Opaque upstream body, passed through byte for byte"""
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    kind = ResourceKind.ASSET


def raw_query_param(query_string: str, name: str) -> Optional[str]:
    """
    Returns the still percent-encoded value of a query parameter

    Args:
        query_string: Raw query string without the leading '?'
        name: Parameter name

    Returns:
        Optional[str]: First value of the parameter or None if absent
    """
    for pair in query_string.split("&"):
        key, _, value = pair.partition("=")
        if unquote(key) == name:
            return value
    return None


def decode_target(raw_value: str) -> str:
    """Percent-decodes once; an undecodable value is used as is"""
    try:
        return unquote(raw_value, errors="strict")
    except UnicodeDecodeError:
        return raw_value


@dataclass(frozen=True)
class ProxyRequest:
    """
    Target of one proxied request.

    target: absolute URL the client asked for (decoded once)
    proxy_base: prefix every rewritten link gets, e.g. http://host:7777/proxy?u=
    """
    target: str
    proxy_base: str

    @classmethod
    def from_request(cls, request, param: str = "u") -> "ProxyRequest":
        """
        Builds a ProxyRequest from an inbound aiohttp request

        Raises:
            MissingParameter: If the parameter is absent or empty
        """
        raw_value = raw_query_param(request.rel_url.raw_query_string, param)
        if not raw_value:
            raise MissingParameter(param)

        return cls(
            target=decode_target(raw_value),
            proxy_base=f"{request.scheme}://{request.host}/proxy?{param}=",
        )
