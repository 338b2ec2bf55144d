# core/proxy/__init__.py
"""
Proxy modules package.

fetcher: upstream HTTP fetching and HTML/asset classification
html_scanner: lazy tag token stream over raw markup
content_rewriter: URL rewriting of fetched HTML
"""

from core.proxy.content_rewriter import ContentRewriter, rewrite_html
from core.proxy.fetcher import Fetcher
from core.proxy.types import AssetResource, HtmlResource, ProxyRequest, ResourceKind

__all__ = [
    "AssetResource",
    "ContentRewriter",
    "Fetcher",
    "HtmlResource",
    "ProxyRequest",
    "ResourceKind",
    "rewrite_html",
]
