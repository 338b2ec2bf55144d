# core/proxy/content_rewriter.py
"""URL rewriting of fetched HTML so every link re-enters the proxy"""

import json
import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import quote, urljoin

from core.errors import MalformedUrl
from core.proxy.html_scanner import TagToken, scan_tags

logger = logging.getLogger(__name__)

# Same unreserved set as JavaScript's encodeURIComponent
_COMPONENT_SAFE = "!~*'()"

_SKIP_PREFIXES = ("#", "mailto:", "tel:", "data:")

# Browsers strip ASCII whitespace around URL attribute values
_HTML_WHITESPACE = " \t\n\r\f"

_REWRITTEN_ATTRIBUTES = ("src", "href")

_REFRESH_CONTENT = re.compile(r'^\s*[^;]+;\s*url\s*=\s*(.+?)\s*$', re.IGNORECASE | re.DOTALL)

_BASE_INJECTION = (
    "<script>try{(function(){var base=document.querySelector('base');"
    "if(!base){base=document.createElement('base');base.href=%s;"
    "document.head&&document.head.insertBefore(base,document.head.firstChild)}})()}"
    "catch(e){}</script>"
)


def encode_component(value: str) -> str:
    """Percent-encodes a full URL for use as a single query value"""
    return quote(value, safe=_COMPONENT_SAFE)


def resolve_url(value: str, base_url: str) -> str:
    """
    Resolves a possibly relative reference against a base URL

    Raises:
        MalformedUrl: If the reference cannot be parsed
    """
    try:
        return urljoin(base_url, value)
    except ValueError as e:
        raise MalformedUrl(value, base_url) from e


def should_skip(value: Optional[str]) -> bool:
    """Empty values, fragments and data/mailto/tel URIs are never touched"""
    return not value or value.startswith(_SKIP_PREFIXES)


class ContentRewriter:
    """Rewrites src/href attributes and meta refresh targets of an HTML page"""

    def __init__(self, base_url: str, proxy_base: str):
        """
        Args:
            base_url: Effective URL of the fetched page (after redirects)
            proxy_base: Prefix of proxied links, e.g. http://localhost:7777/proxy?u=
        """
        self.base_url = base_url
        self.proxy_base = proxy_base

        logger.debug(f"ContentRewriter: {base_url} → {proxy_base}")

    def proxify(self, value: str) -> Optional[str]:
        """
        Maps an attribute value to its rewritten form

        Args:
            value: Raw attribute value

        Returns:
            Optional[str]: New value, or None when the value stays as it is
        """
        if value:
            value = value.strip(_HTML_WHITESPACE)

        if should_skip(value):
            return None

        try:
            resolved = resolve_url(value, self.base_url)
        except MalformedUrl as e:
            logger.debug(f"Leaving unresolvable URL untouched: {e}")
            return None

        # Already routed through us, only made absolute
        if resolved.startswith(self.proxy_base):
            return resolved

        return self.proxy_base + encode_component(resolved)

    def rewrite(self, html: str) -> str:
        """
        Rewrites the page

        Args:
            html: HTML text of the page

        Returns:
            str: HTML with proxied links and the <base> fallback script
        """
        edits: List[Tuple[int, int, str]] = []
        injected = False

        for token in scan_tags(html):
            if token.kind == "end":
                if token.name == "head" and not injected:
                    edits.append((token.start, token.start, self.base_injection()))
                    injected = True
                continue

            if token.name == "meta" and self._is_refresh(token):
                replacement = self._rewrite_meta_refresh(token)
                if replacement is not None:
                    edits.append((token.start, token.end, replacement))
                continue

            edits.extend(self._rewrite_attributes(token))

        if not injected:
            logger.debug(f"No </head> in {self.base_url}, <base> fallback skipped")

        return self._apply(html, edits)

    def _rewrite_attributes(self, token: TagToken) -> List[Tuple[int, int, str]]:
        edits = []
        for attribute in token.attributes:
            if attribute.name not in _REWRITTEN_ATTRIBUTES:
                continue
            new_value = self.proxify(attribute.value)
            if new_value is not None:
                edits.append((attribute.start, attribute.end, new_value))
        return edits

    @staticmethod
    def _is_refresh(token: TagToken) -> bool:
        http_equiv = token.get("http-equiv")
        return bool(http_equiv and http_equiv.value and http_equiv.value.strip().lower() == "refresh")

    def _rewrite_meta_refresh(self, token: TagToken) -> Optional[str]:
        content = token.get("content")
        if not content or not content.value:
            return None

        match = _REFRESH_CONTENT.match(content.value)
        if not match:
            return None

        target = match.group(1).strip("'\"")
        proxied = self.proxify(target)
        if proxied is None:
            return None

        return f'<meta http-equiv="refresh" content="0; url={proxied}">'

    def base_injection(self) -> str:
        """Script creating <base href=page URL> when the page has none"""
        literal = json.dumps(self.base_url).replace("</", "<\\/")
        return _BASE_INJECTION % literal

    @staticmethod
    def _apply(html: str, edits: List[Tuple[int, int, str]]) -> str:
        if not edits:
            return html

        parts = []
        cursor = 0
        for start, end, replacement in sorted(edits, key=lambda edit: (edit[0], edit[1])):
            parts.append(html[cursor:start])
            parts.append(replacement)
            cursor = end
        parts.append(html[cursor:])
        return "".join(parts)


def rewrite_html(html: str, base_url: str, proxy_base: str) -> str:
    """Shortcut for ContentRewriter(base_url, proxy_base).rewrite(html)"""
    return ContentRewriter(base_url, proxy_base).rewrite(html)
