"""
Pytest fixtures and configuration for the rewriting proxy tests.

Markers:
- @pytest.mark.unit: single function/class, no I/O
- @pytest.mark.integration: aiohttp app served by TestServer, upstream mocked
  with httpx.MockTransport (no network access)

Tests without a marker are classified as unit.
"""

from typing import Callable, Dict, List

import httpx
import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"

SAMPLE_PAGE = """<!DOCTYPE html>
<html>
<head>
<title>Sample</title>
<link rel="stylesheet" href="/static/site.css">
</head>
<body>
<a href="page2.html">next</a>
<img src='img/logo.png' alt="logo">
</body>
</html>
"""


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def sample_page() -> str:
    return SAMPLE_PAGE


@pytest.fixture
def upstream_calls() -> List[httpx.Request]:
    """Requests that reached the mocked upstream."""
    return []


@pytest.fixture
def upstream_routes() -> Dict[str, Callable[[httpx.Request], httpx.Response]]:
    """
    Mocked upstream site keyed by absolute URL.

    Unknown URLs answer 404.
    """
    return {
        "https://site.example/": lambda request: httpx.Response(200, html=SAMPLE_PAGE),
        "https://site.example/start": lambda request: httpx.Response(
            302, headers={"Location": "https://site.example/deep/page.html"}
        ),
        "https://site.example/deep/page.html": lambda request: httpx.Response(
            200, html='<html><head></head><body><img src="pic.png"></body></html>'
        ),
        "https://site.example/logo.png": lambda request: httpx.Response(
            200, content=PNG_BYTES, headers={"Content-Type": "image/png"}
        ),
        "https://site.example/blob": lambda request: httpx.Response(200, content=b"\x00\x01\x02"),
        "https://site.example/broken": lambda request: httpx.Response(500),
        "https://site.example/down": _raise_connect_error,
    }


def _raise_connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def upstream_transport(upstream_routes, upstream_calls) -> httpx.MockTransport:
    """httpx transport serving upstream_routes."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        route = upstream_routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        return route(request)

    return httpx.MockTransport(handler)
