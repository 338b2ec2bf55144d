# proxy_manager.py
import asyncio
import logging
import threading
import time
from typing import Optional

from aiohttp import web

from core.config_manager import ConfigManager, get_config
from core.errors import FetchFailed, ForbiddenTarget, ProxyError
from core.proxy.content_rewriter import ContentRewriter
from core.proxy.fetcher import FETCH_TIMEOUT, MAX_CONNECTIONS, USER_AGENT, Fetcher
from core.proxy.types import ProxyRequest, ResourceKind
from utils.port_utils import check_port_availability, get_process_using_port

logger = logging.getLogger(__name__)

# Substring deny-list; IPv6 loopback, DNS rebinding and private ranges are not covered
DENIED_TARGETS = ('localhost', '127.0.0.1')

FETCHER_KEY = web.AppKey('fetcher', Fetcher)


def is_forbidden_target(target: str) -> bool:
    """True if the target hits the loopback deny-list"""
    return any(denied in target for denied in DENIED_TARGETS)


class RewritingProxy:
    """Request handlers of /proxy, /asset and /_health"""

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher

        self.stats = {
            'total_requests': 0,
            'html_responses': 0,
            'asset_responses': 0,
            'errors': 0
        }

    async def handle_proxy(self, request: web.Request) -> web.Response:
        """GET /proxy?u=<encoded url>: rewritten HTML or raw asset"""
        self.stats['total_requests'] += 1

        try:
            proxy_request = ProxyRequest.from_request(request)

            if is_forbidden_target(proxy_request.target):
                raise ForbiddenTarget(proxy_request.target)

            resource = await self.fetcher.fetch(proxy_request.target)

        except FetchFailed as e:
            return self._fetch_failed(e, "Proxy fetch failed")
        except ProxyError as e:
            return self._rejected(e)

        if resource.kind is ResourceKind.ASSET:
            self.stats['asset_responses'] += 1
            return web.Response(body=resource.content, headers={'Content-Type': resource.content_type})

        rewriter = ContentRewriter(
            base_url=resource.effective_base_url or proxy_request.target,
            proxy_base=proxy_request.proxy_base,
        )
        self.stats['html_responses'] += 1
        return web.Response(
            text=rewriter.rewrite(resource.body),
            content_type='text/html',
            charset='utf-8',
        )

    async def handle_asset(self, request: web.Request) -> web.Response:
        """GET /asset?u=<encoded url>: bytes verbatim, never rewritten"""
        self.stats['total_requests'] += 1

        try:
            proxy_request = ProxyRequest.from_request(request)
            asset = await self.fetcher.fetch_asset(proxy_request.target)
        except FetchFailed as e:
            return self._fetch_failed(e, "Asset fetch failed")
        except ProxyError as e:
            return self._rejected(e)

        self.stats['asset_responses'] += 1
        return web.Response(body=asset.content, headers={'Content-Type': asset.content_type})

    async def handle_health(self, request: web.Request) -> web.Response:
        """GET /_health"""
        return web.json_response({'ok': True, 'ts': int(time.time() * 1000)})

    def _rejected(self, error: ProxyError) -> web.Response:
        logger.warning(f"⚠️ Rejected request ({error.status}): {error.message}")
        return web.Response(text=error.message, status=error.status)

    def _fetch_failed(self, error: FetchFailed, prefix: str) -> web.Response:
        self.stats['errors'] += 1
        if error.cause is not None:
            logger.error(f"❌ {prefix} for {error.url}: {error.cause!r}")
        else:
            logger.error(f"❌ {prefix} for {error.url}: upstream {error.upstream_status} {error.reason}")

        return web.Response(text=f"{prefix}: {error.message}", status=error.status)

    def get_full_stats(self):
        """Returns request counters"""
        return {
            'requests': self.stats['total_requests'],
            'html': self.stats['html_responses'],
            'assets': self.stats['asset_responses'],
            'errors': self.stats['errors']
        }


def create_app(fetcher: Optional[Fetcher] = None, config: Optional[ConfigManager] = None) -> web.Application:
    """
    Builds the aiohttp application

    Args:
        fetcher: Fetcher to use; built from the fetch config when omitted
        config: Configuration source, defaults to the global one

    Returns:
        web.Application: App with /proxy, /asset and /_health
    """
    if fetcher is None:
        fetch_config = (config or get_config()).get_fetch_config()
        fetcher = Fetcher(
            timeout=fetch_config.get('timeout', FETCH_TIMEOUT),
            user_agent=fetch_config.get('user_agent', USER_AGENT),
            max_connections=fetch_config.get('max_connections', MAX_CONNECTIONS),
        )

    proxy = RewritingProxy(fetcher)

    app = web.Application()
    app[FETCHER_KEY] = fetcher
    app.router.add_get('/proxy', proxy.handle_proxy)
    app.router.add_get('/asset', proxy.handle_asset)
    app.router.add_get('/_health', proxy.handle_health)

    async def on_startup(app):
        await app[FETCHER_KEY].initialize()

    async def on_cleanup(app):
        await app[FETCHER_KEY].cleanup()
        stats = proxy.get_full_stats()
        logger.info(
            f"📊 Session statistics:\n"
            f"   Total requests: {stats['requests']}\n"
            f"   HTML pages: {stats['html']}\n"
            f"   Assets: {stats['assets']}\n"
            f"   Errors: {stats['errors']}"
        )

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


class ProxyManager:
    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or get_config()
        self.is_running = False
        self.host = self.config.get('server.host', '0.0.0.0')
        self.local_port = self.config.get('server.port', 7777)
        self.runner = None
        self.site = None
        self.loop = None
        self.thread = None
        self.stop_timeout = 10.0

        self.last_error = None

    def start(self) -> bool:
        """
        Starts the proxy in a background event loop

        Returns:
            bool: True if the server is listening
        """
        if self.is_running:
            logger.warning("⚠️ Proxy already running")
            return False

        port_available, port_message = check_port_availability(self.local_port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")
            process_info = get_process_using_port(self.local_port)
            if process_info:
                logger.info(
                    f"📌 Process on port {self.local_port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}\n"
                    f"   User: {process_info.get('username', 'N/A')}"
                )
            self.last_error = port_message
            return False

        self.thread = threading.Thread(target=self._run_server, daemon=True)
        self.thread.start()

        # Wait up to 5 seconds for the site to come up
        for _ in range(50):
            if self.is_running or self.last_error:
                break
            time.sleep(0.1)

        if not self.is_running:
            logger.error("❌ Proxy did not start in time")
            return False

        logger.info(f"✅ SUB Recoded proxy listening on http://{self.host}:{self.local_port}")
        logger.info("   Usage: /proxy?u=<encodedUrl>")
        return True

    def _run_server(self):
        """Runs the server in its own event loop"""
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._start_server())
            if self.is_running:
                self.loop.run_forever()
        finally:
            self.loop.close()

    async def _start_server(self):
        try:
            app = create_app(config=self.config)

            self.runner = web.AppRunner(app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host=self.host, port=self.local_port)
            await self.site.start()
            self.is_running = True
        except OSError as e:
            logger.error(f"❌ Failed to start server: {e}")
            self.last_error = str(e)
            if self.runner:
                await self.runner.cleanup()

    def stop(self):
        """Stops the server and its event loop"""
        if not self.is_running:
            logger.warning("⚠️ Proxy not running")
            return

        logger.info("🛑 Stopping proxy...")
        self.is_running = False

        if self.loop and self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._stop_server(), self.loop)
            try:
                future.result(timeout=self.stop_timeout)
            except Exception as e:
                future.cancel()
                logger.error(f"❌ Error stopping proxy: {e!r}")
                logger.exception("Full traceback:")
            finally:
                self.loop.call_soon_threadsafe(self.loop.stop)

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=5)

        logger.info("✅ Proxy stopped")

    async def _stop_server(self):
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

    def get_status(self):
        """Returns the proxy status"""
        return {
            'running': self.is_running,
            'host': self.host,
            'port': self.local_port,
            'proxy_base': f"http://{self.host}:{self.local_port}/proxy?u=",
            'last_error': self.last_error,
        }
