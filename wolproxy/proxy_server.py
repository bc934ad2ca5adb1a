"""HTTP proxy service wiring all components together."""

import asyncio
import logging
import signal
import time
from typing import Optional, Dict, Any

from aiohttp import web, web_runner

from .backend_state import BackendStateStore
from .config_manager import Config
from .forwarder import Forwarder
from .health_prober import HealthProber
from .router import RequestRouter
from .wol_sender import WoLSender


logger = logging.getLogger(__name__)


class ProxyServer:
    """Owns the component graph and the aiohttp listener for one configuration."""

    def __init__(self, config: Config):
        self.config = config

        # Core components
        self.state_store = BackendStateStore(config.backends.keys())
        self.prober = HealthProber()
        self.wol_sender = WoLSender()
        self.forwarder = Forwarder(config.proxy.destination)
        self.router = RequestRouter(
            config, self.state_store, self.prober, self.wol_sender, self.forwarder
        )

        self.app = self.create_app()
        self.runner: Optional[web_runner.AppRunner] = None

        # Control
        self.is_running = False
        self.shutdown_event = asyncio.Event()
        self.start_time: Optional[float] = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application routing every request through the router."""
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.router.handle)
        return app

    async def start(self) -> bool:
        """Bind the listener and start serving."""
        if self.is_running:
            logger.warning("Proxy is already running")
            return False

        host, port = self.config.proxy.listen_address
        try:
            self._setup_signal_handlers()

            self.runner = web_runner.AppRunner(self.app, access_log=None)
            await self.runner.setup()

            site = web_runner.TCPSite(self.runner, host, port)
            await site.start()

        except OSError as e:
            logger.error(f"Failed to bind {host}:{port}: {e}")
            await self.shutdown()
            return False

        self.is_running = True
        self.start_time = time.time()
        logger.info(f"Proxy listening on {self.config.proxy.listen}")
        return True

    async def run_forever(self) -> None:
        """Serve until a shutdown signal arrives."""
        try:
            logger.info("WoL HTTP Proxy running...")
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop the listener and close client sessions."""
        logger.info("Shutting down WoL HTTP Proxy...")
        self.is_running = False

        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

        await self.forwarder.close()
        await self.prober.close()

        logger.info("WoL HTTP Proxy shutdown complete")

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signame):
            logger.info(f"Received {signame}, initiating shutdown...")
            self.shutdown_event.set()

        for signame in ['SIGTERM', 'SIGINT']:
            if hasattr(signal, signame):
                try:
                    loop.add_signal_handler(getattr(signal, signame), signal_handler, signame)
                except NotImplementedError:
                    # No add_signal_handler on Windows event loops
                    signal.signal(getattr(signal, signame), lambda s, f, n=signame: signal_handler(n))

    def get_status(self) -> Dict[str, Any]:
        """Get current proxy status."""
        return {
            "is_running": self.is_running,
            "listen": self.config.proxy.listen,
            "uptime_seconds": time.time() - self.start_time if self.start_time else None,
            "statistics": self.router.get_stats()
        }

    def get_config_info(self) -> Dict[str, Any]:
        """Get configuration information."""
        return {
            "destination": self.config.proxy.destination,
            "main_host_keyword": self.config.proxy.main_host_keyword,
            "skip_check_timeout": self.config.proxy.skip_check_timeout,
            "backends": {
                name: {
                    "destination": backend.destination,
                    "mac_address": backend.mac_address,
                    "broadcast_ip": backend.broadcast_ip,
                    "wol_port": backend.wol_port,
                    "wol_enable": backend.wol_enable,
                    "ignored_hosts": sorted(backend.ignored_hosts),
                    "ignored_paths": sorted(backend.ignored_paths)
                }
                for name, backend in self.config.backends.items()
            }
        }
