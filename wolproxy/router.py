"""Per-request orchestration: host gate, backend sweep, wake, forward."""

import logging
import time
from typing import Any, Dict

from aiohttp import web

from .backend_state import BackendStateStore
from .config_manager import Config
from .exclusion import permits_wake
from .forwarder import Forwarder, GatewayError
from .health_prober import HealthProber
from .wol_sender import WoLSender, WakeError


logger = logging.getLogger(__name__)

HOST_MISMATCH_BODY = "Host does not match main backend target"
DESTINATION_UNAVAILABLE_BODY = "Destination backend unavailable"
BAD_GATEWAY_BODY = "backend unavailable"


class RequestRouter:
    """Decides, for every inbound request, which backends to wake and whether to forward.

    The router owns no liveness state of its own: the ``state_store`` passed in
    is the only thing shared between concurrent requests.
    """

    def __init__(self, config: Config, state_store: BackendStateStore,
                 prober: HealthProber, wol_sender: WoLSender, forwarder: Forwarder):
        self.config = config
        self.state_store = state_store
        self.prober = prober
        self.wol_sender = wol_sender
        self.forwarder = forwarder

        self.cache_window = config.proxy.skip_check_timeout
        self.host_keyword = config.proxy.main_host_keyword
        self.destination = config.proxy.destination

        # Statistics
        self.stats = {
            "start_time": time.time(),
            "requests": 0,
            "rejected_hosts": 0,
            "probes": 0,
            "cache_hits": 0,
            "wake_attempts": 0,
            "wake_failures": 0,
            "forwarded": 0,
            "destination_unavailable": 0,
            "gateway_errors": 0,
            "last_wake_time": None
        }

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """aiohttp handler for every host, path and method."""
        host = request.host
        path = request.path
        self.stats["requests"] += 1
        logger.info(f"[{request.remote}] Request host={host} path={path}")

        if self.host_keyword not in host:
            self.stats["rejected_hosts"] += 1
            return web.Response(text=HOST_MISMATCH_BODY)

        await self.sweep_backends(host, path)

        # Fresh check, independent of the backend cache
        self.stats["probes"] += 1
        if not await self.prober.probe(self.destination):
            self.stats["destination_unavailable"] += 1
            logger.warning(f"Destination {self.destination} is down, rejecting request")
            return web.Response(status=503, text=DESTINATION_UNAVAILABLE_BODY)

        try:
            response = await self.forwarder.forward(request)
        except GatewayError as e:
            self.stats["gateway_errors"] += 1
            logger.error(f"proxy error: {e}")
            return web.Response(status=502, text=BAD_GATEWAY_BODY)

        self.stats["forwarded"] += 1
        return response

    async def sweep_backends(self, host: str, path: str) -> None:
        """Check every configured backend and wake those that are down."""
        for name, backend in self.config.backends.items():
            if await self.check_backend(name):
                continue

            if not permits_wake(backend, host, path):
                logger.debug(f"Backend {name} down, wake not permitted for host={host} path={path}")
                continue

            logger.info(f"Backend {name} down -> sending WoL")
            self.stats["wake_attempts"] += 1
            self.stats["last_wake_time"] = time.time()
            try:
                await self.wol_sender.send_magic_packet(
                    backend.mac_address, backend.broadcast_ip, backend.wol_port
                )
            except WakeError as e:
                self.stats["wake_failures"] += 1
                logger.error(f"WOL {name} failed: {e}")

    async def check_backend(self, name: str) -> bool:
        """Return True if ``name`` is up, trusting a recent confirmation over a new probe."""
        if await self.state_store.is_recently_online(name, self.cache_window):
            self.stats["cache_hits"] += 1
            return True

        self.stats["probes"] += 1
        if await self.prober.probe(self.config.backends[name].destination):
            await self.state_store.mark_online(name)
            return True

        return False

    def get_stats(self) -> Dict[str, Any]:
        """Get router statistics and backend liveness ages."""
        return {
            **self.stats,
            "uptime_seconds": time.time() - self.stats["start_time"],
            "backends": {
                name: {"seconds_since_online": age}
                for name, age in self.state_store.snapshot().items()
            }
        }
