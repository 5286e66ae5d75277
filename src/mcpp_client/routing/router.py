"""Resolves server keys to transports."""

import logging
from collections.abc import Callable, Mapping

from ..config import ServerConfig, Settings
from ..errors import NoServersConfigured
from ..transport.client import McppTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, ServerConfig], McppTransport]


class ServerRouter:
    """Owns one transport per configured server key.

    Transports are created lazily on first use and cached until invalidated.
    An omitted or unknown server key falls back to the lexicographically
    first configured key.

    Attributes:
        settings: Application settings used for default transports
    """

    def __init__(
        self,
        servers: Mapping[str, ServerConfig],
        settings: Settings | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize router.

        Args:
            servers: Server configuration keyed by server key
            settings: Settings providing transport timeouts and retries
            transport_factory: Optional factory replacing McppTransport construction
        """
        self.settings = settings or Settings()
        self._servers: dict[str, ServerConfig] = dict(servers)
        self._transport_factory = transport_factory or self._default_factory
        self._clients: dict[str, McppTransport] = {}

    @property
    def server_keys(self) -> list[str]:
        return sorted(self._servers)

    def has_server(self, server_key: str | None) -> bool:
        return server_key is not None and server_key in self._servers

    def resolve_key(self, server_key: str | None = None) -> str:
        """Choose the server key a request goes to.

        Raises:
            NoServersConfigured: If no server is configured
        """
        if not self._servers:
            raise NoServersConfigured("No MCPP servers configured. Please check your settings.")
        if self.has_server(server_key):
            return server_key  # type: ignore[return-value]
        fallback = self.server_keys[0]
        if server_key is not None:
            logger.warning(f"[Router] Unknown server {server_key!r}, falling back to {fallback!r}")
        return fallback

    def client_for(self, server_key: str | None = None) -> McppTransport:
        """Get the cached transport for a server, creating it on first use.

        Raises:
            NoServersConfigured: If no server is configured
        """
        chosen = self.resolve_key(server_key)
        client = self._clients.get(chosen)
        if client is None:
            client = self._transport_factory(chosen, self._servers[chosen])
            self._clients[chosen] = client
            logger.info(f"[Router] Created transport for {chosen} at {self._servers[chosen].url}")
        return client

    def clear_data_caches(self) -> None:
        """Drop fetched tool data held by every cached transport."""
        for client in self._clients.values():
            client.clear_cache()

    async def invalidate(self, server_key: str) -> None:
        """Drop and close the cached transport of one server."""
        client = self._clients.pop(server_key, None)
        if client is not None:
            await self._close(client)
            logger.info(f"[Router] Invalidated transport for {server_key}")

    async def invalidate_all(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await self._close(client)
        if clients:
            logger.info(f"[Router] Invalidated {len(clients)} transports")

    async def reconfigure(self, servers: Mapping[str, ServerConfig]) -> None:
        """Replace the server configuration and drop every cached transport."""
        await self.invalidate_all()
        self._servers = dict(servers)
        logger.info(f"[Router] Reconfigured with servers {self.server_keys}")

    async def aclose(self) -> None:
        await self.invalidate_all()

    def _default_factory(self, server_key: str, config: ServerConfig) -> McppTransport:
        return McppTransport(
            server_key,
            config.url,
            timeout=self.settings.request_timeout_seconds,
            retries=self.settings.transport_retries,
        )

    async def _close(self, client: McppTransport) -> None:
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"[Router] Error closing transport for {client.server_key}: {e}")
