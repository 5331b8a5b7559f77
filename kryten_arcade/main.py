"""Service orchestrator — ArcadeApp.

Follows the canonical kryten-py microservice pattern:
config → store init → register handlers → connect → subscribe → metrics → run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from kryten import KrytenClient

from . import __version__
from .arcade import Arcade
from .command_handler import CommandHandler
from .command_router import CommandRouter
from .config import ArcadeConfig, load_config
from .housekeeping import Housekeeping
from .metrics_server import ArcadeMetricsServer
from .redis_store import RedisStore
from .sqlite_store import SqliteStore
from .store import MemoryStore, Store
from .utils import ReplySender


async def open_store(config: ArcadeConfig, logger: logging.Logger) -> Store:
    """Create the configured backend, ready for use."""
    backend = config.store.backend
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        store = RedisStore(config.store.url, logger.getChild("redis"))
        await store.ping()
        return store
    store = SqliteStore(config.store.path, logger.getChild("sqlite"))
    await store.initialize()
    return store


class ArcadeApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("arcade")

        # Components (initialized in start())
        self.config: ArcadeConfig | None = None
        self.client: KrytenClient | None = None
        self.store: Store | None = None
        self.arcades: dict[str, Arcade] = {}
        self.routers: dict[str, CommandRouter] = {}
        self.command_handler: CommandHandler | None = None
        self.metrics_server: ArcadeMetricsServer | None = None
        self.housekeeping: Housekeeping | None = None

        # State
        self._running = False
        self._start_time: float | None = None

        # Counters (for metrics)
        self.events_processed: int = 0
        self.commands_processed: int = 0

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    def _sender_for(self, channel: str) -> ReplySender:
        """Chat sender for one channel. CyTube has no threads, so reply_to is only logged."""

        async def send(text: str, reply_to: str | None = None) -> str | None:
            return await self.send_chat(channel, text, reply_to)

        return send

    async def send_chat(self, channel: str, text: str, reply_to: str | None = None) -> str | None:
        if self.client is None:
            self.logger.warning("send_chat: client is None, skipping")
            return None
        try:
            self.logger.debug("send_chat → %s (reply to %s): %s", channel, reply_to, text[:80])
            cid = await self.client.send_chat(channel, text)
            return str(cid) if cid else None
        except Exception:
            self.logger.exception("Failed to send chat to %s", channel)
            return None

    async def announce(self, channel: str, text: str) -> None:
        await self.send_chat(channel, text)

    async def start(self) -> None:
        """Start the arcade service — canonical kryten-py sequence."""
        self.logger.info("Starting kryten-arcade...")
        self._start_time = time.time()

        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        self.logger.info("Config loaded: %d channel(s)", len(self.config.channels))

        # 2. Open the store
        self.store = await open_store(self.config, self.logger)
        self.logger.info("Store ready: %s", self.config.store.backend)

        # 3. One arcade and router per channel
        for ch_cfg in self.config.channels:
            channel = ch_cfg.channel
            send = self._sender_for(channel)
            arcade = Arcade(self.config, self.store, channel, send, self.logger.getChild(channel))
            self.arcades[channel] = arcade
            self.routers[channel] = CommandRouter(arcade, send, self.logger.getChild("router"))

        # 4. Create KrytenClient
        self.client = KrytenClient(self.config)

        # 5. Register event handlers BEFORE connect
        @self.client.on("adduser")
        async def handle_join(event):
            try:
                self.events_processed += 1
                arcade = self.arcades.get(event.channel)
                if arcade is not None:
                    rank = getattr(event, "rank", 0) or 0
                    arcade.roles.update_rank(event.channel, event.username, rank)
            except Exception:
                self.logger.exception("adduser handler error for %s", getattr(event, "username", "?"))

        @self.client.on("chatmsg")
        async def handle_chatmsg(event):
            try:
                self.events_processed += 1
                router = self.routers.get(event.channel)
                if router is None:
                    return
                arcade = self.arcades[event.channel]
                sender = arcade.roles.resolve(
                    event.channel,
                    event.username,
                    rank=getattr(event, "rank", None),
                    message_id=getattr(event, "message_id", None),
                )
                await router.handle(sender, event.message)
            except Exception:
                self.logger.exception("chatmsg handler error for %s", getattr(event, "username", "?"))

        # 6. Connect to NATS
        await self.client.connect()
        self.logger.info("Connected to NATS")

        # 7. Start command handler
        self.command_handler = CommandHandler(self, self.client, self.logger.getChild("command"))
        await self.command_handler.connect()
        self.logger.info("Command handler ready on kryten.arcade.command")

        # 8. Start metrics server
        metrics_port = self.config.metrics.port if self.config.metrics else 28290
        self.metrics_server = ArcadeMetricsServer(self, port=metrics_port)
        await self.metrics_server.start()
        self.logger.info("Metrics server started on port %d", metrics_port)

        # 9. Start housekeeping
        self.housekeeping = Housekeeping(
            self.config, self.arcades, self.announce, self.store, self.logger.getChild("housekeeping"),
        )
        await self.housekeeping.start()

        # 10. Mark running
        self._running = True
        self.logger.info("kryten-arcade started successfully (v%s)", __version__)

        # 11. Block on client event loop
        await self.client.run()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down kryten-arcade...")
        self._running = False

        if self.housekeeping:
            await self.housekeeping.stop()
        if self.metrics_server:
            await self.metrics_server.stop()
        if self.client:
            await self.client.stop()
        if self.store:
            try:
                await self.store.close()
            except Exception:
                self.logger.exception("Failed to close store")

        self.logger.info("kryten-arcade stopped.")
