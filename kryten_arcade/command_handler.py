"""Request-reply command handler on kryten.arcade.command.

Gives admin tooling and other kryten services a NATS request-reply API into
the arcade: balances, the leaderboard, poll state, chip grants and the
stream-start session reset.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import __version__

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .arcade import Arcade
    from .main import ArcadeApp


class CommandHandler:
    """Handles request-reply commands on kryten.arcade.command."""

    def __init__(
        self,
        app: ArcadeApp,
        client: KrytenClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._client = client
        self._logger = logger or logging.getLogger("arcade.command")

    async def connect(self) -> None:
        """Subscribe to request-reply on kryten.arcade.command."""
        await self._client.subscribe_request_reply(
            "kryten.arcade.command",
            self._handle_command,
        )

    async def _handle_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route a command request to the appropriate handler."""
        command = request.get("command", "")
        handler = self._HANDLER_MAP.get(command)

        if not handler:
            return {
                "service": "arcade",
                "command": command,
                "success": False,
                "error": f"Unknown command: {command}",
            }

        try:
            result = await handler(self, request)
            self._app.commands_processed += 1
            return {
                "service": "arcade",
                "command": command,
                "success": True,
                "data": result,
            }
        except Exception as e:
            self._logger.exception("Command handler error for %s", command)
            return {
                "service": "arcade",
                "command": command,
                "success": False,
                "error": str(e),
            }

    def _arcade(self, request: dict[str, Any]) -> Arcade:
        channel = request.get("channel")
        if not channel:
            raise ValueError("channel is required")
        arcade = self._app.arcades.get(channel)
        if arcade is None:
            raise ValueError(f"Unknown channel: {channel}")
        return arcade

    # ══════════════════════════════════════════════════════════
    #  System
    # ══════════════════════════════════════════════════════════

    async def _handle_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "version": __version__}

    async def _handle_health(self, request: dict[str, Any]) -> dict[str, Any]:
        return {
            "status": "healthy",
            "store": self._app.config.store.backend if self._app.config else None,
            "channels": sorted(self._app.arcades),
            "uptime_seconds": self._app.uptime_seconds,
        }

    # ══════════════════════════════════════════════════════════
    #  Ledger
    # ══════════════════════════════════════════════════════════

    async def _handle_balance_get(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username and channel are required")
        arcade = self._arcade(request)
        return {"username": username, "balance": await arcade.ledger.get_balance(username)}

    async def _handle_leaderboard(self, request: dict[str, Any]) -> dict[str, Any]:
        arcade = self._arcade(request)
        entries = await arcade.ledger.top_n(request.get("limit"))
        return {
            "entries": [
                {"username": e.display, "balance": e.balance} for e in entries
            ],
        }

    async def _handle_chips_add(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        amount = request.get("amount")
        if not username or not isinstance(amount, int) or amount < 1:
            raise ValueError("username and a positive integer amount are required")
        arcade = self._arcade(request)
        balance = await arcade.ledger.credit(username, amount)
        self._logger.info("chips.add: %s +%d in %s", username, amount, arcade.channel)
        return {"username": username, "balance": balance}

    async def _handle_session_reset(self, request: dict[str, Any]) -> dict[str, Any]:
        arcade = self._arcade(request)
        return {"removed": await arcade.reset_session()}

    # ══════════════════════════════════════════════════════════
    #  Polls and events
    # ══════════════════════════════════════════════════════════

    async def _handle_poll_state(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self._arcade(request).polls.snapshot()

    async def _handle_reset_timers(self, request: dict[str, Any]) -> dict[str, Any]:
        arcade = self._arcade(request)
        await arcade.events.reset_timers()
        return {"reset": True, "open": await arcade.events.open_events()}

    _HANDLER_MAP: dict[str, Any] = {
        "system.ping": _handle_ping,
        "system.health": _handle_health,
        "balance.get": _handle_balance_get,
        "leaderboard.top": _handle_leaderboard,
        "chips.add": _handle_chips_add,
        "session.reset": _handle_session_reset,
        "poll.state": _handle_poll_state,
        "events.reset_timers": _handle_reset_timers,
    }
