"""Prometheus metrics server for kryten-arcade.

Subclasses BaseMetricsServer from kryten-py to expose arcade counters and
per-channel event and poll gauges.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kryten import BaseMetricsServer

if TYPE_CHECKING:
    from .main import ArcadeApp


class ArcadeMetricsServer(BaseMetricsServer):
    """Arcade-specific Prometheus metrics endpoint."""

    def __init__(self, app: ArcadeApp, port: int = 28290) -> None:
        super().__init__(
            service_name="arcade",
            port=port,
            client=app.client,
            logger=app.logger,
        )
        self._app = app

    async def _collect_custom_metrics(self) -> list[str]:
        lines: list[str] = []

        # ── Counters ─────────────────────────────────────────
        routers = self._app.routers.values()
        lines.append(f"arcade_events_processed_total {self._app.events_processed}")
        lines.append(f"arcade_commands_processed_total {self._app.commands_processed}")
        lines.append(f"arcade_messages_processed_total {sum(r.messages_processed for r in routers)}")
        lines.append(f"arcade_chat_commands_total {sum(r.commands_dispatched for r in routers)}")
        lines.append(f"arcade_store_errors_total {sum(r.store_errors for r in routers)}")

        # ── Per-channel gauges ───────────────────────────────
        for channel, arcade in self._app.arcades.items():
            tag = f'channel="{channel}"'
            lines.append(f"arcade_polls_started_total{{{tag}}} {arcade.polls.polls_started}")
            lines.append(f"arcade_events_resolved_total{{{tag}}} {arcade.events.resolved_count}")
            try:
                state = await arcade.polls.get_state()
                lines.append(f'arcade_poll_status{{{tag},status="active"}} {int(bool(state and state.status == "active"))}')
                lines.append(f'arcade_poll_status{{{tag},status="winner"}} {int(bool(state and state.status == "winner"))}')
                for kind, is_open in (await arcade.events.open_events()).items():
                    lines.append(f'arcade_event_open{{{tag},event="{kind}"}} {int(is_open)}')
            except Exception:
                self._app.logger.warning("Store unavailable while collecting gauges for %s", channel)

        return lines

    async def _get_health_details(self) -> dict:
        return {
            "store": self._app.config.store.backend,
            "channels_configured": len(self._app.config.channels),
            "uptime_seconds": self._app.uptime_seconds,
        }
