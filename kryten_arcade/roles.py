"""Sender identity and role flags.

CyTube only reports a numeric rank, learned from ``adduser`` events (and from
``chatmsg`` events when the field is present). VIP, OG and subscriber status
have no CyTube equivalent and come from configured username lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .utils import normalize_user

if TYPE_CHECKING:
    from .config import ArcadeConfig


@dataclass(frozen=True)
class Sender:
    """Who sent a chat message and what they are allowed to do."""

    username: str
    is_broadcaster: bool = False
    is_moderator: bool = False
    is_vip: bool = False
    is_og: bool = False
    is_subscriber: bool = False
    message_id: str | None = None

    @property
    def user(self) -> str:
        return normalize_user(self.username)

    @property
    def is_staff(self) -> bool:
        return self.is_broadcaster or self.is_moderator


class RoleResolver:
    """Maps a username (plus its last known rank) to a ``Sender``."""

    def __init__(self, config: ArcadeConfig) -> None:
        self._config = config
        self._ranks: dict[tuple[str, str], int] = {}

    def update_rank(self, channel: str, username: str, rank: int) -> None:
        self._ranks[(channel, normalize_user(username))] = rank

    def get_rank(self, channel: str, username: str) -> int:
        return self._ranks.get((channel, normalize_user(username)), 0)

    def resolve(
        self,
        channel: str,
        username: str,
        rank: int | None = None,
        message_id: str | None = None,
    ) -> Sender:
        roles = self._config.roles
        user = normalize_user(username)
        if rank is not None:
            self.update_rank(channel, user, rank)
        else:
            rank = self.get_rank(channel, user)

        is_broadcaster = bool(roles.broadcaster) and user == normalize_user(roles.broadcaster)
        is_broadcaster = is_broadcaster or rank >= roles.broadcaster_level
        return Sender(
            username=username,
            is_broadcaster=is_broadcaster,
            is_moderator=is_broadcaster or rank >= roles.moderator_level,
            is_vip=user in {normalize_user(u) for u in roles.vips},
            is_og=user in {normalize_user(u) for u in roles.ogs},
            is_subscriber=user in {normalize_user(u) for u in roles.subscribers},
            message_id=message_id,
        )
