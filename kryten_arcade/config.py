"""Configuration system for kryten-arcade.

All pydantic models are defined here with the defaults the arcade ships
with. The root model extends kryten-py's ``KrytenConfig`` so NATS, channel
and metrics settings are shared with the rest of the kryten services.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from kryten import KrytenConfig
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class StoreConfig(BaseModel):
    backend: Literal["memory", "sqlite", "redis"] = "sqlite"
    path: str = "arcade.db"
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "arcade"


class CurrencyConfig(BaseModel):
    name: str = "chip"
    plural: str = "chips"
    symbol: str = "🪙"


class BotConfig(BaseModel):
    username: str = "ArcadeBot"


class RolesConfig(BaseModel):
    """How sender role flags are derived from a chat event."""
    broadcaster: str = ""
    moderator_level: int = Field(default=2, description="Minimum CyTube rank counted as moderator")
    broadcaster_level: int = Field(default=4, description="Minimum CyTube rank counted as broadcaster")
    vips: list[str] = Field(default_factory=list)
    ogs: list[str] = Field(default_factory=list)
    subscribers: list[str] = Field(default_factory=list)


class LedgerConfig(BaseModel):
    starting_stake: int = 100
    min_bet: int = 1
    default_bet: int = 5
    leaderboard_size: int = 5
    excluded_users: list[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════
#  Gambling
# ═══════════════════════════════════════════════════════════════

class BlackjackConfig(BaseModel):
    enabled: bool = True
    hand_timeout_seconds: int = 90
    deal_cooldown_seconds: int = 15


class InstantGamesConfig(BaseModel):
    enabled: bool = True
    cooldown_seconds: int = 5
    slot_multipliers: dict[str, int] = Field(
        default={"🍒": 2, "🍋": 3, "🍊": 5, "🍀": 8, "7️⃣": 12, "💎": 25},
        description="Reel symbol → three-of-a-kind multiplier",
    )
    roulette_number_multiplier: int = 36
    crash_default_target: float = 2.0
    crash_min_target: float = 1.1


class DuelConfig(BaseModel):
    enabled: bool = True
    accept_timeout_seconds: int = 60


class StreaksConfig(BaseModel):
    win_streaks_enabled: bool = True
    win_milestones: dict[int, int] = Field(
        default={3: 25, 5: 50, 10: 150, 15: 500},
        description="Consecutive wins → bonus chips",
    )
    participation_streaks_enabled: bool = True
    participation_milestones: dict[int, int] = Field(
        default={3: 5, 7: 15, 14: 30, 30: 50},
        description="Consecutive UTC days played → bonus chips",
    )


class GiftingConfig(BaseModel):
    enabled: bool = True
    request_timeout_seconds: int = 60


class GamblingConfig(BaseModel):
    enabled: bool = True
    blackjack: BlackjackConfig = Field(default_factory=BlackjackConfig)
    instant_games: InstantGamesConfig = Field(default_factory=InstantGamesConfig)
    duel: DuelConfig = Field(default_factory=DuelConfig)
    streaks: StreaksConfig = Field(default_factory=StreaksConfig)
    gifting: GiftingConfig = Field(default_factory=GiftingConfig)


# ═══════════════════════════════════════════════════════════════
#  Polls
# ═══════════════════════════════════════════════════════════════

class PollsConfig(BaseModel):
    enabled: bool = True
    duration_seconds: int = 60
    winner_display_seconds: int = 10
    max_queued_polls: int = 5
    everyone_can_start: bool = False
    mods_can_start: bool = True
    vips_can_start: bool = False
    ogs_can_start: bool = False
    subs_can_start: bool = False
    one_vote_per_person: bool = True
    send_reminder: bool = False
    vote_reward: int = 0
    end_lock_seconds: int = 10
    max_question_length: int = 120
    max_option_length: int = 40
    min_options: int = 2
    max_options: int = 6
    rank_default_question: str = "Which is best?"
    blocked_words: list[str] = Field(
        default_factory=list,
        description="Extra terms rejected in poll questions and options",
    )


# ═══════════════════════════════════════════════════════════════
#  Timed events
# ═══════════════════════════════════════════════════════════════

class RaffleConfig(BaseModel):
    enabled: bool = True
    entry_window_seconds: int = 60
    ttl_seconds: int = 600
    interval_minutes: int = 15
    recent_keywords_max: int = 30
    keywords: list[str] = Field(default_factory=list, description="Overrides the built-in keyword pool")


class HeistConfig(BaseModel):
    enabled: bool = True
    join_window_seconds: int = 60
    ttl_seconds: int = 180
    max_participants: int = 10
    base_success_percent: int = 20
    per_robber_percent: int = 10
    max_success_percent: int = 75
    base_multiplier: float = 1.5


class ChipDropConfig(BaseModel):
    enabled: bool = True
    window_seconds: int = 120
    ttl_seconds: int = 180
    interval_minutes: int = 10
    prize: int = 5
    max_winners: int = 5
    keywords: list[str] = Field(default_factory=list, description="Overrides the built-in keyword pool")


class ChatChallengeConfig(BaseModel):
    enabled: bool = True
    window_seconds: int = 120
    ttl_seconds: int = 180
    interval_minutes: int = 15
    target_messages: int = 50
    prize: int = 5
    max_per_user: int = 3


class BossConfig(BaseModel):
    enabled: bool = True
    window_seconds: int = 300
    ttl_seconds: int = 360
    interval_minutes: int = 25
    reward_pool: int = 100
    min_share: int = 3
    attack_cooldown_seconds: int = 5
    reminder_quiet_seconds: int = 60
    recent_bosses_max: int = 20


class AutoStartConfig(BaseModel):
    enabled: bool = False
    order: list[Literal["raffle", "chip_drop", "chat_challenge", "boss"]] = Field(
        default_factory=lambda: ["raffle", "chip_drop", "chat_challenge", "boss"],
    )


class EventsConfig(BaseModel):
    raffle: RaffleConfig = Field(default_factory=RaffleConfig)
    heist: HeistConfig = Field(default_factory=HeistConfig)
    chip_drop: ChipDropConfig = Field(default_factory=ChipDropConfig)
    chat_challenge: ChatChallengeConfig = Field(default_factory=ChatChallengeConfig)
    boss: BossConfig = Field(default_factory=BossConfig)
    auto_start: AutoStartConfig = Field(default_factory=AutoStartConfig)


# ═══════════════════════════════════════════════════════════════
#  Chat activity, housekeeping, commands
# ═══════════════════════════════════════════════════════════════

class ActivityConfig(BaseModel):
    view_rewards_enabled: bool = True
    view_reward_interval_minutes: int = 10
    view_reward_amount: int = 10
    top_chatter_enabled: bool = True
    top_chatter_prize: int = 25
    top_chatter_min_chatters: int = 3
    count_interval_seconds: int = 30
    ttl_seconds: int = 7200


class HousekeepingConfig(BaseModel):
    tick_seconds: int = 15


class CommandsConfig(BaseModel):
    prefix: str = "!"
    reply_on_store_error: bool = False


# ═══════════════════════════════════════════════════════════════
#  Top-Level Arcade Config
# ═══════════════════════════════════════════════════════════════

class ArcadeConfig(KrytenConfig):
    """Full arcade config — extends KrytenConfig with the arcade sub-models."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    ignored_users: list[str] = Field(default_factory=list)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    gambling: GamblingConfig = Field(default_factory=GamblingConfig)
    polls: PollsConfig = Field(default_factory=PollsConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    activity: ActivityConfig = Field(default_factory=ActivityConfig)
    housekeeping: HousekeepingConfig = Field(default_factory=HousekeepingConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    # NOTE: metrics is inherited from KrytenConfig (kryten.config.MetricsConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> ArcadeConfig:
    """Load and validate YAML config file into ArcadeConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return ArcadeConfig(**raw)
