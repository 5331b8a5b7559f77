"""Boss fight — chat attacks a boss with attack words until it drops or escapes.

Damage is accumulated with an atomic increment. The attack whose increment
takes the total from below max HP to at or above it is the killing blow, and
only that caller resolves the fight. The reward pool is then split by damage
dealt. A boss that outlives its window escapes and pays nothing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .timed_event import TimedEvent, proportional_split
from .utils import display_name, normalize_user, plural

RECENT_BOSSES_KEY = "boss_recent_names"

PHYSICAL = "physical"
MAGIC = "magic"
RANGED = "ranged"
SPECIAL = "special"


# ═══════════════════════════════════════════════════════════════
#  Attack words and roster
# ═══════════════════════════════════════════════════════════════

ATTACK_WORDS: dict[str, str] = {
    # Physical
    "attack": PHYSICAL, "punch": PHYSICAL, "kick": PHYSICAL, "uppercut": PHYSICAL,
    "slap": PHYSICAL, "headbutt": PHYSICAL, "elbow": PHYSICAL, "smash": PHYSICAL,
    "crush": PHYSICAL, "slam": PHYSICAL, "tackle": PHYSICAL, "stomp": PHYSICAL,
    "chop": PHYSICAL, "strike": PHYSICAL, "hammer": PHYSICAL, "suplex": PHYSICAL,
    "clothesline": PHYSICAL, "roundhouse": PHYSICAL, "haymaker": PHYSICAL,
    "drop kick": PHYSICAL, "body slam": PHYSICAL, "flying kick": PHYSICAL,
    "ground pound": PHYSICAL, "pile driver": PHYSICAL, "leg sweep": PHYSICAL,
    "karate chop": PHYSICAL, "falcon punch": PHYSICAL, "crane kick": PHYSICAL,
    # Magic
    "fireball": MAGIC, "lightning": MAGIC, "ice": MAGIC, "freeze": MAGIC,
    "thunder": MAGIC, "blast": MAGIC, "burn": MAGIC, "shock": MAGIC,
    "zap": MAGIC, "meteor": MAGIC, "inferno": MAGIC, "blizzard": MAGIC,
    "abracadabra": MAGIC, "kamehameha": MAGIC, "hadouken": MAGIC, "hex": MAGIC,
    "lightning bolt": MAGIC, "ice beam": MAGIC, "shadow bolt": MAGIC,
    "arcane blast": MAGIC, "mana burn": MAGIC, "chaos bolt": MAGIC,
    "eldritch blast": MAGIC, "moonbeam": MAGIC, "starfall": MAGIC, "spirit bomb": MAGIC,
    # Ranged
    "shoot": RANGED, "snipe": RANGED, "arrow": RANGED, "throw": RANGED,
    "hurl": RANGED, "launch": RANGED, "fire": RANGED, "aim": RANGED,
    "yeet": RANGED, "boop": RANGED, "fling": RANGED, "catapult": RANGED,
    "trebuchet": RANGED, "boomerang": RANGED, "slingshot": RANGED,
    "head shot": RANGED, "double tap": RANGED, "power shot": RANGED,
    "orbital strike": RANGED, "poison dart": RANGED, "throwing star": RANGED,
    "banana peel": RANGED, "blue shell": RANGED, "water balloon": RANGED,
    # Special
    "insult": SPECIAL, "roast": SPECIAL, "curse": SPECIAL, "taunt": SPECIAL,
    "mock": SPECIAL, "jinx": SPECIAL, "doom": SPECIAL, "banish": SPECIAL,
    "smite": SPECIAL, "nuke": SPECIAL, "ratio": SPECIAL, "cope": SPECIAL,
    "seethe": SPECIAL, "cringe": SPECIAL, "bonk": SPECIAL, "banhammer": SPECIAL,
    "death stare": SPECIAL, "vibe check": SPECIAL, "skill issue": SPECIAL,
    "touch grass": SPECIAL, "no u": SPECIAL, "emotional damage": SPECIAL,
    "uno reverse": SPECIAL, "rickroll": SPECIAL, "gg ez": SPECIAL, "caught in 4k": SPECIAL,
}


@dataclass(frozen=True)
class BossDefinition:
    name: str
    max_hp: int
    weakness: str
    resistance: str


BOSS_ROSTER: list[BossDefinition] = [
    # 400 HP
    BossDefinition("The Lag Lord", 400, SPECIAL, PHYSICAL),
    BossDefinition("Buffer Beast", 400, PHYSICAL, MAGIC),
    BossDefinition("Captain Clickbait", 400, MAGIC, SPECIAL),
    BossDefinition("The Ban Wave", 400, RANGED, PHYSICAL),
    # 350 HP
    BossDefinition("Sir Spamalot", 350, MAGIC, PHYSICAL),
    BossDefinition("The Dropped Frame", 350, RANGED, SPECIAL),
    BossDefinition("Mod Abuse Golem", 350, SPECIAL, RANGED),
    BossDefinition("Copypasta Hydra", 350, PHYSICAL, MAGIC),
    # 300 HP
    BossDefinition("Backseat Gamer", 300, SPECIAL, RANGED),
    BossDefinition("The Rickroller", 300, PHYSICAL, MAGIC),
    BossDefinition("Doomscroll Wraith", 300, MAGIC, SPECIAL),
    BossDefinition("Captcha Knight", 300, RANGED, PHYSICAL),
    # 250 HP
    BossDefinition("Mic Peak Imp", 250, RANGED, SPECIAL),
    BossDefinition("The Desync", 250, SPECIAL, PHYSICAL),
    BossDefinition("Emote Goblin", 250, PHYSICAL, RANGED),
    BossDefinition("Ad Break Ogre", 250, MAGIC, RANGED),
    # 200 HP
    BossDefinition("Tiny Troll", 200, PHYSICAL, MAGIC),
    BossDefinition("Low Battery Bat", 200, MAGIC, SPECIAL),
    BossDefinition("The Typo", 200, RANGED, PHYSICAL),
    BossDefinition("Lurker Slime", 200, SPECIAL, RANGED),
]

REMINDERS = [
    "⚔️ {name} is still wreaking havoc! {hp}/{max_hp} HP. Weak to {weakness}! Attack now!",
    "⚔️ {name} is destroying everything! {hp}/{max_hp} HP left. Use {weakness} attacks!",
    "⚔️ Nobody's fighting {name}?! {hp}/{max_hp} HP. Try {weakness} moves!",
    "⚔️ {name} laughs at your cowardice! {hp}/{max_hp} HP. {weakness} is super effective!",
]


def compute_damage(base: int, category: str, weakness: str, resistance: str) -> tuple[int, str]:
    """Apply weakness (x2) or resistance (halved, rounded up, at least 1)."""
    if category == weakness:
        return base * 2, " (super effective!)"
    if category == resistance:
        return max(1, math.ceil(base / 2)), " (resisted!)"
    return base, ""


def attack_list(per_category: int = 6) -> str:
    grouped: dict[str, list[str]] = {}
    for word, category in ATTACK_WORDS.items():
        grouped.setdefault(category, []).append(word)
    parts = []
    for category, words in grouped.items():
        more = f" +{len(words) - per_category} more" if len(words) > per_category else ""
        parts.append(f"{category}: {', '.join(words[:per_category])}{more}")
    return " | ".join(parts)


# ═══════════════════════════════════════════════════════════════
#  Event
# ═══════════════════════════════════════════════════════════════


class BossFight(TimedEvent):
    kind = "boss"

    def cooldown_key(self, user: str) -> str:
        return f"boss_attack_cd:{user}"

    async def _damage(self, record: dict) -> int:
        return await self._store.get_int(self.sub_key(record, "damage"))

    async def start(self, boss_name: str | None = None) -> str:
        existing = await self.get_record()
        if existing and self.is_open(existing):
            hp = max(0, existing["max_hp"] - await self._damage(existing))
            attackers = await self._store.zrevrange(self.sub_key(existing, "attackers"), 10_000)
            return (
                f"⚔️ {existing['name']} is still alive! {hp}/{existing['max_hp']} HP. "
                f"{plural(len(attackers), 'attacker')} so far. Weak to {existing['weakness']}!"
            )
        previous = None
        if existing:
            previous = await self.resolve()

        definition = await self._pick_boss(boss_name)
        record = {
            "id": self.new_id(),
            "name": definition.name,
            "max_hp": definition.max_hp,
            "weakness": definition.weakness,
            "resistance": definition.resistance,
            "reward": self._cfg.reward_pool,
            "started_at": self._clock(),
        }
        if not await self._create(record):
            return "⚔️ A boss is already here."
        examples = ", ".join(
            next(w for w, c in ATTACK_WORDS.items() if c == category)
            for category in (PHYSICAL, MAGIC, RANGED, SPECIAL)
        )
        self._logger.info("Boss started: %s (%d HP)", definition.name, definition.max_hp)
        announcement = (
            f"⚔️ {definition.name} appears! {definition.max_hp} HP. Weak to {definition.weakness}, "
            f"resists {definition.resistance}. Try: {examples}"
        )
        return f"{previous} {announcement}" if previous else announcement

    async def _pick_boss(self, boss_name: str | None) -> BossDefinition:
        if boss_name:
            for definition in BOSS_ROSTER:
                if definition.name.lower() == boss_name.lower():
                    return definition
        recent = await self._store.get_json(RECENT_BOSSES_KEY, []) or []
        pool = [b for b in BOSS_ROSTER if b.name not in recent] or BOSS_ROSTER
        definition = self._rng.choice(pool)
        await self._store.set_json(RECENT_BOSSES_KEY, (recent + [definition.name])[-self._cfg.recent_bosses_max:])
        return definition

    async def attack(self, username: str, text: str) -> str | None:
        """Treat ``text`` as an attack if it is an attack word. Returns the hit report."""
        word = text.strip().lower()
        category = ATTACK_WORDS.get(word)
        if category is None:
            return None
        record = await self.get_record()
        if not record or not self.is_open(record):
            return None

        user = normalize_user(username)
        now = self._clock()
        last = await self._store.get(self.cooldown_key(user))
        if last is not None and now - float(last) < self._cfg.attack_cooldown_seconds:
            return None
        await self._store.set(self.cooldown_key(user), str(now), ex=self._cfg.attack_cooldown_seconds * 2)

        damage, effect = compute_damage(
            5 + self._rng.randint(0, 20), category, record["weakness"], record["resistance"],
        )
        total = await self._store.incr(self.sub_key(record, "damage"), damage)
        attackers_key = self.sub_key(record, "attackers")
        order_key = self.sub_key(record, "order")
        if await self._store.zscore(order_key, user) is None:
            await self._store.zadd(order_key, user, now)
        await self._store.zincrby(attackers_key, user, damage)
        await self._store.set(self.sub_key(record, "last_attack"), str(now), ex=self.ttl_seconds)
        await self._expire_with(record, "damage", "attackers", "order")
        await self._ledger.remember_name(username)

        max_hp = record["max_hp"]
        before = total - damage
        if before >= max_hp:
            return None  # already down; the killing blow is paying out
        if total < max_hp:
            return (
                f"⚔️ {display_name(username)} uses {word} on {record['name']} for {damage} dmg{effect}! "
                f"({max_hp - total}/{max_hp} HP)"
            )

        if not await self._claim():
            return None
        rewards = await self._pay_out(record)
        self._logger.info("Boss %s defeated by %s", record["name"], user)
        return (
            f"⚔️ {word} hits {record['name']} for {damage}{effect}. {record['name']} defeated! "
            f"Rewards: {rewards}"
        )

    async def _pay_out(self, record: dict) -> str:
        damage_by_user = dict(await self._store.zrevrange(self.sub_key(record, "attackers"), 10_000))
        first_hit = await self._store.zrevrange(self.sub_key(record, "order"), 10_000)
        ordered = sorted(first_hit, key=lambda row: (row[1], row[0]))
        weights = {user: int(damage_by_user.get(user, 0)) for user, _ in ordered}
        shares = proportional_split(record["reward"], weights, self._cfg.min_share)

        parts = []
        for user, share in shares.items():
            await self._ledger.credit(user, share)
            parts.append(f"{await self._ledger.display_for(user)} +{share}")
        await self._store.delete(
            *(self.sub_key(record, name) for name in ("damage", "attackers", "order", "last_attack")),
        )
        return ", ".join(parts)

    async def resolve(self) -> str | None:
        """The window ran out with the boss still standing."""
        record = await self.get_record()
        if not record or self.is_open(record):
            return None
        if not await self._claim():
            return None
        await self._store.delete(
            *(self.sub_key(record, name) for name in ("damage", "attackers", "order", "last_attack")),
        )
        return f"⚔️ {record['name']} escaped! Better luck next time."

    async def reminder(self) -> str | None:
        """Nudge chat after half the window when nobody has attacked for a while."""
        record = await self.get_record()
        if not record or not self.is_open(record):
            return None
        if self.elapsed(record) < self.window_seconds / 2:
            return None
        now = self._clock()
        last_raw = await self._store.get(self.sub_key(record, "last_attack"))
        last_attack = float(last_raw) if last_raw else record["started_at"]
        quiet = self._cfg.reminder_quiet_seconds
        if now - last_attack < quiet:
            return None
        if not await self._store.set(self.sub_key(record, "reminded"), "1", nx=True, ex=quiet):
            return None
        hp = max(0, record["max_hp"] - await self._damage(record))
        return self._rng.choice(REMINDERS).format(
            name=record["name"], hp=hp, max_hp=record["max_hp"], weakness=record["weakness"],
        )
