"""Chat command router — turns one chat message into engine calls and replies.

Every message takes the same path:

1. The poll lifecycle is advanced (any message can end a poll or promote
   the queue).
2. Plain text goes down the passive path: poll votes, gift request
   ``accept`` / ``deny`` replies, and event keywords or attack words.
3. Text starting with the command prefix is dispatched through the
   command map. Unknown commands still count as poll votes, so ``!a``
   votes for option a.

Nothing escapes ``handle``: store failures are logged as warnings and
everything else with ``logger.exception``. One bad message never stops the
next one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from .boss import attack_list
from .store import StoreUnavailableError
from .utils import ReplySender, display_name, normalize_user, parse_int

if TYPE_CHECKING:
    from .arcade import Arcade
    from .roles import Sender


Handler = Callable[["Sender", list[str]], Awaitable["str | None"]]

# Commands that touch chips; all of them sit behind gambling.enabled.
ECONOMY_COMMANDS = frozenset({
    "chips", "leaderboard", "addchips", "games",
    "deal", "hit", "stand", "double", "split",
    "coinflip", "slots", "roulette", "dice", "crash", "war",
    "duel", "accept", "heist", "gift", "request",
    "raffle", "drop", "challenge", "boss", "attacks",
})

# Playing any of these counts the day toward a participation streak.
PLAY_COMMANDS = frozenset({
    "deal", "coinflip", "slots", "roulette", "dice", "crash", "war", "duel", "heist",
})

GAMES_HELP = (
    "🎮 Games: !deal <amt> (hit/stand/double/split), !coinflip <amt>, !slots <amt>, "
    "!roulette <red|black|1-36> <amt>, !dice <high|low> <amt>, !crash <amt> [target], "
    "!war <amt>, !duel @user <amt>, !heist <amt>, !gift @user <amt>, !chips, !lb"
)


class CommandRouter:
    """Dispatches chat messages for one channel."""

    def __init__(
        self,
        arcade: Arcade,
        send: ReplySender,
        logger: logging.Logger | None = None,
    ) -> None:
        self._arcade = arcade
        self._config = arcade.config
        self._send = send
        self._logger = logger or logging.getLogger("arcade.router")

        self.messages_processed = 0
        self.commands_dispatched = 0
        self.store_errors = 0

        self._command_map: dict[str, Handler] = {
            # Blackjack
            "deal": self._cmd_deal,
            "bj": self._cmd_deal,
            "hit": self._cmd_hit,
            "stand": self._cmd_stand,
            "double": self._cmd_double,
            "split": self._cmd_split,
            # Instant games
            "coinflip": self._cmd_coinflip,
            "flip": self._cmd_coinflip,
            "gamble": self._cmd_coinflip,
            "gamba": self._cmd_coinflip,
            "slots": self._cmd_slots,
            "spin": self._cmd_slots,
            "roulette": self._cmd_roulette,
            "dice": self._cmd_dice,
            "crash": self._cmd_crash,
            "war": self._cmd_war,
            "duel": self._cmd_duel,
            "accept": self._cmd_accept,
            # Events
            "heist": self._cmd_heist,
            "raffle": self._cmd_raffle,
            "drop": self._cmd_drop,
            "challenge": self._cmd_challenge,
            "boss": self._cmd_boss,
            "attacks": self._cmd_attacks,
            # Gifting
            "gift": self._cmd_gift,
            "request": self._cmd_request,
            # Polls
            "poll": self._cmd_poll,
            "rank": self._cmd_rank,
            "pollstatus": self._cmd_pollstatus,
            "endpoll": self._cmd_endpoll,
            # Ledger
            "chips": self._cmd_chips,
            "balance": self._cmd_chips,
            "leaderboard": self._cmd_leaderboard,
            "lb": self._cmd_leaderboard,
            "top": self._cmd_leaderboard,
            "addchips": self._cmd_addchips,
            "games": self._cmd_games,
        }

        # Canonical name for each alias, so the gates see one name.
        self._canonical = {
            "bj": "deal", "flip": "coinflip", "gamble": "coinflip", "gamba": "coinflip",
            "spin": "slots", "balance": "chips", "lb": "leaderboard", "top": "leaderboard",
        }

    # ══════════════════════════════════════════════════════════
    #  Entry point
    # ══════════════════════════════════════════════════════════

    async def handle(self, sender: Sender, text: str) -> None:
        """Process one chat message. Never raises."""
        if self._arcade.ledger.is_excluded(sender.username):
            return
        text = text.strip()
        if not text:
            return

        self.messages_processed += 1
        try:
            await self._process(sender, text)
        except StoreUnavailableError as e:
            self.store_errors += 1
            self._logger.warning("Store unavailable while handling %s: %s", sender.user, e)
            if self._config.commands.reply_on_store_error:
                await self._reply(sender, "Try again in a moment.")
        except Exception:
            self._logger.exception("Chat handler error for %s: %r", sender.user, text)

    async def _process(self, sender: Sender, text: str) -> None:
        await self._arcade.polls.check_lifecycle()
        await self._arcade.activity.record_message(sender.username, text)

        prefix = self._config.commands.prefix
        if not text.startswith(prefix):
            await self._passive(sender, text)
            return

        parts = text[len(prefix):].split()
        if not parts:
            return
        command = parts[0].lower()
        handler = self._command_map.get(command)
        if handler is None:
            # "!a" is still a vote for option a.
            if self._config.polls.enabled:
                await self._arcade.polls.vote(sender.username, text)
            return
        canonical = self._canonical.get(command, command)

        if canonical in ECONOMY_COMMANDS and not self._config.gambling.enabled:
            self._logger.debug("Ignoring %s from %s: gambling disabled", command, sender.user)
            return

        self.commands_dispatched += 1
        self._logger.debug("Command %s from %s: %s", canonical, sender.user, parts[1:])
        reply = await handler(sender, parts[1:])
        if reply:
            await self._reply(sender, reply)

        if canonical in PLAY_COMMANDS:
            streak = await self._arcade.streaks.check_participation(sender.username)
            if streak:
                await self._announce(streak)

    async def _passive(self, sender: Sender, text: str) -> None:
        arcade = self._arcade
        if self._config.polls.enabled and await arcade.polls.vote(sender.username, text):
            return

        if not self._config.gambling.enabled:
            return

        word = text.lower()
        if self._config.gambling.gifting.enabled and word in ("accept", "deny"):
            if word == "accept":
                reply = await arcade.gifting.accept_request(sender.username)
            else:
                reply = await arcade.gifting.deny_request(sender.username)
            if reply:
                await self._reply(sender, reply)
                return

        for reply in await arcade.events.handle_passive(sender.username, text):
            await self._announce(reply)

    async def _reply(self, sender: Sender, text: str) -> None:
        await self._send(text, sender.message_id)

    async def _announce(self, text: str) -> None:
        await self._send(text, None)

    async def _bet(self, sender: Sender, args: list[str], index: int = 0) -> int:
        return await self._arcade.ledger.resolve_bet(
            sender.username, args[index] if len(args) > index else None,
        )

    # ══════════════════════════════════════════════════════════
    #  Blackjack
    # ══════════════════════════════════════════════════════════

    async def _cmd_deal(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.gambling.blackjack.enabled:
            return None
        amount = await self._bet(sender, args)
        return (await self._arcade.blackjack.deal(sender.username, amount)).message

    async def _cmd_hit(self, sender: Sender, args: list[str]) -> str | None:
        return (await self._arcade.blackjack.hit(sender.username)).message

    async def _cmd_stand(self, sender: Sender, args: list[str]) -> str | None:
        return (await self._arcade.blackjack.stand(sender.username)).message

    async def _cmd_double(self, sender: Sender, args: list[str]) -> str | None:
        return (await self._arcade.blackjack.double(sender.username)).message

    async def _cmd_split(self, sender: Sender, args: list[str]) -> str | None:
        return (await self._arcade.blackjack.split(sender.username)).message

    # ══════════════════════════════════════════════════════════
    #  Instant games
    # ══════════════════════════════════════════════════════════

    def _instant_enabled(self) -> bool:
        return self._config.gambling.instant_games.enabled

    async def _cmd_coinflip(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args)
        return (await self._arcade.games.coinflip(sender.username, amount)).message

    async def _cmd_slots(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args)
        return (await self._arcade.games.slots(sender.username, amount)).message

    async def _cmd_roulette(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args, 1)
        choice = args[0] if args else None
        return (await self._arcade.games.roulette(sender.username, choice, amount)).message

    async def _cmd_dice(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args, 1)
        choice = args[0] if args else None
        return (await self._arcade.games.dice(sender.username, choice, amount)).message

    async def _cmd_crash(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args)
        target = None
        if len(args) > 1:
            try:
                target = float(args[1].rstrip("xX"))
            except ValueError:
                target = None
        return (await self._arcade.games.crash(sender.username, amount, target)).message

    async def _cmd_war(self, sender: Sender, args: list[str]) -> str | None:
        if not self._instant_enabled():
            return None
        amount = await self._bet(sender, args)
        return (await self._arcade.games.war(sender.username, amount)).message

    async def _cmd_duel(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.gambling.duel.enabled:
            return None
        target = args[0] if args else None
        amount = await self._bet(sender, args, 1)
        return (await self._arcade.games.challenge(sender.username, target, amount)).message

    async def _cmd_accept(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.gambling.duel.enabled:
            return None
        return (await self._arcade.games.accept(sender.username)).message

    # ══════════════════════════════════════════════════════════
    #  Events
    # ══════════════════════════════════════════════════════════

    async def _cmd_heist(self, sender: Sender, args: list[str]) -> str | None:
        heist = self._arcade.events.heist
        if not heist.enabled:
            return None
        requested = await self._bet(sender, args) if args else None
        return await heist.join(sender.username, requested)

    async def _staff_start(self, sender: Sender, kind: str) -> str | None:
        if not sender.is_staff:
            return None
        event = self._arcade.events.get(kind)
        if event is None or not event.enabled:
            return None
        self._logger.info("%s started by %s", kind, sender.user)
        return await event.start()

    async def _cmd_raffle(self, sender: Sender, args: list[str]) -> str | None:
        if not sender.is_staff:
            return await self._arcade.events.raffle.status()
        return await self._staff_start(sender, "raffle")

    async def _cmd_drop(self, sender: Sender, args: list[str]) -> str | None:
        return await self._staff_start(sender, "chip_drop")

    async def _cmd_challenge(self, sender: Sender, args: list[str]) -> str | None:
        if not sender.is_staff:
            progress = await self._arcade.events.chat_challenge.progress()
            if progress is None:
                return None
            return f"🎯 Challenge: {progress[0]}/{progress[1]} messages."
        return await self._staff_start(sender, "chat_challenge")

    async def _cmd_boss(self, sender: Sender, args: list[str]) -> str | None:
        return await self._staff_start(sender, "boss")

    async def _cmd_attacks(self, sender: Sender, args: list[str]) -> str | None:
        return f"⚔️ Attacks: {attack_list()}"

    # ══════════════════════════════════════════════════════════
    #  Gifting
    # ══════════════════════════════════════════════════════════

    async def _cmd_gift(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.gambling.gifting.enabled:
            return None
        target = args[0] if args else None
        amount = parse_int(args[1]) if len(args) > 1 else None
        return await self._arcade.gifting.gift(sender.username, target, amount)

    async def _cmd_request(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.gambling.gifting.enabled:
            return None
        target = args[0] if args else None
        amount = parse_int(args[1]) if len(args) > 1 else None
        return await self._arcade.gifting.request(sender.username, target, amount)

    # ══════════════════════════════════════════════════════════
    #  Polls
    # ══════════════════════════════════════════════════════════

    async def _cmd_poll(self, sender: Sender, args: list[str]) -> str | None:
        polls = self._arcade.polls
        if not self._config.polls.enabled:
            return None
        rest = " ".join(args)
        if not rest or rest.lower() == "status":
            state = await polls.get_state()
            if state is not None or rest:
                return await polls.status()
            return "Usage: !poll Question? Option1, Option2"
        return await polls.start_poll(sender, rest)

    async def _cmd_rank(self, sender: Sender, args: list[str]) -> str | None:
        if not self._config.polls.enabled:
            return None
        return await self._arcade.polls.start_poll(sender, " ".join(args), ranking=True)

    async def _cmd_pollstatus(self, sender: Sender, args: list[str]) -> str | None:
        return await self._arcade.polls.status()

    async def _cmd_endpoll(self, sender: Sender, args: list[str]) -> str | None:
        return await self._arcade.polls.end_poll(sender)

    # ══════════════════════════════════════════════════════════
    #  Ledger
    # ══════════════════════════════════════════════════════════

    async def _cmd_chips(self, sender: Sender, args: list[str]) -> str | None:
        ledger = self._arcade.ledger
        who = args[0] if args else sender.username
        balance = await ledger.get_balance(who)
        return f"{self._config.currency.symbol} {display_name(who)}: {ledger.chips(balance)}"

    async def _cmd_leaderboard(self, sender: Sender, args: list[str]) -> str | None:
        entries = await self._arcade.ledger.top_n()
        if not entries:
            return f"🏆 Nobody has any {self._config.currency.plural} yet."
        ranked = " | ".join(f"{i}. {e.display} ({e.balance})" for i, e in enumerate(entries, 1))
        return f"🏆 {ranked}"

    async def _cmd_addchips(self, sender: Sender, args: list[str]) -> str | None:
        if not sender.is_staff:
            return None
        if len(args) < 2:
            return "Usage: !addchips <user> <amount>"
        amount, target = parse_int(args[1]), args[0]
        if amount is None:
            amount, target = parse_int(args[0]), args[1]
        if amount is None or amount < 1:
            return "Usage: !addchips <user> <amount>"

        ledger = self._arcade.ledger
        balance = await ledger.credit(target, amount)
        self._logger.info("%s added %d to %s", sender.user, amount, normalize_user(target))
        return f"{self._config.currency.symbol} Added {ledger.chips(amount)} to {display_name(target)} ({balance})."

    async def _cmd_games(self, sender: Sender, args: list[str]) -> str | None:
        return GAMES_HELP
