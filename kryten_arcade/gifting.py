"""Chip gifts and gift requests between viewers."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from .ledger import Ledger
from .store import Store
from .utils import display_name, normalize_user

if TYPE_CHECKING:
    from .config import ArcadeConfig


def request_key(target: str) -> str:
    return f"gift_request:{target}"


class GiftingEngine:
    """``!gift``, ``!request`` and the target's plain ``accept`` / ``deny`` reply."""

    def __init__(
        self,
        config: ArcadeConfig,
        store: Store,
        ledger: Ledger,
        logger: logging.Logger,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._ledger = ledger
        self._logger = logger
        self._clock = clock or time.time

    def _validate(self, sender: str, target: str | None, amount: int | None, usage: str) -> str | None:
        if not target or amount is None:
            return usage
        if normalize_user(target) == normalize_user(sender):
            return "🎁 You can't do that with yourself."
        if self._ledger.is_excluded(target):
            return f"🎁 {display_name(target)} doesn't take {self._config.currency.plural}."
        if amount < 1:
            return "🎁 Amount must be at least 1."
        return None

    async def gift(self, sender: str, target: str | None, amount: int | None) -> str:
        error = self._validate(sender, target, amount, "🎁 Usage: !gift @user <amount>")
        if error:
            return error
        paid = await self._ledger.debit(sender, amount)
        if not paid.ok:
            return f"🎁 Not enough {self._config.currency.plural} ({paid.balance})."
        received = await self._ledger.credit(target, amount)
        self._logger.info("Gift %s → %s: %d", normalize_user(sender), normalize_user(target), amount)
        return (
            f"🎁 {display_name(sender)} gave {display_name(target)} {self._ledger.chips(amount)}! "
            f"({display_name(target)}: {received})"
        )

    async def request(self, requester: str, target: str | None, amount: int | None) -> str:
        error = self._validate(requester, target, amount, "🙏 Usage: !request @user <amount>")
        if error:
            return error
        timeout = self._config.gambling.gifting.request_timeout_seconds
        record = {
            "requester": normalize_user(requester),
            "requester_name": display_name(requester),
            "amount": amount,
            "created_at": self._clock(),
        }
        if not await self._store.set_json(request_key(normalize_user(target)), record, ex=timeout, nx=True):
            return f"🙏 {display_name(target)} already has a pending request."
        return (
            f"🙏 {display_name(requester)} asks {display_name(target)} for "
            f"{self._ledger.chips(amount)}. {display_name(target)}: type accept or deny ({timeout}s)."
        )

    async def has_pending(self, username: str) -> bool:
        return await self._store.exists(request_key(normalize_user(username)))

    async def _claim(self, target: str) -> dict | None:
        """Take the pending request off the store. Only one caller gets it."""
        key = request_key(target)
        record = await self._store.get_json(key)
        if not record or not await self._store.delete(key):
            return None
        return record

    async def accept_request(self, username: str) -> str | None:
        target = normalize_user(username)
        record = await self._claim(target)
        if record is None:
            return None
        amount = record["amount"]
        paid = await self._ledger.debit(target, amount)
        if not paid.ok:
            return (
                f"🙏 Not enough {self._config.currency.plural} "
                f"({paid.balance}/{amount}). Request cancelled."
            )
        balance = await self._ledger.credit(record["requester"], amount)
        return (
            f"✅ {display_name(username)} sent {record['requester_name']} "
            f"{self._ledger.chips(amount)}! ({record['requester_name']}: {balance})"
        )

    async def deny_request(self, username: str) -> str | None:
        record = await self._claim(normalize_user(username))
        if record is None:
            return None
        return f"❌ {display_name(username)} denied {record['requester_name']}'s request."
