"""Playing-card helpers shared by blackjack and war.

Cards are plain strings such as ``"A♠"`` or ``"10♥"`` so game state stays
JSON-serializable. Decks are drawn from the front: ``deck[0]`` is the next
card dealt.
"""

from __future__ import annotations

import random

SUITS = ["♠", "♥", "♦", "♣"]
RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]

# War ordering: 2 low, ace high
WAR_RANKS = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]


def new_deck(rng: random.Random) -> list[str]:
    """Return a freshly shuffled 52-card deck."""
    deck = [f"{rank}{suit}" for suit in SUITS for rank in RANKS]
    rng.shuffle(deck)
    return deck


def card_rank(card: str) -> str:
    return card[:-1]


def card_value(card: str) -> int:
    """Blackjack value with aces counted high."""
    rank = card_rank(card)
    if rank == "A":
        return 11
    if rank in ("K", "Q", "J", "10"):
        return 10
    return int(rank)


def hand_value(cards: list[str]) -> int:
    """Best blackjack total: each ace drops from 11 to 1 while the hand is over 21."""
    total = 0
    aces = 0
    for card in cards:
        value = card_value(card)
        if value == 11:
            aces += 1
        total += value
    while total > 21 and aces:
        total -= 10
        aces -= 1
    return total


def is_blackjack(cards: list[str]) -> bool:
    return len(cards) == 2 and hand_value(cards) == 21


def is_pair(cards: list[str]) -> bool:
    return len(cards) == 2 and card_rank(cards[0]) == card_rank(cards[1])


def dealer_play(dealer: list[str], deck: list[str]) -> tuple[list[str], list[str]]:
    """Draw for the dealer until the total reaches 17 or more.

    Pure: returns new (dealer, deck) lists and leaves the inputs untouched.
    """
    hand = list(dealer)
    remaining = list(deck)
    while hand_value(hand) < 17 and remaining:
        hand.append(remaining.pop(0))
    return hand, remaining


def format_hand(cards: list[str]) -> str:
    return " ".join(cards)
