"""Tests for the playing-card helpers."""

from __future__ import annotations

import random

from kryten_arcade.cards import (
    dealer_play,
    hand_value,
    is_blackjack,
    is_pair,
    new_deck,
)


def test_hand_value_counts_aces_soft_then_hard():
    assert hand_value(["A♠", "A♥"]) == 12
    assert hand_value(["A♠", "A♥", "A♦"]) == 13
    assert hand_value(["A♠", "9♥"]) == 20
    assert hand_value(["A♠", "9♥", "5♦"]) == 15
    assert hand_value(["K♠", "Q♥", "2♦"]) == 22


def test_blackjack_needs_two_cards():
    assert is_blackjack(["A♠", "K♥"])
    assert not is_blackjack(["7♠", "7♥", "7♦"])


def test_pair_compares_rank_only():
    assert is_pair(["8♠", "8♥"])
    assert not is_pair(["10♠", "K♥"])


def test_new_deck_is_complete():
    deck = new_deck(random.Random(7))
    assert len(deck) == 52
    assert len(set(deck)) == 52


def test_dealer_draws_to_seventeen():
    hand, remaining = dealer_play(["10♠", "6♥"], ["2♣", "3♦"])
    assert hand == ["10♠", "6♥", "2♣"]
    assert remaining == ["3♦"]


def test_dealer_stands_on_seventeen():
    hand, remaining = dealer_play(["10♠", "7♥"], ["2♣"])
    assert hand == ["10♠", "7♥"]
    assert remaining == ["2♣"]


def test_dealer_play_leaves_inputs_untouched():
    dealer, deck = ["5♠", "6♥"], ["2♣", "3♦", "K♠"]
    dealer_play(dealer, deck)
    assert dealer == ["5♠", "6♥"]
    assert deck == ["2♣", "3♦", "K♠"]


def test_dealer_always_ends_at_or_above_seventeen():
    rng = random.Random(99)
    for _ in range(50):
        deck = new_deck(rng)
        hand, _ = dealer_play(deck[:2], deck[2:])
        assert hand_value(hand) >= 17
