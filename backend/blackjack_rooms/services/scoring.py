"""Blackjack hand arithmetic. Pure functions over sequences of cards."""

from typing import Sequence

from blackjack_rooms.services.deck import Card, Rank

BLACKJACK = 21
DEALER_STANDS_ON = 17


def score_hand(cards: Sequence[Card]) -> int:
    """
    Best total for the cards: every Ace starts at 11 and is demoted to 1,
    one at a time, while the total is over 21.
    """
    total = 0
    aces = 0

    for card in cards:
        if card.rank == Rank.ACE:
            aces += 1
        total += card.points()

    while total > BLACKJACK and aces > 0:
        total -= 10
        aces -= 1

    return total


def is_bust(cards: Sequence[Card]) -> bool:
    return score_hand(cards) > BLACKJACK


def is_blackjack(cards: Sequence[Card]) -> bool:
    """A natural: exactly two cards totalling 21."""
    return len(cards) == 2 and score_hand(cards) == BLACKJACK


def dealer_must_draw(cards: Sequence[Card]) -> bool:
    """The house draws below 17 and stands on any 17, soft or hard."""
    return score_hand(cards) < DEALER_STANDS_ON
