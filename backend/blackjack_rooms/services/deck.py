import random
from typing import List, Optional
from enum import Enum


class Suit(str, Enum):
    HEARTS = "Hearts"
    DIAMONDS = "Diamonds"
    CLUBS = "Clubs"
    SPADES = "Spades"


class Rank(str, Enum):
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"


# Placeholder sent to clients in place of the dealer's hole card
HIDDEN_CARD = {"suit": "Hidden", "value": "Hidden"}


class Card:
    __slots__ = ("_rank", "_suit")

    def __init__(self, rank: Rank, suit: Suit):
        self._rank = rank
        self._suit = suit

    @property
    def rank(self) -> Rank:
        return self._rank

    @property
    def suit(self) -> Suit:
        return self._suit

    def points(self) -> int:
        """Face value before ace softening: pictures count 10, an ace 11."""
        if self._rank in (Rank.JACK, Rank.QUEEN, Rank.KING):
            return 10
        elif self._rank == Rank.ACE:
            return 11
        else:
            return int(self._rank.value)

    def to_dict(self) -> dict:
        return {"suit": self._suit.value, "value": self._rank.value}

    def __eq__(self, other):
        if not isinstance(other, Card):
            return NotImplemented
        return self._rank == other._rank and self._suit == other._suit

    def __hash__(self):
        return hash((self._rank, self._suit))

    def __repr__(self):
        return f"{self._rank.value}{self._suit.value[0]}"

    def __str__(self):
        return f"{self._rank.value} of {self._suit.value}"


def full_deck() -> List[Card]:
    """All 52 cards in suit-major order."""
    return [Card(rank, suit) for suit in Suit for rank in Rank]


class Deck:
    """
    A 52-card shoe that acts as a stack: deal() pops from the end.
    An exhausted deck is replaced by a freshly shuffled one on the next deal.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self.cards: List[Card] = []
        self.reset()

    def reset(self):
        """Gather all 52 cards back and shuffle."""
        self.cards = full_deck()
        self.shuffle()

    def shuffle(self):
        self._rng.shuffle(self.cards)

    def deal(self) -> Card:
        if not self.cards:
            self.reset()
        return self.cards.pop()

    def remaining(self) -> int:
        return len(self.cards)
