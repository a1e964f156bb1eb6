from typing import List

from blackjack_rooms.services.deck import Card, HIDDEN_CARD
from blackjack_rooms.services.scoring import score_hand


DEALER_ID = "dealer"


class Participant:
    """
    Shared record for anyone holding a hand at the table.
    `score` is recomputed on every card added and is never set directly.
    """

    def __init__(self, participant_id: str, name: str):
        self.id = participant_id
        self.name = name
        self.hand: List[Card] = []
        self.score = 0
        self.is_active = False
        self.has_stood = False
        self.is_bust = False

    def add_card(self, card: Card):
        """Add a card to the hand and refresh score/bust flags"""
        self.hand.append(card)
        self.score = score_hand(self.hand)
        self.is_bust = self.score > 21

    def clear_hand(self):
        self.hand = []
        self.score = 0
        self.is_active = False
        self.has_stood = False
        self.is_bust = False

    def is_finished(self) -> bool:
        """Stood or bust: no more actions this hand"""
        return self.has_stood or self.is_bust

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "hand": [card.to_dict() for card in self.hand],
            "score": self.score,
            "isActive": self.is_active,
            "hasStood": self.has_stood,
            "isBust": self.is_bust,
        }

    def __repr__(self):
        return f"{type(self).__name__}({self.id!r}, {self.hand}, score={self.score})"


class Player(Participant):
    def __init__(self, player_id: str, name: str):
        super().__init__(player_id, name)
        self.is_ready = False

    def reset_for_hand(self):
        self.clear_hand()
        self.is_ready = False

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["isReady"] = self.is_ready
        return data


class Dealer(Participant):
    def __init__(self):
        super().__init__(DEALER_ID, "Dealer")

    def masked_dict(self) -> dict:
        """
        Client view while players are still acting: every card after the
        first is replaced by the hidden placeholder and the score counts
        only the up card.
        """
        data = self.to_dict()
        if not self.hand:
            return data
        data["hand"] = [self.hand[0].to_dict()] + [
            dict(HIDDEN_CARD) for _ in self.hand[1:]
        ]
        data["score"] = score_hand(self.hand[:1])
        data["isBust"] = False
        return data


def default_player_name(player_id: str) -> str:
    return f"Player_{player_id[:5]}"
