import asyncio
import logging
from enum import Enum
from functools import partial
from typing import List, NamedTuple, Optional

from blackjack_rooms.schemas.room import RoomConfig
from blackjack_rooms.services.deck import Card, Deck
from blackjack_rooms.services.errors import (
    AlreadyActedThisTurn,
    AlreadyJoined,
    GameInProgress,
    InsufficientPlayers,
    NotInRoom,
    NotYourTurn,
    RoomFull,
)
from blackjack_rooms.services.participants import Dealer, Player
from blackjack_rooms.services.scoring import dealer_must_draw
from blackjack_rooms.services.timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class RoomState(str, Enum):
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    DEALER_TURN = "dealer_turn"
    ENDED = "ended"


class Outcome(str, Enum):
    PLAYER_WINS = "Player Wins"
    DEALER_WINS = "Dealer Wins"
    TIE = "Tie"


class Notice(NamedTuple):
    """
    One outbound message queued by the room.
    recipient=None broadcasts to the room; exclude skips one player.
    """

    message: dict
    recipient: Optional[str] = None
    exclude: Optional[str] = None


def determine_outcomes(players: List[Player], dealer: Dealer) -> List[dict]:
    """
    Settle every player against the dealer's final hand.
    A bust player loses even if the dealer also busts.
    """
    results = []
    dealer_score = dealer.score

    for player in players:
        if player.is_bust:
            outcome = Outcome.DEALER_WINS
            line = f"{player.name} busts with {player.score}. {outcome.value}"
        elif dealer.is_bust:
            outcome = Outcome.PLAYER_WINS
            line = (
                f"{player.name}: {outcome.value}! Dealer busts, "
                f"player score {player.score}"
            )
        elif player.score > dealer_score:
            outcome = Outcome.PLAYER_WINS
            line = f"{player.name}: {outcome.value}! {player.score} vs {dealer_score}"
        elif player.score < dealer_score:
            outcome = Outcome.DEALER_WINS
            line = f"{player.name}: {outcome.value}. {player.score} vs {dealer_score}"
        else:
            outcome = Outcome.TIE
            line = f"{player.name}: {outcome.value}. Both on {player.score}"

        results.append(
            {
                "playerId": player.id,
                "playerName": player.name,
                "score": player.score,
                "dealerScore": dealer_score,
                "outcome": outcome.value,
                "line": line,
            }
        )

    return results


class Room:
    """
    One table: roster, dealer, deck, turn pointer and the round state machine

        waiting -> countdown -> playing -> dealer_turn -> ended -> waiting

    Every method is synchronous and must be called while holding `lock`.
    Nothing is sent from here: messages are queued on `outbox` as Notice
    entries and delivered by whoever drains it.

    Timer callbacks carry the generation they were armed in (`_turn_seq`
    for the player timeout, `_epoch` for countdown and dealer pacing) and
    do nothing once that generation has moved on.
    """

    def __init__(
        self,
        room_id: str,
        config: RoomConfig,
        scheduler: Scheduler,
        deck: Optional[Deck] = None,
        dealer_delay: float = 0.0,
    ):
        self.id = room_id
        self.config = config
        self.state = RoomState.WAITING
        self.players: List[Player] = []
        self.dealer = Dealer()
        self.deck = deck or Deck()
        self.current_player_index = -1
        self.countdown_remaining = 0
        self.last_results: List[dict] = []
        self.lock = asyncio.Lock()
        self.outbox: List[Notice] = []

        self._scheduler = scheduler
        self._dealer_delay = dealer_delay
        self._countdown_timer: Optional[TimerHandle] = None
        self._turn_timer: Optional[TimerHandle] = None
        self._dealer_timer: Optional[TimerHandle] = None
        self._turn_seq = 0
        self._epoch = 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    @property
    def current_player(self) -> Optional[Player]:
        if 0 <= self.current_player_index < len(self.players):
            return self.players[self.current_player_index]
        return None

    def is_empty(self) -> bool:
        return not self.players

    def has_open_seat(self) -> bool:
        return len(self.players) < self.config.max_players

    def players_dicts(self) -> List[dict]:
        return [player.to_dict() for player in self.players]

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def _broadcast(self, message: dict, exclude: Optional[str] = None):
        message.setdefault("roomId", self.id)
        self.outbox.append(Notice(message, exclude=exclude))

    def _send(self, player_id: str, message: dict):
        message.setdefault("roomId", self.id)
        self.outbox.append(Notice(message, recipient=player_id))

    def drain(self) -> List[Notice]:
        notices, self.outbox = self.outbox, []
        return notices

    def snapshot(self) -> dict:
        """
        Client view of the table. While players are still acting, the
        dealer's hole card and true score are hidden.
        """
        if self.state == RoomState.PLAYING:
            dealer = self.dealer.masked_dict()
        else:
            dealer = self.dealer.to_dict()

        state = {
            "action": "updateGameState",
            "roomId": self.id,
            "gamePhase": self.state.value,
            "players": self.players_dicts(),
            "dealer": dealer,
            "currentPlayerIndex": self.current_player_index,
        }
        if self.state == RoomState.COUNTDOWN:
            state["countdown"] = self.countdown_remaining
        return state

    def _broadcast_state(self, message: Optional[str] = None):
        state = self.snapshot()
        if message:
            state["message"] = message
        self.outbox.append(Notice(state))

    def summary(self) -> dict:
        return {
            "roomId": self.id,
            "roomState": self.state.value,
            "players": len(self.players),
            "maxPlayers": self.config.max_players,
            "config": self.config.to_wire(),
        }

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def add_player(self, player_id: str, name: str) -> Player:
        if self.state not in (RoomState.WAITING, RoomState.COUNTDOWN):
            raise GameInProgress("Game already started, cannot join")
        if not self.has_open_seat():
            raise RoomFull()
        if self.get_player(player_id) is not None:
            raise AlreadyJoined("You are already in this room")

        player = Player(player_id, name)
        self.players.append(player)
        logger.info(f"Player {name} ({player_id}) joined room {self.id}")

        self._broadcast(
            {
                "action": "playerJoined",
                "player": player.to_dict(),
                "players": self.players_dicts(),
                "message": f"{name} joined the room",
            },
            exclude=player_id,
        )

        if self.state == RoomState.WAITING and len(self.players) >= self.config.min_players:
            self._broadcast(
                {
                    "action": "readyToStart",
                    "totalPlayers": len(self.players),
                    "message": "Game is ready to start!",
                }
            )

        self._maybe_start_countdown()
        return player

    def remove_player(self, player_id: str, disconnected: bool = False) -> Player:
        """
        Take a player off the roster. If they held the turn, it passes on;
        players earlier in turn order leaving does not move the turn.
        """
        player = self.get_player(player_id)
        if player is None:
            raise NotInRoom()

        index = self.players.index(player)
        self.players.pop(index)
        logger.info(
            f"Player {player.name} ({player_id}) "
            f"{'disconnected from' if disconnected else 'left'} room {self.id}"
        )

        self._broadcast(
            {
                "action": "playerDisconnected" if disconnected else "playerLeft",
                "playerId": player_id,
                "players": self.players_dicts(),
                "message": f"{player.name} left the room",
            },
            exclude=player_id,
        )

        if not self.players:
            self.close()
            return player

        if self.state == RoomState.PLAYING:
            if index < self.current_player_index:
                self.current_player_index -= 1
                self._broadcast_state()
            elif index == self.current_player_index:
                # Scan resumes at the seat the leaver vacated
                self.current_player_index = index - 1
                self._advance_turn()
            else:
                self._broadcast_state()
        elif self.state == RoomState.COUNTDOWN:
            if len(self.players) < self.config.min_players:
                self._cancel_countdown()
                self.state = RoomState.WAITING
                self._broadcast(
                    {
                        "action": "countdownCancelled",
                        "message": "Not enough players, countdown cancelled",
                    }
                )
        elif self.state == RoomState.WAITING:
            self._maybe_start_countdown()

        return player

    def mark_ready(self, player_id: str) -> Player:
        player = self.get_player(player_id)
        if player is None:
            raise NotInRoom()
        if self.state in (RoomState.PLAYING, RoomState.DEALER_TURN):
            raise GameInProgress()

        player.is_ready = True
        self._send(
            player_id,
            {"action": "playerReady", "playerId": player_id, "message": "Ready"},
        )
        self._broadcast(
            {
                "action": "playerReadyStatus",
                "playerId": player_id,
                "isReady": True,
                "players": self.players_dicts(),
                "message": f"{player.name} is ready",
            }
        )
        self._maybe_start_countdown()
        return player

    def rename_player(self, player_id: str, new_name: str) -> str:
        player = self.get_player(player_id)
        if player is None:
            raise NotInRoom()

        old_name = player.name
        player.name = new_name
        self._broadcast(
            {
                "action": "playerNameUpdated",
                "playerId": player_id,
                "oldName": old_name,
                "newName": new_name,
                "players": self.players_dicts(),
                "message": f"{old_name} is now {new_name}",
            }
        )
        return old_name

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------

    def _maybe_start_countdown(self):
        if self.state != RoomState.WAITING:
            return
        count = len(self.players)
        if count < self.config.min_players:
            return

        all_ready = all(player.is_ready for player in self.players)
        full_table = self.config.auto_start and count >= self.config.max_players
        if all_ready or full_table:
            self._start_countdown()

    def _start_countdown(self):
        self.state = RoomState.COUNTDOWN
        self.countdown_remaining = self.config.countdown_seconds
        self._epoch += 1
        logger.info(f"Room {self.id} countdown: {self.countdown_remaining}s")

        self._broadcast(
            {
                "action": "countdownStarted",
                "seconds": self.countdown_remaining,
                "message": f"Game starts in {self.countdown_remaining} seconds",
            }
        )
        self._arm_countdown_tick()

    def _arm_countdown_tick(self):
        self._countdown_timer = self._scheduler.call_later(
            1, partial(self._countdown_tick, self._epoch)
        )

    def _countdown_tick(self, epoch: int):
        if epoch != self._epoch or self.state != RoomState.COUNTDOWN:
            return

        self.countdown_remaining -= 1
        remaining = self.countdown_remaining
        if remaining % 5 == 0 or remaining <= 5:
            self._broadcast(
                {
                    "action": "countdownUpdate",
                    "seconds": remaining,
                    "message": (
                        f"Game starts in {remaining} seconds"
                        if remaining > 0
                        else "Game is starting"
                    ),
                }
            )

        if remaining <= 0:
            self._countdown_timer = None
            self._deal()
        else:
            self._arm_countdown_tick()

    def _cancel_countdown(self):
        if self._countdown_timer is not None:
            self._countdown_timer.cancel()
            self._countdown_timer = None

    def start_game(self, player_id: str):
        """Start right away, cutting short any running countdown."""
        if self.get_player(player_id) is None:
            raise NotInRoom()
        if self.state not in (RoomState.WAITING, RoomState.COUNTDOWN):
            raise GameInProgress("Game already started")
        if len(self.players) < self.config.min_players:
            raise InsufficientPlayers(
                f"At least {self.config.min_players} players are needed to start"
            )

        self._cancel_countdown()
        self.countdown_remaining = 0
        self._deal()

    # ------------------------------------------------------------------
    # Dealing and turns
    # ------------------------------------------------------------------

    def _deal(self):
        self._epoch += 1
        self.state = RoomState.PLAYING
        self.deck.reset()
        self.dealer = Dealer()
        self.last_results = []
        for player in self.players:
            player.reset_for_hand()

        for player in self.players:
            player.add_card(self.deck.deal())
        self.dealer.add_card(self.deck.deal())
        for player in self.players:
            player.add_card(self.deck.deal())
        self.dealer.add_card(self.deck.deal())

        self.current_player_index = 0
        self.players[0].is_active = True
        logger.info(
            f"Room {self.id} hand started with {len(self.players)} players, "
            f"dealer showing {self.dealer.hand[0]}"
        )

        self._broadcast({"action": "gameStarted", "message": "Game started!"})
        self._broadcast_state()
        self._arm_turn_timer()

    def _require_turn(self, player_id: str) -> Player:
        if self.state != RoomState.PLAYING:
            raise NotYourTurn("No hand is in progress")
        player = self.get_player(player_id)
        if player is None:
            raise NotInRoom()
        if player.is_finished():
            raise AlreadyActedThisTurn()
        if player is not self.current_player:
            raise NotYourTurn()
        return player

    def hit(self, player_id: str) -> Card:
        player = self._require_turn(player_id)
        self._cancel_turn_timer()

        card = self.deck.deal()
        player.add_card(card)
        event = {
            "playerId": player.id,
            "playerName": player.name,
            "card": card.to_dict(),
            "score": player.score,
        }

        if player.is_bust:
            player.has_stood = True
            self._broadcast(
                {
                    "action": "playerBust",
                    **event,
                    "message": f"{player.name} busts with {player.score}!",
                }
            )
            self._advance_turn()
        else:
            self._broadcast(
                {"action": "playerHit", **event, "message": f"{player.name} hits"}
            )
            self._broadcast_state()
            self._arm_turn_timer()
        return card

    def stand(self, player_id: str):
        player = self._require_turn(player_id)
        self._cancel_turn_timer()

        player.has_stood = True
        self._broadcast(
            {
                "action": "playerStand",
                "playerId": player.id,
                "playerName": player.name,
                "score": player.score,
                "message": f"{player.name} stands on {player.score}",
            }
        )
        self._advance_turn()

    def _arm_turn_timer(self):
        timeout = self.config.player_timeout
        player = self.current_player
        if not timeout.enabled or player is None:
            return

        self._cancel_turn_timer()
        self._turn_timer = self._scheduler.call_later(
            timeout.duration_seconds,
            partial(self._turn_expired, player.id, self._turn_seq),
        )
        self._broadcast(
            {
                "action": "playerTimeoutStarted",
                "playerId": player.id,
                "seconds": timeout.duration_seconds,
                "message": f"{player.name} has {timeout.duration_seconds} seconds to act",
            }
        )

    def _cancel_turn_timer(self):
        # Bumping the sequence turns an already-queued expiry into a no-op
        self._turn_seq += 1
        if self._turn_timer is not None:
            self._turn_timer.cancel()
            self._turn_timer = None

    def _turn_expired(self, player_id: str, seq: int):
        if seq != self._turn_seq or self.state != RoomState.PLAYING:
            return
        player = self.current_player
        if player is None or player.id != player_id:
            return

        self._turn_timer = None
        player.has_stood = True
        logger.info(f"Player {player.name} timed out in room {self.id}, standing")
        self._broadcast(
            {
                "action": "playerTimeout",
                "playerId": player.id,
                "message": f"{player.name} ran out of time and stands",
            }
        )
        self._advance_turn()

    def _advance_turn(self):
        """
        Hand the turn to the next player after the current index who has
        neither stood nor bust; with nobody left, the dealer plays.
        """
        self._cancel_turn_timer()
        current = self.current_player
        if current is not None:
            current.is_active = False

        for index in range(self.current_player_index + 1, len(self.players)):
            player = self.players[index]
            if not player.is_finished():
                self.current_player_index = index
                player.is_active = True
                self._broadcast(
                    {
                        "action": "playerTurn",
                        "currentPlayer": player.to_dict(),
                        "currentPlayerIndex": index,
                        "players": self.players_dicts(),
                        "message": f"{player.name}'s turn",
                    }
                )
                self._broadcast_state()
                self._arm_turn_timer()
                return

        self.current_player_index = -1
        self._start_dealer_turn()

    # ------------------------------------------------------------------
    # Dealer and settlement
    # ------------------------------------------------------------------

    def _start_dealer_turn(self):
        self.state = RoomState.DEALER_TURN
        self._broadcast({"action": "dealerTurn", "message": "Dealer's turn"})

        if self._dealer_delay > 0:
            self._dealer_timer = self._scheduler.call_later(
                self._dealer_delay, partial(self._play_dealer, self._epoch)
            )
        else:
            self._play_dealer(self._epoch)

    def _play_dealer(self, epoch: int):
        if epoch != self._epoch or self.state != RoomState.DEALER_TURN:
            return
        self._dealer_timer = None

        while True:
            self._broadcast_state(message=f"Dealer has {self.dealer.score}")

            if not dealer_must_draw(self.dealer.hand):
                self._broadcast(
                    {
                        "action": "dealerStand",
                        "dealerScore": self.dealer.score,
                        "message": f"Dealer stands on {self.dealer.score}",
                    }
                )
                self._finish_hand()
                return

            card = self.deck.deal()
            self.dealer.add_card(card)
            self._broadcast(
                {
                    "action": "dealerHit",
                    "card": card.to_dict(),
                    "dealerScore": self.dealer.score,
                    "message": f"Dealer draws {card}",
                }
            )

            if self.dealer.is_bust:
                self._broadcast(
                    {
                        "action": "dealerBust",
                        "dealerScore": self.dealer.score,
                        "message": "Dealer busts!",
                    }
                )
                self._finish_hand()
                return

            if self._dealer_delay > 0:
                self._dealer_timer = self._scheduler.call_later(
                    self._dealer_delay, partial(self._play_dealer, epoch)
                )
                return

    def _finish_hand(self):
        self.state = RoomState.ENDED
        self.last_results = determine_outcomes(self.players, self.dealer)
        lines = [result["line"] for result in self.last_results]

        self._broadcast(
            {
                "action": "gameOver",
                "gamePhase": self.state.value,
                "result": "\n".join(lines),
                "results": self.last_results,
                "players": self.players_dicts(),
                "dealer": self.dealer.to_dict(),
                "message": "Game over",
            }
        )

        log_record = logging.LogRecord(
            name="room",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Hand finished",
            args=(),
            exc_info=None,
        )
        log_record.room_id = self.id
        log_record.game_result = " | ".join(lines)
        logger.handle(log_record)

        # Ready the table for the next hand; the roster stays seated
        self.state = RoomState.WAITING
        self.current_player_index = -1
        for player in self.players:
            player.is_active = False
            player.is_ready = False
        self._maybe_start_countdown()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self):
        """Cancel every pending timer; the room is about to be dropped."""
        self._epoch += 1
        self._cancel_countdown()
        self._cancel_turn_timer()
        if self._dealer_timer is not None:
            self._dealer_timer.cancel()
            self._dealer_timer = None
        self.current_player_index = -1
        self.state = RoomState.WAITING
