import pytest
from fastapi.testclient import TestClient

from blackjack_rooms.main import app
from blackjack_rooms.core.limiter import limiter
from blackjack_rooms.routes.deps import get_gateway
from blackjack_rooms.schemas.room import RoomConfig
from blackjack_rooms.services.deck import Card, Deck, Rank, Suit
from blackjack_rooms.services.gateway import ConnectionGateway
from blackjack_rooms.services.names import NameCooldowns
from blackjack_rooms.services.registry import RoomRegistry
from blackjack_rooms.services.room import Room

# ──────────────────────────────────────────────────────────────────────────────
# Deterministic building blocks
# ──────────────────────────────────────────────────────────────────────────────

_SUITS = [Suit.SPADES, Suit.HEARTS, Suit.CLUBS, Suit.DIAMONDS]


def make_cards(*ranks: str) -> list:
    """Cards from rank strings ("A", "10", "K"...), suits cycling so none repeat."""
    return [Card(Rank(rank), _SUITS[i % 4]) for i, rank in enumerate(ranks)]


def table_order(player_hands, dealer_hand, draws=()) -> list:
    """
    Deal order for an initial round: first card to each player, dealer,
    second card to each player, dealer, then any further draws.
    """
    order = [hand[0] for hand in player_hands] + [dealer_hand[0]]
    order += [hand[1] for hand in player_hands] + [dealer_hand[1]]
    order += list(draws)
    return make_cards(*order)


class StackedDeck(Deck):
    """A deck that always deals the given cards, in order, after every reset."""

    def __init__(self, cards):
        self._preset = list(cards)
        super().__init__()

    def reset(self):
        if not self._preset:
            super().reset()
            return
        self.cards = list(reversed(self._preset))


class ManualTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Records armed timers; tests fire them explicitly."""

    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self):
        timer = self.pending[0]
        timer.fired = True
        timer.callback()
        return timer

    def run_until_idle(self, limit=500):
        fired = 0
        while self.pending and fired < limit:
            self.fire_next()
            fired += 1
        return fired


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeWebSocket:
    """Stands in for a Starlette WebSocket; records everything sent."""

    def __init__(self):
        self.sent = []

    async def send_json(self, message):
        self.sent.append(message)

    def actions(self):
        return [m["action"] for m in self.sent]

    def last(self, action):
        for message in reversed(self.sent):
            if message["action"] == action:
                return message
        raise AssertionError(f"{action} not sent; got {self.actions()}")

    def clear(self):
        self.sent = []


def room_config(**overrides) -> RoomConfig:
    """RoomConfig with test-friendly defaults; timeouts on, countdown short."""
    values = {
        "max_players": 6,
        "min_players": 1,
        "countdown_seconds": 3,
        "auto_start": False,
        "player_timeout": {"enabled": True, "duration_seconds": 30},
    }
    values.update(overrides)
    return RoomConfig(**values)


# ──────────────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Disable the rate limiter for all tests so rapid requests don't return 429."""
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_room(scheduler):
    def _make(config=None, cards=None, dealer_delay=0.0, room_id="R_00001"):
        deck = StackedDeck(cards) if cards is not None else Deck()
        return Room(
            room_id,
            config or room_config(),
            scheduler,
            deck=deck,
            dealer_delay=dealer_delay,
        )

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_gateway(scheduler, clock):
    def _make(cards=None, cooldown_seconds=300):
        registry = RoomRegistry(
            scheduler_factory=lambda room_id: scheduler,
            deck_factory=(lambda: StackedDeck(cards)) if cards is not None else Deck,
        )
        return ConnectionGateway(
            registry=registry,
            name_cooldowns=NameCooldowns(cooldown_seconds, clock=clock),
        )

    return _make


@pytest.fixture
def gateway_override():
    """Install an isolated gateway (instant dealer) for the app under test."""
    def _install(**kwargs):
        kwargs.setdefault("dealer_delay", 0)
        gateway = ConnectionGateway(**kwargs)
        app.dependency_overrides[get_gateway] = lambda: gateway
        return gateway

    yield _install
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
