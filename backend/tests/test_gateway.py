import asyncio
import json

import pytest

from blackjack_rooms.services.gateway import ConnectionGateway

from conftest import FakeWebSocket, StackedDeck, table_order

pytestmark = pytest.mark.unit


async def send(gateway, connection, frame):
    """Deliver one client frame the way the socket endpoint does."""
    await gateway.handle_text(connection, json.dumps(frame))


def join(player_id, name=None):
    return {"action": "joinGame", "playerId": player_id, "playerName": name or player_id.title()}


async def seat_two(gateway, alice_ws, bob_ws):
    """Alice creates a room and Bob joins it by id."""
    alice = gateway.connect(alice_ws)
    bob = gateway.connect(bob_ws)
    await send(
        gateway,
        alice,
        {"action": "createRoom", "playerId": "alice", "playerName": "Alice", "roomId": "R_TABLE"},
    )
    await send(
        gateway,
        bob,
        {"action": "joinRoom", "playerId": "bob", "playerName": "Bob", "roomId": "R_TABLE"},
    )
    return alice, bob


# ──────────────────────────────────────────────────────────────────────────────
# Joining
# ──────────────────────────────────────────────────────────────────────────────


def test_join_game_replies_and_announces_to_others(make_gateway):
    """Test joinGame replies to the joiner and notifies the table"""
    gateway = make_gateway()
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice = gateway.connect(alice_ws)
        bob = gateway.connect(bob_ws)
        await send(gateway, alice, join("alice"))
        await send(gateway, bob, join("bob"))
        return alice, bob

    alice, bob = asyncio.run(scenario())

    assert alice.room_id == bob.room_id
    reply = bob_ws.last("joinedGame")
    assert reply["playerId"] == "bob"
    assert [p["id"] for p in reply["players"]] == ["alice", "bob"]

    announced = alice_ws.last("playerJoined")
    assert announced["player"]["name"] == "Bob"
    assert "playerJoined" not in bob_ws.actions()


def test_missing_player_name_gets_default(make_gateway):
    """Test a missing name falls back to Player_<id>"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(gateway, connection, {"action": "joinGame", "playerId": "abcdef123"})

    asyncio.run(scenario())
    assert ws.last("joinedGame")["playerName"] == "Player_abcde"


def test_second_join_on_same_connection_rejected(make_gateway):
    """Test a seated connection cannot join again"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(gateway, connection, join("alice"))
        await send(gateway, connection, join("alice"))

    asyncio.run(scenario())
    assert ws.last("error")["code"] == "AlreadyJoined"
    assert len(gateway.registry) == 1


def test_join_unknown_room(make_gateway):
    """Test joining a missing room fails"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(
            gateway,
            connection, {"action": "joinRoom", "playerId": "alice", "roomId": "R_NOPE"}
        )
        return connection

    connection = asyncio.run(scenario())
    assert ws.last("error")["code"] == "RoomNotFound"
    assert connection.room_id is None


# ──────────────────────────────────────────────────────────────────────────────
# Malformed input
# ──────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw",
    ["not json", "[1, 2, 3]", '{"playerId": "alice"}', '{"action": "dance"}'],
)
def test_malformed_frames_are_rejected(make_gateway, raw):
    """Test bad frames get a MalformedMessage error"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await gateway.handle_text(connection, raw)

    asyncio.run(scenario())
    assert ws.actions() == ["error"]
    assert ws.sent[0]["code"] == "MalformedMessage"


def test_action_before_joining_is_rejected(make_gateway):
    """Test game actions need a seat"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(gateway, connection, {"action": "playerHit"})

    asyncio.run(scenario())
    assert ws.last("error")["code"] == "NotInRoom"


# ──────────────────────────────────────────────────────────────────────────────
# Rooms
# ──────────────────────────────────────────────────────────────────────────────


def test_create_room_with_config(make_gateway):
    """Test createRoom applies the client config"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(
            gateway,
            connection,
            {
                "action": "createRoom",
                "playerId": "alice",
                "roomConfig": {"maxPlayers": 2, "countdownSeconds": 10, "autoStart": True},
            },
        )
        return connection

    connection = asyncio.run(scenario())
    created = ws.last("roomCreated")
    assert created["roomId"] == connection.room_id
    assert created["roomConfig"]["maxPlayers"] == 2
    assert created["roomConfig"]["countdownSeconds"] == 10
    assert gateway.registry.get(connection.room_id).config.auto_start is True


def test_create_room_with_invalid_config(make_gateway):
    """Test an invalid config creates nothing"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(
            gateway,
            connection,
            {
                "action": "createRoom",
                "playerId": "alice",
                "roomConfig": {"maxPlayers": 2, "minPlayers": 3},
            },
        )

    asyncio.run(scenario())
    assert ws.last("error")["code"] == "MalformedMessage"
    assert len(gateway.registry) == 0


def test_create_room_with_taken_id(make_gateway):
    """Test createRoom with a taken id fails"""
    gateway = make_gateway()
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice = gateway.connect(alice_ws)
        bob = gateway.connect(bob_ws)
        create = {"action": "createRoom", "roomId": "R_TABLE"}
        await send(gateway, alice, {**create, "playerId": "alice"})
        await send(gateway, bob, {**create, "playerId": "bob"})

    asyncio.run(scenario())
    assert bob_ws.last("error")["code"] == "RoomAlreadyExists"
    assert len(gateway.registry.get("R_TABLE").players) == 1


def test_leave_room_and_last_leave_destroys_room(make_gateway):
    """Test leaving and removal of the emptied room"""
    gateway = make_gateway()
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        await send(gateway, alice, {"action": "leaveRoom"})
        assert "R_TABLE" in gateway.registry
        await send(gateway, bob, {"action": "leaveRoom"})
        return alice, bob

    alice, bob = asyncio.run(scenario())
    assert alice_ws.last("roomLeft")["roomId"] == "R_TABLE"
    assert bob_ws.last("playerLeft")["playerId"] == "alice"
    assert alice.room_id is None and bob.room_id is None
    assert "R_TABLE" not in gateway.registry


# ──────────────────────────────────────────────────────────────────────────────
# Play
# ──────────────────────────────────────────────────────────────────────────────


def test_out_of_turn_hit_errors_only_to_requester(make_gateway):
    """Test errors go to the requester only"""
    cards = table_order([["10", "6"], ["9", "7"]], ["10", "7"], draws=["2"])
    gateway = make_gateway(cards=cards)
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        await send(gateway, alice, {"action": "startGame"})
        alice_ws.clear()
        bob_ws.clear()
        await send(gateway, bob, {"action": "playerHit"})

    asyncio.run(scenario())
    assert bob_ws.actions() == ["error"]
    assert bob_ws.sent[0]["code"] == "NotYourTurn"
    assert alice_ws.sent == []


def test_full_hand_is_broadcast_to_the_table(make_gateway):
    """Test every seat sees the whole hand"""
    cards = table_order([["10", "9"], ["10", "6"]], ["10", "7"], draws=["K"])
    gateway = make_gateway(cards=cards)
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        await send(gateway, alice, {"action": "startGame"})
        await send(gateway, alice, {"action": "playerStand"})
        await send(gateway, bob, {"action": "playerHit"})

    asyncio.run(scenario())
    for ws in (alice_ws, bob_ws):
        assert "gameStarted" in ws.actions()
        assert ws.last("playerBust")["playerId"] == "bob"
        results = {r["playerId"]: r["outcome"] for r in ws.last("gameOver")["results"]}
        assert results == {"alice": "Player Wins", "bob": "Dealer Wins"}


def test_disconnect_mid_turn_passes_the_turn(make_gateway):
    """Test a dropped socket passes its turn on"""
    cards = table_order([["10", "6"], ["9", "7"]], ["10", "7"])
    gateway = make_gateway(cards=cards)
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        await send(gateway, alice, {"action": "startGame"})
        bob_ws.clear()
        await gateway.disconnect(alice)

    asyncio.run(scenario())
    assert bob_ws.last("playerDisconnected")["playerId"] == "alice"
    assert bob_ws.last("playerTurn")["currentPlayer"]["id"] == "bob"
    assert gateway.connection_count == 1
    assert [p.id for p in gateway.registry.get("R_TABLE").players] == ["bob"]


def test_disconnect_of_last_player_destroys_room(make_gateway):
    """Test a dropped last player removes the room"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(gateway, connection, join("alice"))
        room_id = connection.room_id
        await gateway.disconnect(connection)
        return room_id

    room_id = asyncio.run(scenario())
    assert room_id not in gateway.registry
    assert gateway.connection_count == 0


def test_ready_reply_goes_to_requester_and_status_to_table(make_gateway):
    """Test ready replies privately and broadcasts status"""
    gateway = make_gateway()
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        alice_ws.clear()
        bob_ws.clear()
        await send(gateway, alice, {"action": "playerReady"})

    asyncio.run(scenario())
    assert "playerReady" in alice_ws.actions()
    assert "playerReady" not in bob_ws.actions()
    assert bob_ws.last("playerReadyStatus")["playerId"] == "alice"


# ──────────────────────────────────────────────────────────────────────────────
# Names
# ──────────────────────────────────────────────────────────────────────────────


def test_name_update_cooldown(make_gateway, clock):
    """Test renames inside the cooldown window are refused"""
    gateway = make_gateway(cooldown_seconds=300)
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    def rename(name):
        return {"action": "updatePlayerName", "name": name}

    async def scenario(alice):
        await send(gateway, alice, rename("Ace"))
        clock.advance(60)
        await send(gateway, alice, rename("Deuce"))
        first_failure = alice_ws.last("nameUpdateFailed")
        clock.advance(240)
        await send(gateway, alice, rename("Trey"))
        return first_failure

    async def run():
        alice, bob = await seat_two(gateway, alice_ws, bob_ws)
        return await scenario(alice)

    failure = asyncio.run(run())
    assert failure["code"] == "NameCooldownActive"
    assert failure["cooldownRemaining"] == 240

    confirmed = alice_ws.last("nameUpdateConfirmed")
    assert confirmed["oldName"] == "Ace"
    assert confirmed["newName"] == "Trey"
    assert confirmed["cooldownSeconds"] == 300
    assert bob_ws.last("playerNameUpdated")["newName"] == "Trey"
    assert gateway.registry.get("R_TABLE").get_player("alice").name == "Trey"


def test_blank_name_is_rejected_without_starting_cooldown(make_gateway):
    """Test a blank name fails without starting the cooldown"""
    gateway = make_gateway()
    ws = FakeWebSocket()

    async def scenario():
        connection = gateway.connect(ws)
        await send(gateway, connection, {"action": "updatePlayerName", "name": "   "})
        await send(gateway, connection, {"action": "updatePlayerName", "name": "Ace"})

    asyncio.run(scenario())
    assert ws.last("nameUpdateFailed")["code"] == "InvalidName"
    assert ws.last("nameUpdateConfirmed")["newName"] == "Ace"


# ──────────────────────────────────────────────────────────────────────────────
# Matching races and real timers
# ──────────────────────────────────────────────────────────────────────────────


def test_join_game_rematches_when_room_starts_while_waiting(make_gateway):
    """Test auto-match moves on when the picked room starts before the lock is free"""
    gateway = make_gateway()
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()

    async def scenario():
        alice = gateway.connect(alice_ws)
        bob = gateway.connect(bob_ws)
        await send(gateway, alice, join("alice"))
        first = gateway.registry.get(alice.room_id)

        await first.lock.acquire()
        joining = asyncio.ensure_future(send(gateway, bob, join("bob")))
        for _ in range(3):
            await asyncio.sleep(0)
        # Bob is parked on the lock; the hand starts underneath him
        first.start_game("alice")
        first.drain()
        first.lock.release()
        await joining
        return alice, bob, first

    alice, bob, first = asyncio.run(scenario())
    assert "error" not in bob_ws.actions()
    assert bob_ws.last("joinedGame")["roomId"] == bob.room_id
    assert bob.room_id != first.id
    assert [p.id for p in first.players] == ["alice"]
    assert len(gateway.registry) == 2


async def wait_for(ws, action, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while action not in ws.actions():
        if loop.time() > deadline:
            raise AssertionError(f"{action} never arrived; got {ws.actions()}")
        await asyncio.sleep(0.01)


def test_timer_driven_hand_reaches_every_socket():
    """Test countdown, timeouts and paced dealer draws are delivered by the timers alone"""
    cards = table_order([["10", "6"], ["9", "7"]], ["10", "7"])
    alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()
    late_hit = FakeWebSocket()

    async def scenario():
        gateway = ConnectionGateway(
            dealer_delay=0.01, deck_factory=lambda: StackedDeck(cards)
        )
        alice = gateway.connect(alice_ws)
        bob = gateway.connect(bob_ws)
        await send(
            gateway,
            alice,
            {
                "action": "createRoom",
                "playerId": "alice",
                "roomId": "R_TIMED",
                "roomConfig": {
                    "countdownSeconds": 1,
                    "playerTimeout": {"enabled": True, "durationSeconds": 1},
                },
            },
        )
        await send(gateway, bob, {"action": "joinRoom", "playerId": "bob", "roomId": "R_TIMED"})
        await send(gateway, alice, {"action": "playerReady"})
        await send(gateway, bob, {"action": "playerReady"})

        # Alice times out; once Bob holds the turn her hit is too late
        await wait_for(bob_ws, "playerTurn")
        alice.websocket = late_hit
        await send(gateway, alice, {"action": "playerHit"})
        alice.websocket = alice_ws

        await wait_for(alice_ws, "gameOver")
        await wait_for(bob_ws, "gameOver")
        await gateway.shutdown()

    asyncio.run(scenario())

    assert late_hit.actions() == ["error"]
    assert late_hit.sent[0]["code"] == "AlreadyActedThisTurn"
    for ws in (alice_ws, bob_ws):
        actions = ws.actions()
        for action in ("countdownStarted", "countdownUpdate", "gameStarted", "dealerStand"):
            assert action in actions
        assert actions.count("playerTimeout") == 2
        assert actions.index("gameStarted") < actions.index("playerTimeout")
        outcomes = [r["outcome"] for r in ws.last("gameOver")["results"]]
        assert outcomes == ["Dealer Wins", "Dealer Wins"]
