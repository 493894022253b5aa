"""
Tests for the session registry and the WebSocket server.

Covers: host/player admission, color assignment, the lobby → playing →
finished phase machine, disconnect handling, archiving, and the
server's routing of private vs. broadcast messages.
"""

import asyncio
import json
import random

import pytest

from tsunami_server.config import Settings, load_settings
from tsunami_server.errors import (
    AuthorizationError, CapacityError, GameError, IntegrityError,
)
from tsunami_server.game_engine import GameEngine
from tsunami_server.server import GameServer
from tsunami_server.session import (
    Session, PLAYER_COLORS, LOBBY, PLAYING, FINISHED,
)
from tsunami_server.tsunami.engine import TsunamiEngine


# ── Helpers ───────────────────────────────────────────────────────────

def make_session(players=0, seed=3, **kwargs):
    session = Session(engine=TsunamiEngine(rng=random.Random(seed)), **kwargs)
    session.add_host("host")
    for i in range(players):
        session.add_player(f"Player{i + 1}", player_id=f"p{i + 1}")
    return session


def finish_session(session):
    """Drive a started session to the end: empty deck, everyone but the mover idle."""
    state = session.game_state
    mover = session.current_player().player_id
    state["deck"] = []
    for p in state["players"]:
        p["is_idle"] = p["player_id"] != mover
    return session.end_turn(mover)


class FakeWebSocket:
    """Stands in for a websockets connection: records sends, replays incoming."""

    def __init__(self, incoming=()):
        self.incoming = list(incoming)
        self.sent = []

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for raw in self.incoming:
            yield raw

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


def make_server(**settings):
    return GameServer(
        settings=Settings(**settings),
        engine_factory=lambda: TsunamiEngine(rng=random.Random(5)),
    )


# ══════════════════════════════════════════════════════════════════════
# Session Registry
# ══════════════════════════════════════════════════════════════════════

class TestSessionRoster:

    def test_single_host(self):
        session = make_session()
        assert session.host_connected is True
        with pytest.raises(CapacityError, match="Host already connected"):
            session.add_host("other")

    def test_host_can_return_after_leaving(self):
        session = make_session()
        assert session.remove_participant("host") == "host"
        assert session.host_connected is False
        assert session.reconnect("host") == "host"
        assert session.host_connected is True

    def test_colors_assigned_in_palette_order(self):
        session = make_session(players=3)
        assert [p.color for p in session.players] == list(PLAYER_COLORS[:3])

    def test_lobby_leave_frees_color(self):
        session = make_session(players=3)
        session.remove_participant("p2")
        assert [p.player_id for p in session.players] == ["p1", "p3"]

        newcomer = session.add_player("Zed")
        assert newcomer.color == "blue"

    def test_full_session_rejected(self):
        session = make_session(players=5)
        with pytest.raises(CapacityError, match="full"):
            session.add_player("Late")

    def test_no_color_left(self):
        session = make_session(players=5)
        session.max_players = 6
        assert session.add_player("Sixth") is None
        assert len(session.players) == 5

    def test_blank_name_gets_default(self):
        session = make_session(players=1)
        assert session.add_player("   ").name == "Player 2"

    def test_bounds_clamped_to_engine(self):
        session = Session(engine=TsunamiEngine(), min_players=1, max_players=9)
        assert session.min_players == 2
        assert session.max_players == 5

    def test_unknown_participant(self):
        session = make_session(players=2)
        assert session.remove_participant("nobody") is None
        assert session.reconnect("nobody") is None


class TestSessionPhases:

    def test_start_requires_host(self):
        session = make_session(players=2)
        with pytest.raises(AuthorizationError, match="Only the host"):
            session.start_game("p1")

    def test_start_requires_min_players(self):
        session = make_session(players=1)
        with pytest.raises(CapacityError, match="at least 2"):
            session.start_game("host")
        assert session.phase == LOBBY

    def test_start_deals_hands(self):
        session = make_session(players=3)
        state = session.start_game("host")
        assert session.phase == PLAYING
        assert state["player_ids"] == ["p1", "p2", "p3"]
        assert [p["color"] for p in state["players"]] == ["red", "blue", "green"]
        for pid in ("p1", "p2", "p3"):
            assert len(session.hand_for(pid)["cards"]) == 5

    def test_cannot_start_twice(self):
        session = make_session(players=2)
        session.start_game("host")
        with pytest.raises(AuthorizationError, match="already started"):
            session.start_game("host")

    def test_no_joining_after_start(self):
        session = make_session(players=2)
        session.start_game("host")
        with pytest.raises(AuthorizationError, match="in progress"):
            session.add_player("Late")

    def test_moves_need_a_running_game(self):
        session = make_session(players=2)
        with pytest.raises(AuthorizationError, match="not in progress"):
            session.end_turn("p1")

    def test_missing_state_is_integrity_error(self):
        session = make_session(players=2)
        session.phase = PLAYING
        with pytest.raises(IntegrityError):
            session.end_turn("p1")

    def test_disconnect_during_game_keeps_seat(self):
        session = make_session(players=2)
        session.start_game("host")
        assert session.remove_participant("p2") == "player"
        assert session.get_player("p2").connected is False
        assert len(session.players) == 2

        session.reconnect("p2")
        assert session.get_player("p2").connected is True

    def test_end_turn_moves_current_player(self):
        session = make_session(players=2)
        session.start_game("host")
        order = session.game_state["turn_order"]
        assert sorted(order) == ["p1", "p2"]
        assert session.current_player().player_id == order[0]
        session.end_turn(order[0])
        assert session.current_player().player_id == order[1]

    def test_hands_come_from_engine_interface(self):
        assert "get_hand" in GameEngine.__abstractmethods__
        session = make_session(players=2)
        assert session.hand_for("p2") is None
        session.start_game("host")
        hand = session.hand_for("p2")
        assert hand["player_id"] == "p2"
        assert hand["cards"] == session.game_state["players"][1]["hand"]

    def test_game_end_finishes_session(self):
        session = make_session(players=3)
        session.start_game("host")
        result = finish_session(session)

        assert result.game_over is True
        assert session.phase == FINISHED
        record = session.archive_record()
        assert [p["player_id"] for p in record["players"]] == ["p1", "p2", "p3"]
        assert set(record["final_scores"]) == {"p1", "p2", "p3"}
        assert record["winner"] == "p1"
        assert record["moves"][-1]["move"] == {"kind": "end_turn"}

    def test_archive_requires_finished(self):
        session = make_session(players=2)
        with pytest.raises(IntegrityError):
            session.archive_record()

    def test_snapshot_is_public(self):
        session = make_session(players=2)
        assert session.snapshot()["game_state"] is None
        session.start_game("host")

        snap = session.snapshot()
        assert snap["phase"] == PLAYING
        assert snap["host_connected"] is True
        assert [p["name"] for p in snap["players"]] == ["Player1", "Player2"]
        assert "deck" not in snap["game_state"]
        assert all("hand" not in p for p in snap["game_state"]["players"])
        json.dumps(snap)


# ══════════════════════════════════════════════════════════════════════
# Configuration
# ══════════════════════════════════════════════════════════════════════

class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("HOST", "PORT", "MIN_PLAYERS", "MAX_PLAYERS", "CLEANUP_DELAY", "LOG_LEVEL"):
            monkeypatch.delenv(f"TSUNAMI_{name}", raising=False)
        settings = load_settings()
        assert settings.port == 8765
        assert settings.cleanup_delay == 30.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TSUNAMI_PORT", "9000")
        monkeypatch.setenv("TSUNAMI_MAX_PLAYERS", "4")
        monkeypatch.setenv("TSUNAMI_LOG_LEVEL", "debug")
        settings = load_settings()
        assert settings.port == 9000
        assert settings.max_players == 4
        assert settings.log_level == "DEBUG"


# ══════════════════════════════════════════════════════════════════════
# Server
# ══════════════════════════════════════════════════════════════════════

class TestServerRooms:

    def test_create_and_join(self):
        server = make_server()
        code, host_id, token = server.create_room()
        assert server.tokens[token] == (code, host_id)

        player, player_token = server.join_room(code, "Alice")
        assert player.color == "red"
        assert server.tokens[player_token] == (code, player.player_id)

    def test_join_unknown_room(self):
        server = make_server()
        with pytest.raises(GameError, match="not found"):
            server.join_room("ZZZZZ", "Alice")

    def test_lobby_leave_drops_token(self):
        server = make_server()
        code, _, _ = server.create_room()
        player, token = server.join_room(code, "Alice")
        assert server.leave_room(code, player.player_id) == "player"
        assert token not in server.tokens

    def test_rooms_are_independent(self):
        server = make_server()
        first, _, _ = server.create_room()
        second, _, _ = server.create_room()
        server.join_room(first, "Alice")
        assert len(server.rooms[first].session.players) == 1
        assert len(server.rooms[second].session.players) == 0


class TestServerMessages:

    def setup_method(self):
        self.server = make_server(cleanup_delay=0)
        self.host = FakeWebSocket()
        self.alice = FakeWebSocket()
        self.bob = FakeWebSocket()

    async def _seat_table(self):
        code, host_id = await self.server._handle_create(self.host)
        _, alice_id = await self.server._handle_join(self.alice, {"room_code": code, "name": "Alice"})
        _, bob_id = await self.server._handle_join(self.bob, {"room_code": code, "name": "Bob"})
        room = self.server.rooms[code]
        return room, host_id, alice_id, bob_id

    def test_start_sends_hands_privately(self):
        async def scenario():
            room, host_id, alice_id, bob_id = await self._seat_table()
            await self.server._handle_start(room, host_id)
            return room, alice_id, bob_id

        room, alice_id, bob_id = asyncio.run(scenario())

        assert self.host.of_type("hand_updated") == []
        assert [m["hand"]["player_id"] for m in self.alice.of_type("hand_updated")] == [alice_id]
        assert [m["hand"]["player_id"] for m in self.bob.of_type("hand_updated")] == [bob_id]
        turn = self.host.of_type("turn_changed")[-1]
        assert turn == {
            "type": "turn_changed", "current_player_id": room.session.game_state["turn_order"][0],
            "turn_number": 1, "round_number": 1,
        }

    def test_non_host_cannot_start(self):
        async def scenario():
            room, _, alice_id, _ = await self._seat_table()
            await self.server._handle_start(room, alice_id)
            return room

        room = asyncio.run(scenario())
        assert room.session.phase == LOBBY
        assert self.alice.of_type("error")[-1]["message"] == "Only the host can start the game"
        assert self.alice.of_type("join_error") == []
        assert self.bob.of_type("error") == []

    async def _started_table(self):
        """Seat and start; returns (room, mover_id, waiting_id) by seat order."""
        room, host_id, alice_id, bob_id = await self._seat_table()
        await self.server._handle_start(room, host_id)
        mover_id, waiting_id = room.session.game_state["turn_order"]
        return room, mover_id, waiting_id

    def socket_for(self, room, participant_id):
        name = room.session.get_player(participant_id).name
        return {"Alice": self.alice, "Bob": self.bob}[name]

    def test_rejection_goes_to_requester_only(self):
        async def scenario():
            room, mover_id, waiting_id = await self._started_table()
            sent_before = len(self.socket_for(room, mover_id).sent)
            await self.server._handle_action(room, waiting_id, {"kind": "end_turn"})
            return room, mover_id, waiting_id, sent_before

        room, mover_id, waiting_id, mover_sent_before = asyncio.run(scenario())
        waiting = self.socket_for(room, waiting_id)
        assert waiting.of_type("action_error")[-1]["message"] == "Not your turn"
        assert len(self.socket_for(room, mover_id).sent) == mover_sent_before
        assert self.host.of_type("action_error") == []

    def test_end_turn_broadcasts(self):
        async def scenario():
            room, mover_id, waiting_id = await self._started_table()
            await self.server._handle_action(room, mover_id, {"kind": "end_turn"})
            return room, mover_id, waiting_id

        room, mover_id, waiting_id = asyncio.run(scenario())
        applied = self.host.of_type("move_applied")[-1]
        assert applied["move"] == {"kind": "end_turn"}
        assert applied["events"]["cards_drawn"] == 1
        waiting = self.socket_for(room, waiting_id)
        assert waiting.of_type("turn_changed")[-1]["current_player_id"] == waiting_id
        mover = self.socket_for(room, mover_id)
        assert len(mover.of_type("hand_updated")[-1]["hand"]["cards"]) == 6

    def test_game_over_archives_and_cleans_up(self):
        archived = []
        self.server.archive = archived.append

        async def scenario():
            room, mover_id, waiting_id = await self._started_table()
            state = room.session.game_state
            state["deck"] = []
            for p in state["players"]:
                p["is_idle"] = p["player_id"] == waiting_id
            await self.server._handle_action(room, mover_id, {"kind": "end_turn"})
            code = room.code
            assert code in self.server.rooms
            await asyncio.sleep(0.01)
            return code

        code = asyncio.run(scenario())
        assert self.host.of_type("game_over")
        assert len(archived) == 1
        assert code not in self.server.rooms
        assert self.server.tokens == {}

    def test_connection_flow(self):
        host = FakeWebSocket([json.dumps({"type": "create"}), "not json", json.dumps({"type": "bogus"})])
        asyncio.run(self.server.handle_connection(host))

        assert host.of_type("created")
        errors = [m["message"] for m in host.of_type("error")]
        assert errors == ["Invalid JSON", "Unknown message type: bogus"]
        # The connection ended, so the host is marked gone
        room = self.server.rooms[host.of_type("created")[0]["room_code"]]
        assert room.session.host_connected is False

    def test_unauthenticated_messages_rejected(self):
        ws = FakeWebSocket([json.dumps({"type": "start"})])
        asyncio.run(self.server.handle_connection(ws))
        assert ws.of_type("error")[0]["message"].startswith("Not authenticated")

    def test_reconnect_with_token(self):
        async def scenario():
            room, host_id, alice_id, _ = await self._seat_table()
            await self.server._handle_start(room, host_id)
            await self.server._handle_leave(room, alice_id)
            assert room.session.get_player(alice_id).connected is False

            token = room.clients[alice_id].token
            again = FakeWebSocket()
            await self.server._handle_auth(again, {"token": token})
            return room, alice_id, again

        room, alice_id, again = asyncio.run(scenario())
        assert room.session.get_player(alice_id).connected is True
        assert again.of_type("authenticated")[0]["role"] == "player"
        assert again.of_type("hand_updated")[0]["hand"]["player_id"] == alice_id
