"""
WebSocket server for Tsunami.

Handles rooms, connections and message routing. Each room owns one
Session; all rule decisions happen in the session's engine. This module
only maps connections to participants and broadcasts results.
"""

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass, field

import websockets

from tsunami_server.config import Settings, load_settings
from tsunami_server.errors import GameError
from tsunami_server.session import Session, new_participant_id
from tsunami_server.tsunami.engine import TsunamiEngine

logger = logging.getLogger(__name__)


def generate_room_code():
    """Generate a short, human-friendly room code."""
    chars = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I/O/0/1 for clarity
    return "".join(secrets.choice(chars) for _ in range(5))


def generate_token():
    return secrets.token_urlsafe(24)


@dataclass
class Client:
    participant_id: str
    token: str
    websocket: object = None


@dataclass
class Room:
    code: str
    session: Session
    clients: dict = field(default_factory=dict)       # participant_id -> Client
    created_at: float = field(default_factory=time.time)


class GameServer:
    """
    Manages rooms, participant connections, and message routing.
    """

    def __init__(self, settings=None, engine_factory=TsunamiEngine, archive=None):
        self.settings = settings or Settings()
        self.engine_factory = engine_factory
        # Called with Session.archive_record() when a game finishes
        self.archive = archive
        self.rooms: dict[str, Room] = {}                # code -> Room
        self.tokens: dict[str, tuple[str, str]] = {}    # token -> (room_code, participant_id)

    # ── Room Management ──────────────────────────────────────────────

    def create_room(self):
        """Open a new room with the caller as its display host."""
        code = generate_room_code()
        while code in self.rooms:
            code = generate_room_code()

        session = Session(
            engine=self.engine_factory(),
            min_players=self.settings.min_players,
            max_players=self.settings.max_players,
        )
        host_id = session.add_host(new_participant_id("h"))
        room = Room(code=code, session=session)
        token = self._register_client(room, host_id)

        self.rooms[code] = room
        logger.info("Room %s created", code)
        return code, host_id, token

    def join_room(self, code, name):
        room = self.rooms.get(code)
        if room is None:
            raise GameError(f"Room {code} not found")

        player = room.session.add_player(name)
        if player is None:
            raise GameError("No colors available")

        token = self._register_client(room, player.player_id)
        logger.info("%s joined room %s as %s", player.name, code, player.color)
        return player, token

    def start_game(self, code, requester_id):
        room = self.rooms.get(code)
        if room is None:
            raise GameError("Room not found")
        return room.session.start_game(requester_id)

    def leave_room(self, code, participant_id):
        """Detach a participant; lobby players lose their seat and token."""
        room = self.rooms.get(code)
        if room is None:
            return None
        role = room.session.remove_participant(participant_id)
        client = room.clients.get(participant_id)
        if client is not None:
            client.websocket = None
            if role == "player" and room.session.get_player(participant_id) is None:
                del room.clients[participant_id]
                self.tokens.pop(client.token, None)
        return role

    def _register_client(self, room, participant_id):
        token = generate_token()
        room.clients[participant_id] = Client(participant_id=participant_id, token=token)
        self.tokens[token] = (room.code, participant_id)
        return token

    def _schedule_cleanup(self, code):
        loop = asyncio.get_running_loop()
        loop.call_later(self.settings.cleanup_delay, self._cleanup_room, code)

    def _cleanup_room(self, code):
        room = self.rooms.pop(code, None)
        if room is None:
            return
        for client in room.clients.values():
            self.tokens.pop(client.token, None)
        logger.info("Room %s cleaned up", code)

    # ── WebSocket Handler ────────────────────────────────────────────

    async def handle_connection(self, websocket):
        """Main handler for a single WebSocket connection."""
        room_code = None
        participant_id = None

        try:
            async for raw in websocket:
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    await self._send(websocket, {"type": "error", "message": "Invalid JSON"})
                    continue
                if not isinstance(msg, dict):
                    await self._send(websocket, {"type": "error", "message": "Messages must be objects"})
                    continue

                msg_type = msg.get("type")

                # ── Pre-auth messages ────────────────────────────
                if msg_type in ("create", "join", "auth", "reconnect"):
                    if msg_type == "create":
                        result = await self._handle_create(websocket)
                    elif msg_type == "join":
                        result = await self._handle_join(websocket, msg)
                    else:
                        result = await self._handle_auth(websocket, msg)
                    if result:
                        room_code, participant_id = result
                    continue

                # ── Authenticated messages ───────────────────────
                if not room_code or not participant_id:
                    await self._send(websocket, {"type": "error", "message": "Not authenticated. Send 'auth' first."})
                    continue

                room = self.rooms.get(room_code)
                if not room:
                    await self._send(websocket, {"type": "error", "message": "Room no longer exists"})
                    continue

                try:
                    if msg_type == "start":
                        await self._handle_start(room, participant_id)

                    elif msg_type == "action":
                        await self._handle_action(room, participant_id, msg.get("action", {}))

                    elif msg_type == "get_state":
                        await self._send_session_state(room, participant_id)

                    elif msg_type == "leave":
                        await self._handle_leave(room, participant_id)
                        room_code, participant_id = None, None

                    else:
                        await self._send(websocket, {"type": "error", "message": f"Unknown message type: {msg_type}"})
                except Exception:
                    logger.exception("Failed to handle %r in room %s", msg_type, room_code)
                    await self._send(websocket, {"type": "error", "message": "Internal server error"})

        except websockets.ConnectionClosed:
            pass
        finally:
            if room_code and participant_id:
                room = self.rooms.get(room_code)
                if room and room.clients.get(participant_id) is not None:
                    if room.clients[participant_id].websocket is websocket:
                        await self._handle_leave(room, participant_id)

    # ── Message Handlers ─────────────────────────────────────────────

    async def _handle_create(self, websocket):
        code, host_id, token = self.create_room()
        room = self.rooms[code]
        room.clients[host_id].websocket = websocket
        await self._send(websocket, {
            "type": "created",
            "room_code": code,
            "participant_id": host_id,
            "token": token,
            "role": "host",
        })
        await self._broadcast(room, {"type": "host_connected"})
        await self._broadcast_session_state(room)
        return code, host_id

    async def _handle_join(self, websocket, msg):
        code = str(msg.get("room_code", "")).upper()
        name = msg.get("name", "")
        try:
            player, token = self.join_room(code, name)
        except GameError as e:
            logger.debug("Join to %s rejected: %s", code, e)
            await self._send(websocket, {"type": "join_error", "message": str(e)})
            return None

        room = self.rooms[code]
        room.clients[player.player_id].websocket = websocket
        await self._send(websocket, {
            "type": "joined",
            "room_code": code,
            "participant_id": player.player_id,
            "token": token,
            "role": "player",
            "player": player.to_dict(),
        })
        await self._broadcast(room, {"type": "player_joined", "player": player.to_dict()})
        await self._broadcast_session_state(room)
        return code, player.player_id

    async def _handle_auth(self, websocket, msg):
        """Bind this websocket to a participant that already holds a token."""
        token = msg.get("token")
        if not token or token not in self.tokens:
            await self._send(websocket, {"type": "error", "message": "Invalid token"})
            return None

        room_code, participant_id = self.tokens[token]
        room = self.rooms.get(room_code)
        if not room or participant_id not in room.clients:
            await self._send(websocket, {"type": "error", "message": "Room or participant not found"})
            return None

        try:
            role = room.session.reconnect(participant_id)
        except GameError as e:
            await self._send(websocket, {"type": "join_error", "message": str(e)})
            return None
        if role is None:
            await self._send(websocket, {"type": "error", "message": "Room or participant not found"})
            return None

        room.clients[participant_id].websocket = websocket
        await self._send(websocket, {
            "type": "authenticated",
            "room_code": room_code,
            "participant_id": participant_id,
            "role": role,
            "phase": room.session.phase,
        })
        if role == "host":
            await self._broadcast(room, {"type": "host_connected"})
        await self._broadcast_session_state(room)
        await self._send_hand(room, participant_id)
        return room_code, participant_id

    async def _handle_start(self, room, participant_id):
        try:
            self.start_game(room.code, participant_id)
        except GameError as e:
            logger.debug("Start of %s rejected: %s", room.code, e)
            await self._send_to(room, participant_id, {"type": "error", "message": str(e)})
            return

        await self._broadcast(room, {"type": "game_started", "message": "Game has begun!"})
        # Hands go privately to their owners
        for player in room.session.players:
            await self._send_hand(room, player.player_id)
        await self._broadcast_turn(room)
        await self._broadcast_session_state(room)

    async def _handle_action(self, room, participant_id, action):
        try:
            result = room.session.apply_move(participant_id, action)
        except GameError as e:
            logger.debug("Move by %s in %s rejected: %s", participant_id, room.code, e)
            await self._send_to(room, participant_id, {"type": "action_error", "message": str(e)})
            return

        await self._broadcast(room, {
            "type": "move_applied",
            "player_id": participant_id,
            "move": action,
            "events": result.events,
            "log": result.log,
        })
        await self._send_hand(room, participant_id)

        if result.game_over:
            await self._finish(room)
            return

        if result.turn_changed:
            await self._broadcast_turn(room)
        await self._broadcast_session_state(room)

    async def _handle_leave(self, room, participant_id):
        role = self.leave_room(room.code, participant_id)
        if role == "host":
            logger.info("Host left room %s", room.code)
            await self._broadcast(room, {"type": "host_disconnected"})
        elif role == "player":
            logger.info("Player %s left room %s", participant_id, room.code)
            await self._broadcast(room, {"type": "player_left", "player_id": participant_id})
        await self._broadcast_session_state(room)

    async def _finish(self, room):
        session = room.session
        record = session.archive_record()
        winner = session.get_player(record["winner"])
        logger.info("Room %s finished; winner %s with %d",
                    room.code, winner.name, record["final_scores"][winner.player_id])

        await self._broadcast(room, {
            "type": "game_over",
            "winner": record["winner"],
            "final_scores": record["final_scores"],
        })
        await self._broadcast_session_state(room)

        if self.archive is not None:
            self.archive(record)
        self._schedule_cleanup(room.code)

    # ── Broadcasting ─────────────────────────────────────────────────

    async def _send(self, websocket, data):
        try:
            await websocket.send(json.dumps(data))
        except websockets.ConnectionClosed:
            pass

    async def _send_to(self, room, participant_id, data):
        client = room.clients.get(participant_id)
        if client and client.websocket:
            await self._send(client.websocket, data)

    async def _broadcast(self, room, data):
        """Send the same message to every connected participant in a room."""
        for client in list(room.clients.values()):
            if client.websocket:
                await self._send(client.websocket, data)

    async def _broadcast_session_state(self, room):
        await self._broadcast(room, {"type": "session_state", "session": room.session.snapshot()})

    async def _send_session_state(self, room, participant_id):
        await self._send_to(room, participant_id, {"type": "session_state", "session": room.session.snapshot()})
        await self._send_hand(room, participant_id)

    async def _send_hand(self, room, participant_id):
        """Send a player their private hand. Never broadcast."""
        if room.session.get_player(participant_id) is None:
            return
        hand = room.session.hand_for(participant_id)
        if hand is not None:
            await self._send_to(room, participant_id, {"type": "hand_updated", "hand": hand})

    async def _broadcast_turn(self, room):
        current = room.session.current_player()
        if current is None:
            return
        turn = room.session.game_state["turn"]
        await self._broadcast(room, {
            "type": "turn_changed",
            "current_player_id": current.player_id,
            "turn_number": turn["turn_number"],
            "round_number": turn["round_number"],
        })


# ── Server Entry Point ───────────────────────────────────────────────

async def run_server(settings=None):
    settings = settings or load_settings()
    server = GameServer(settings)

    async with websockets.serve(server.handle_connection, settings.host, settings.port):
        logger.info("Tsunami server running on ws://%s:%d", settings.host, settings.port)
        await asyncio.Future()  # run forever


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_server(settings))


if __name__ == "__main__":
    main()
