"""
Session registry for one game instance.

Tracks the display client ("host"), the player roster with color
assignment, and the lobby → playing → finished phase. Game rules are
delegated to a GameEngine; the session only owns who is at the table and
which phase the table is in.

The session works purely on participant ids. Mapping connections to ids
is the transport's job.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field

from tsunami_server.errors import AuthorizationError, CapacityError, IntegrityError
from tsunami_server.game_engine import GameEngine

logger = logging.getLogger(__name__)

PLAYER_COLORS = ("red", "blue", "green", "yellow", "purple")

LOBBY = "lobby"
PLAYING = "playing"
FINISHED = "finished"


def new_participant_id(prefix="p"):
    return f"{prefix}_{secrets.token_urlsafe(6)}"


@dataclass
class Participant:
    player_id: str
    name: str
    color: str
    connected: bool = True

    def to_dict(self):
        return {
            "player_id": self.player_id,
            "name": self.name,
            "color": self.color,
            "connected": self.connected,
        }


@dataclass
class Session:
    engine: GameEngine
    min_players: int = 2
    max_players: int = 5
    phase: str = LOBBY
    host_id: str = None
    host_connected: bool = False
    players: list = field(default_factory=list)       # [Participant] in turn order
    game_state: dict = None
    started_at: float = None
    finished_at: float = None

    def __post_init__(self):
        low, high = self.engine.player_count_range
        self.min_players = max(self.min_players, low)
        self.max_players = min(self.max_players, high, len(PLAYER_COLORS))

    # ── Roster ───────────────────────────────────────────────────────

    def add_host(self, host_id=None):
        """Attach the display client. Only one may be connected at a time."""
        if self.host_connected:
            raise CapacityError("Host already connected")
        self.host_id = host_id or self.host_id or new_participant_id("h")
        self.host_connected = True
        return self.host_id

    def can_join(self):
        if self.phase != LOBBY:
            raise AuthorizationError("Game already in progress")
        if len(self.players) >= self.max_players:
            raise CapacityError("Game is full")

    def add_player(self, name, player_id=None):
        """
        Seat a new player with the first free palette color.

        Raises if the lobby is closed or full; returns None when every
        color is taken.
        """
        self.can_join()
        color = self._next_available_color()
        if color is None:
            return None

        name = (name or "").strip() or f"Player {len(self.players) + 1}"
        player = Participant(player_id=player_id or new_participant_id(), name=name, color=color)
        self.players.append(player)
        return player

    def get_player(self, player_id):
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    def reconnect(self, participant_id):
        """Re-attach a participant that still holds a seat. Returns its role."""
        if participant_id == self.host_id:
            self.add_host(participant_id)
            return "host"
        player = self.get_player(participant_id)
        if player is None:
            return None
        player.connected = True
        return "player"

    def remove_participant(self, participant_id):
        """
        Handle a participant leaving or dropping.

        Players leaving the lobby give up their seat and color; during a game
        they are only marked disconnected so they can come back.
        Returns "host", "player" or None if the id is unknown.
        """
        if participant_id == self.host_id:
            self.host_connected = False
            return "host"

        player = self.get_player(participant_id)
        if player is None:
            return None
        if self.phase == LOBBY:
            self.players.remove(player)
        else:
            player.connected = False
        return "player"

    def _next_available_color(self):
        used = {p.color for p in self.players}
        for color in PLAYER_COLORS:
            if color not in used:
                return color
        return None

    # ── Phase Machine ────────────────────────────────────────────────

    def can_start(self):
        if self.phase != LOBBY:
            raise AuthorizationError("Game already started")
        if len(self.players) < self.min_players:
            raise CapacityError(f"Need at least {self.min_players} players to start")

    def start_game(self, requester_id):
        if requester_id != self.host_id or not self.host_connected:
            raise AuthorizationError("Only the host can start the game")
        self.can_start()

        self.game_state = self.engine.initial_state(
            [p.player_id for p in self.players],
            [p.name for p in self.players],
            [p.color for p in self.players],
        )
        self.phase = PLAYING
        self.started_at = time.time()
        logger.info("Game started with %d players, %d cards in the deck",
                    len(self.players), len(self.game_state["deck"]))
        return self.game_state

    def apply_move(self, player_id, move):
        """Run a move through the engine and commit the new state."""
        if self.phase != PLAYING:
            raise AuthorizationError("Game not in progress")
        if self.game_state is None:
            raise IntegrityError("Session is playing but has no game state")

        result = self.engine.apply_action(self.game_state, player_id, move)
        self.game_state = result.new_state
        if result.game_over:
            self.phase = FINISHED
            self.finished_at = time.time()
        return result

    def end_turn(self, player_id):
        return self.apply_move(player_id, {"kind": "end_turn"})

    # ── Views ────────────────────────────────────────────────────────

    def current_player(self):
        if self.game_state is None:
            return None
        player_id = self.engine.get_waiting_for(self.game_state)
        return self.get_player(player_id[0]) if player_id else None

    def snapshot(self):
        """Everything every participant may see."""
        return {
            "phase": self.phase,
            "host_connected": self.host_connected,
            "players": [p.to_dict() for p in self.players],
            "min_players": self.min_players,
            "max_players": self.max_players,
            "game_state": (
                self.engine.get_public_view(self.game_state)
                if self.game_state is not None else None
            ),
        }

    def hand_for(self, player_id):
        if self.game_state is None:
            return None
        return self.engine.get_hand(self.game_state, player_id)

    def archive_record(self):
        """Data an external store needs to archive a finished game."""
        if self.phase != FINISHED:
            raise IntegrityError("Only finished sessions can be archived")
        state = self.game_state
        return {
            "players": [p.to_dict() for p in self.players],
            "moves": list(state["moves"]),
            "final_scores": dict(state["final_scores"]),
            "winner": state["winner"],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
