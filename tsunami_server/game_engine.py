"""
Abstract game engine interface.

The session and the server know nothing about Tsunami's rules. They
route participant actions through these methods and hand the results to
the broadcast layer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ActionResult:
    """Returned by apply_action to tell the session what happened."""
    new_state: dict
    # Human-readable lines for the table log
    log: list[str] = field(default_factory=list)
    # Structured details of the applied move (tsunami, destroyed cards, draws)
    events: dict = field(default_factory=dict)
    # Set when the move ended the turn
    turn_changed: bool = False
    # If the game is over after this action
    game_over: bool = False


class GameEngine(ABC):
    """
    Pure-logic game engine. No networking, no rendering, just rules.

    State is always a plain dict (JSON-serializable) so the server can
    snapshot it and send projections of it over the wire.
    """

    # Subclasses can override to restrict player counts.
    player_count_range: tuple[int, int] = (2, 5)

    @abstractmethod
    def initial_state(self, player_ids: list[str], player_names: list[str],
                      player_colors: list[str]) -> dict:
        """
        Create the starting game state for the given players.
        Called once when a session leaves the lobby.
        """
        ...

    @abstractmethod
    def get_public_view(self, state: dict) -> dict:
        """
        Return the projection every participant (including the display) may see.
        Hand and deck contents are reduced to counts.
        """
        ...

    @abstractmethod
    def get_player_view(self, state: dict, player_id: str) -> dict:
        """
        Return the public view plus the private information of one player.
        """
        ...

    @abstractmethod
    def get_hand(self, state: dict, player_id: str) -> dict:
        """
        Return {"player_id", "cards"} for one player's private hand.
        Sent only to that player.
        """
        ...

    @abstractmethod
    def get_valid_actions(self, state: dict, player_id: str) -> list[dict]:
        """
        Return the action shapes this player can currently submit.
        Empty list means it's not their turn.
        """
        ...

    @abstractmethod
    def apply_action(self, state: dict, player_id: str, action: dict) -> ActionResult:
        """
        Validate and apply a player's action to the state.
        Returns an ActionResult with the new state; the input state is never mutated.
        Raises a GameError (a ValueError) if the action is invalid.
        """
        ...

    @abstractmethod
    def get_waiting_for(self, state: dict) -> list[str]:
        """
        Return list of player_ids who need to act before the game can proceed.
        """
        ...

    @abstractmethod
    def get_phase_info(self, state: dict) -> dict:
        """
        Return a summary of the current turn for display purposes.
        """
        ...
