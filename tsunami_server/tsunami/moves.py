"""
Move shapes and validation for Tsunami.

A move is a dict tagged by ``kind``:

  {"kind": "build",     "building_index": 2, "card_ids": ["card-7"]}
  {"kind": "reinforce", "building_index": 2, "card_ids": ["card-9", "card-40"]}
  {"kind": "attack",    "target_player_id": "p_x", "building_index": 0, "card_id": "card-3"}
  {"kind": "end_turn"}

Validation never touches state. It raises a GameError naming the first
broken rule; the engine only executes moves that got through here.
"""

from tsunami_server.errors import AuthorizationError, MoveRejected
from tsunami_server.tsunami.deck import FOUNDATION
from tsunami_server.tsunami.state import current_player, top_card

BUILD = "build"
REINFORCE = "reinforce"
ATTACK = "attack"
END_TURN = "end_turn"


def build_move(building_index, card_ids):
    return {"kind": BUILD, "building_index": building_index, "card_ids": list(card_ids)}


def reinforce_move(building_index, card_ids):
    return {"kind": REINFORCE, "building_index": building_index, "card_ids": list(card_ids)}


def attack_move(target_player_id, building_index, card_id):
    return {
        "kind": ATTACK,
        "target_player_id": target_player_id,
        "building_index": building_index,
        "card_id": card_id,
    }


def end_turn_move():
    return {"kind": END_TURN}


# ── Validation ────────────────────────────────────────────────────────

def validate_move(state, player_idx, move):
    """Raise AuthorizationError or MoveRejected if `move` can't be played now."""
    if state["game_over"]:
        raise AuthorizationError("Game is over")
    if current_player(state)["index"] != player_idx:
        raise AuthorizationError("Not your turn")
    if not isinstance(move, dict):
        raise MoveRejected("Move must be an object")

    player = state["players"][player_idx]
    kind = move.get("kind")

    if kind == BUILD:
        validate_build(player, move)
    elif kind == REINFORCE:
        validate_reinforce(player, move)
    elif kind == ATTACK:
        validate_attack(state, player, move)
    elif kind == END_TURN:
        pass
    else:
        raise MoveRejected(f"Unknown move kind: {kind}")


def validate_build(player, move):
    building = get_building(player, move.get("building_index"))
    if building["cards"]:
        raise MoveRejected("Building is not empty")

    cards = cards_from_hand(player, move.get("card_ids"))
    if len(cards) == 1:
        if cards[0]["value"] != FOUNDATION:
            raise MoveRejected("Single card must be a foundation")
    elif not same_value(cards):
        raise MoveRejected("Multiple cards must have the same value")


def validate_reinforce(player, move):
    building = get_building(player, move.get("building_index"))
    if not building["cards"]:
        raise MoveRejected("Building is empty")
    if building["modified_this_turn"]:
        raise MoveRejected("Building already modified this turn")

    cards = cards_from_hand(player, move.get("card_ids"))
    if cards[0]["value"] <= top_card(building)["value"]:
        raise MoveRejected("Reinforcement must be higher than the top card")
    if not same_value(cards):
        raise MoveRejected("Multiple cards must have the same value")


def validate_attack(state, player, move):
    target_id = move.get("target_player_id")
    if target_id == player["player_id"]:
        raise MoveRejected("Cannot attack your own buildings")
    target = find_player(state, target_id)
    if target is None:
        raise MoveRejected("Target player not found")

    building = get_building(target, move.get("building_index"))
    if not building["cards"]:
        raise MoveRejected("Target building is empty")
    if building["protected"]:
        raise MoveRejected("Target building is protected")

    card = card_from_hand(player, move.get("card_id"))
    top = top_card(building)
    if card["color"] != top["color"]:
        raise MoveRejected("Attack card must match the target building's color")
    if card["value"] < top["value"]:
        raise MoveRejected("Attack card must be equal to or higher than the target")


# ── Helpers ───────────────────────────────────────────────────────────

def find_player(state, player_id):
    for player in state["players"]:
        if player["player_id"] == player_id:
            return player
    return None


def get_building(player, index):
    buildings = player["buildings"]
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(buildings):
        raise MoveRejected("Building does not exist")
    return buildings[index]


def card_from_hand(player, card_id):
    if not isinstance(card_id, str):
        raise MoveRejected("Invalid card id")
    for card in player["hand"]:
        if card["id"] == card_id:
            return card
    raise MoveRejected("Card is not in your hand")


def cards_from_hand(player, card_ids):
    """Resolve card ids against the hand, keeping the submitted order."""
    if not isinstance(card_ids, list) or not card_ids:
        raise MoveRejected("No cards selected")
    if not all(isinstance(card_id, str) for card_id in card_ids):
        raise MoveRejected("Invalid card id")
    if len(set(card_ids)) != len(card_ids):
        raise MoveRejected("The same card was selected twice")
    by_id = {card["id"]: card for card in player["hand"]}
    if any(card_id not in by_id for card_id in card_ids):
        raise MoveRejected("Player does not have all required cards")
    return [by_id[card_id] for card_id in card_ids]


def same_value(cards):
    return all(card["value"] == cards[0]["value"] for card in cards)
