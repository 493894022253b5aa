"""
Constants and state helpers for Tsunami.

Player and building creation, initial state, and the turn counter machine.
"""

import random

from tsunami_server.tsunami.deck import (
    ROOF, create_deck, shuffle_deck, draw_cards,
    select_random_tsunami_cards, insert_tsunami_cards,
)

BUILDINGS_PER_PLAYER = 6
INITIAL_HAND_SIZE = 5


# ── Player / Building Creation ───────────────────────────────────────

def create_building(index):
    return {
        "index": index,
        "cards": [],                # bottom → top
        "protected": False,
        "modified_this_turn": False,
    }


def create_player(index, player_id, name, color):
    """Create initial player state."""
    return {
        "index": index,
        "player_id": player_id,
        "name": name,
        "color": color,
        "hand": [],
        "buildings": [create_building(i) for i in range(BUILDINGS_PER_PLAYER)],
        "score": 0,
        "is_idle": False,
        "attacks_this_turn": 0,
    }


def create_initial_state(player_ids, player_names, player_colors, rng=None):
    """
    Build the full initial game state.

    Hands are dealt from the shuffled regular deck before the tsunamis are
    inserted, so an opening hand can never hold one. Seating is shuffled
    separately: `turn_order` lists player ids in play order and
    `current_player_index` points into it.
    """
    rng = rng or random
    deck = shuffle_deck(create_deck(len(player_ids)), rng)

    players = []
    for i, (pid, name, color) in enumerate(zip(player_ids, player_names, player_colors)):
        player = create_player(i, pid, name, color)
        player["hand"], deck, _ = draw_cards(deck, INITIAL_HAND_SIZE)
        players.append(player)

    tsunamis = select_random_tsunami_cards(rng)
    deck, positions = insert_tsunami_cards(deck, tsunamis, rng)

    turn_order = list(player_ids)
    rng.shuffle(turn_order)

    return {
        "game": "tsunami",
        "player_ids": list(player_ids),
        "players": players,
        "turn_order": turn_order,
        "turn": {
            "current_player_index": 0,
            "turn_number": 1,
            "round_number": 1,
        },
        "deck": deck,
        "discard_pile": [],
        "tsunami_values": [card["value"] for card in tsunamis],
        "tsunami_positions": positions,
        "tsunamis_triggered": [],
        "moves": [],
        "game_over": False,
        "winner": None,
        "final_scores": None,
    }


# ── Query Helpers ─────────────────────────────────────────────────────

def top_card(building):
    return building["cards"][-1] if building["cards"] else None


def has_roof(building):
    return any(card["value"] == ROOF for card in building["cards"])


def current_player(state):
    player_id = state["turn_order"][state["turn"]["current_player_index"]]
    return state["players"][state["player_ids"].index(player_id)]


# ── Turn Machine ──────────────────────────────────────────────────────

def advance_turn(state):
    """
    Pass the turn to the next seat in `turn_order`.

    The turn number always goes up; the round number goes up when play
    wraps back to the first seat. Returns the updated turn dict.
    """
    turn = state["turn"]
    turn["current_player_index"] = (turn["current_player_index"] + 1) % len(state["turn_order"])
    turn["turn_number"] += 1
    if turn["current_player_index"] == 0:
        turn["round_number"] += 1
    return turn
