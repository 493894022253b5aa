"""
Tsunami game engine implementation.

Implements the GameEngine interface as a pure state machine.
All state is a plain dict. No side effects, no networking.

Turn shape:
  any number of build / reinforce / attack moves → end_turn
  (draw, maybe a tsunami, maybe game end) → next player
"""

import logging
import random
from copy import deepcopy

from tsunami_server.errors import AuthorizationError, IntegrityError
from tsunami_server.game_engine import GameEngine, ActionResult
from tsunami_server.tsunami.deck import (
    FOUNDATION, ROOF, card_name, draw_cards,
    find_next_tsunami_position, find_tsunami_positions,
)
from tsunami_server.tsunami.moves import (
    BUILD, REINFORCE, ATTACK, END_TURN,
    validate_move, get_building, cards_from_hand, card_from_hand, find_player,
)
from tsunami_server.tsunami.resolution import resolve_tsunami
from tsunami_server.tsunami.scoring import check_game_end, calculate_scores, get_winner
from tsunami_server.tsunami.state import (
    INITIAL_HAND_SIZE, create_initial_state, advance_turn, current_player,
    has_roof, top_card,
)

logger = logging.getLogger(__name__)


class TsunamiEngine(GameEngine):

    player_count_range = (2, 5)

    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    # ── Setup ─────────────────────────────────────────────────────────

    def initial_state(self, player_ids, player_names, player_colors):
        low, high = self.player_count_range
        if not low <= len(player_ids) <= high:
            raise ValueError(f"Tsunami requires {low}-{high} players")
        return create_initial_state(player_ids, player_names, player_colors, rng=self.rng)

    # ── Views ─────────────────────────────────────────────────────────

    def get_public_view(self, state):
        """Table state with hands and the draw pile reduced to counts."""
        players = []
        for p in state["players"]:
            players.append({
                "player_id": p["player_id"],
                "name": p["name"],
                "color": p["color"],
                "hand_count": len(p["hand"]),
                "buildings": deepcopy(p["buildings"]),
                "score": p["score"],
                "is_idle": p["is_idle"],
                "attacks_this_turn": p["attacks_this_turn"],
            })

        return {
            "game": state["game"],
            "turn": dict(state["turn"]),
            "turn_order": list(state["turn_order"]),
            "current_player_id": current_player(state)["player_id"],
            "players": players,
            "deck_count": len(state["deck"]),
            "cards_until_next_tsunami": find_next_tsunami_position(state["deck"]),
            "discard_count": len(state["discard_pile"]),
            "tsunamis_triggered": list(state["tsunamis_triggered"]),
            "game_over": state["game_over"],
            "winner": state["winner"],
            "final_scores": deepcopy(state["final_scores"]),
        }

    def get_player_view(self, state, player_id):
        """Public view plus this player's own hand."""
        view = self.get_public_view(state)
        view["hand"] = self.get_hand(state, player_id)["cards"]
        return view

    def get_hand(self, state, player_id):
        player = state["players"][self._player_index(state, player_id)]
        return {"player_id": player_id, "cards": deepcopy(player["hand"])}

    def get_valid_actions(self, state, player_id):
        player_idx = self._player_index(state, player_id)
        if state["game_over"]:
            return []
        if current_player(state)["index"] != player_idx:
            return []

        player = state["players"][player_idx]
        actions = []
        actions += self._valid_build_actions(player)
        actions += self._valid_reinforce_actions(player)
        actions += self._valid_attack_actions(state, player)
        actions.append({"kind": END_TURN})
        return actions

    def get_waiting_for(self, state):
        if state["game_over"]:
            return []
        return [current_player(state)["player_id"]]

    def get_phase_info(self, state):
        turn = state["turn"]
        current = current_player(state)["name"]
        if state["game_over"]:
            description = "Game over"
        else:
            description = f"{current}: Build, reinforce, attack or end turn"
        return {
            "phase": "finished" if state["game_over"] else "playing",
            "turn": turn["turn_number"],
            "round": turn["round_number"],
            "current_player": current,
            "description": description,
        }

    # ── Action Dispatch ───────────────────────────────────────────────

    def apply_action(self, state, player_id, action):
        player_idx = self._player_index(state, player_id)
        validate_move(state, player_idx, action)

        state = deepcopy(state)
        kind = action["kind"]
        turn_number = state["turn"]["turn_number"]
        events = {"kind": kind, "player_id": player_id}
        turn_changed = False

        if kind == BUILD:
            log = self._do_build(state, player_idx, action, events)
        elif kind == REINFORCE:
            log = self._do_reinforce(state, player_idx, action, events)
        elif kind == ATTACK:
            log = self._do_attack(state, player_idx, action, events)
        elif kind == END_TURN:
            log = self._do_end_turn(state, player_idx, events)
            turn_changed = True
        else:
            raise IntegrityError(f"Unvalidated move kind reached execution: {kind!r}")

        state["moves"].append({
            "player_id": player_id,
            "turn_number": turn_number,
            "move": deepcopy(action),
        })

        return ActionResult(
            new_state=state,
            log=log,
            events=events,
            turn_changed=turn_changed,
            game_over=state["game_over"],
        )

    # ── Valid Action Generators ───────────────────────────────────────

    def _valid_build_actions(self, player):
        empty = [b["index"] for b in player["buildings"] if not b["cards"]]
        groups = self._value_groups(player["hand"])
        actions = []
        for bi in empty:
            for card in player["hand"]:
                if card["value"] == FOUNDATION:
                    actions.append({"kind": BUILD, "building_index": bi, "card_ids": [card["id"]]})
            for cards in groups.values():
                if len(cards) > 1:
                    actions.append({
                        "kind": BUILD,
                        "building_index": bi,
                        "card_ids": [c["id"] for c in cards],
                    })
        return actions

    def _valid_reinforce_actions(self, player):
        actions = []
        for building in player["buildings"]:
            if not building["cards"] or building["modified_this_turn"]:
                continue
            top_value = top_card(building)["value"]
            for card in player["hand"]:
                if card["value"] > top_value:
                    actions.append({
                        "kind": REINFORCE,
                        "building_index": building["index"],
                        "card_ids": [card["id"]],
                    })
        return actions

    def _valid_attack_actions(self, state, player):
        actions = []
        for target in state["players"]:
            if target["player_id"] == player["player_id"]:
                continue
            for building in target["buildings"]:
                if not building["cards"] or building["protected"]:
                    continue
                top = top_card(building)
                for card in player["hand"]:
                    if card["color"] == top["color"] and card["value"] >= top["value"]:
                        actions.append({
                            "kind": ATTACK,
                            "target_player_id": target["player_id"],
                            "building_index": building["index"],
                            "card_id": card["id"],
                        })
        return actions

    def _value_groups(self, hand):
        groups = {}
        for card in hand:
            groups.setdefault(card["value"], []).append(card)
        return groups

    # ── Action Implementations ────────────────────────────────────────

    def _do_build(self, state, player_idx, action, events):
        player = state["players"][player_idx]
        building = get_building(player, action["building_index"])
        cards = cards_from_hand(player, action["card_ids"])

        self._take_from_hand(player, cards)
        building["cards"].extend(cards)
        building["modified_this_turn"] = True
        if len(cards) == 1 and cards[0]["value"] == FOUNDATION:
            building["protected"] = True

        events["building_index"] = building["index"]
        events["cards"] = cards
        names = ", ".join(card_name(c) for c in cards)
        return [f"{player['name']} builds {names} on building {building['index'] + 1}"]

    def _do_reinforce(self, state, player_idx, action, events):
        player = state["players"][player_idx]
        building = get_building(player, action["building_index"])
        cards = cards_from_hand(player, action["card_ids"])

        self._take_from_hand(player, cards)
        building["cards"].extend(cards)
        building["modified_this_turn"] = True
        log = []
        names = ", ".join(card_name(c) for c in cards)
        log.append(f"{player['name']} reinforces building {building['index'] + 1} with {names}")

        # Roofs protect for the rest of the game
        if any(c["value"] == ROOF for c in cards):
            building["protected"] = True
            log.append(f"Building {building['index'] + 1} of {player['name']} is now roofed")

        events["building_index"] = building["index"]
        events["cards"] = cards
        return log

    def _do_attack(self, state, player_idx, action, events):
        player = state["players"][player_idx]
        target = find_player(state, action["target_player_id"])
        building = get_building(target, action["building_index"])
        card = card_from_hand(player, action["card_id"])

        self._take_from_hand(player, [card])
        knocked = building["cards"].pop()
        state["discard_pile"].extend([card, knocked])
        player["attacks_this_turn"] += 1

        events.update({
            "target_player_id": target["player_id"],
            "building_index": building["index"],
            "card": card,
            "knocked_off": knocked,
        })
        return [
            f"{player['name']} attacks {target['name']}'s building {building['index'] + 1} "
            f"with {card_name(card)}, knocking off {card_name(knocked)}"
        ]

    def _do_end_turn(self, state, player_idx, events):
        player = state["players"][player_idx]

        # Foundation protection lasts one turn; roofed buildings stay protected
        for building in player["buildings"]:
            building["modified_this_turn"] = False
            if not has_roof(building):
                building["protected"] = False

        count = 1 + player["attacks_this_turn"]
        if not player["hand"]:
            count = INITIAL_HAND_SIZE

        drawn, state["deck"], tsunami = draw_cards(state["deck"], count)
        player["hand"].extend(drawn)
        player["attacks_this_turn"] = 0

        events["cards_requested"] = count
        events["cards_drawn"] = len(drawn)
        log = [f"{player['name']} ends the turn and draws {len(drawn)} card(s)"]

        if tsunami is not None:
            value = tsunami["value"]
            destroyed = resolve_tsunami(state, value)
            state["tsunamis_triggered"].append(value)
            events["tsunami_value"] = value
            events["destroyed"] = destroyed
            lost = sum(len(entry["cards"]) for entry in destroyed)
            log.append(f"Tsunami {value}! {lost} card(s) washed away")
            logger.info("Tsunami %d surfaced, %d card(s) destroyed", value, lost)

        state["tsunami_positions"] = find_tsunami_positions(state["deck"])

        if not state["deck"] and not drawn:
            player["is_idle"] = True
            log.append(f"{player['name']} is idle")

        turn = advance_turn(state)
        events["next_player_id"] = current_player(state)["player_id"]
        events["turn_number"] = turn["turn_number"]
        events["round_number"] = turn["round_number"]

        if check_game_end(state):
            log += self._end_game(state)
        return log

    # ── Helpers ───────────────────────────────────────────────────────

    def _player_index(self, state, player_id):
        try:
            return state["player_ids"].index(player_id)
        except ValueError:
            raise AuthorizationError(f"Player {player_id} not in this game")

    def _take_from_hand(self, player, cards):
        ids = {card["id"] for card in cards}
        player["hand"] = [c for c in player["hand"] if c["id"] not in ids]

    def _end_game(self, state):
        """Score the table and close the game."""
        scores = calculate_scores(state)
        winner = get_winner(state)
        state["final_scores"] = scores
        state["winner"] = winner["player_id"]
        state["game_over"] = True

        tied = [p for p in state["players"] if p["score"] == winner["score"]]
        if len(tied) == 1:
            return [f"Game over! {winner['name']} wins with {winner['score']} cards standing!"]
        names = " and ".join(p["name"] for p in tied)
        return [f"Game over! {names} tie with {winner['score']} cards standing!"]
