"""
Tsunami scoring.

A player's score is the number of cards still standing in their six
buildings when the game ends.
"""


def check_game_end(state):
    """The game ends once the deck is exhausted and every player is idle."""
    if state["deck"]:
        return False
    return all(player["is_idle"] for player in state["players"])


def building_score(player):
    return sum(len(building["cards"]) for building in player["buildings"])


def calculate_scores(state):
    """Write each player's score back into state and return {player_id: score}."""
    scores = {}
    for player in state["players"]:
        player["score"] = building_score(player)
        scores[player["player_id"]] = player["score"]
    return scores


def get_winner(state):
    """
    Return the player with the highest score.

    Ties go to whoever comes first in roster order.
    """
    calculate_scores(state)
    winner = state["players"][0]
    for player in state["players"][1:]:
        if player["score"] > winner["score"]:
            winner = player
    return winner
