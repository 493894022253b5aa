"""Tsunami resolution: what a surfaced tsunami card does to the table."""


def resolve_tsunami(state, value):
    """
    Wash away every card worth less than `value` from unprotected buildings.

    Surviving cards keep their relative order; washed-away cards go to the
    discard pile. Protected buildings are untouched. Mutates `state` and
    returns one entry per building that lost cards:
    {"player_id", "building_index", "cards"}.
    """
    destroyed = []

    for player in state["players"]:
        for building in player["buildings"]:
            if building["protected"]:
                continue

            lost = [card for card in building["cards"] if card["value"] < value]
            if not lost:
                continue

            building["cards"] = [card for card in building["cards"] if card["value"] >= value]
            state["discard_pile"].extend(lost)
            destroyed.append({
                "player_id": player["player_id"],
                "building_index": building["index"],
                "cards": lost,
            })

    return destroyed
