"""
Deck construction for Tsunami.

Cards, deck generation, tsunami placement and drawing. Every function
takes an optional ``rng`` (anything with ``randint``/``sample``, e.g. a
seeded ``random.Random``); the module-level ``random`` is used otherwise.

The deck is a list whose first element is the next card drawn and whose
last element is the bottom of the pile.
"""

import random

# ── Card Constants ────────────────────────────────────────────────────

CARD_COLORS = ("red", "blue", "green", "yellow")

FOUNDATION = 0
ROOF = 6

# Values of one player's share of a color: 2 foundations, 1-5, 1 roof
COLOR_SET = (FOUNDATION, FOUNDATION, 1, 2, 3, 4, 5, ROOF)

TSUNAMI_VALUES = (0, 1, 2, 3, 4, 5)
TSUNAMI_COUNT = 3


# ── Cards ─────────────────────────────────────────────────────────────

def regular_card(card_id, color, value):
    return {"id": card_id, "type": "regular", "color": color, "value": value}


def tsunami_card(value):
    return {"id": f"tsunami-{value}", "type": "tsunami", "value": value}


def is_tsunami(card):
    return card["type"] == "tsunami"


def card_name(card):
    """Short display name, e.g. 'red Foundation', 'blue 3', 'Tsunami 4'."""
    if is_tsunami(card):
        return f"Tsunami {card['value']}"
    if card["value"] == FOUNDATION:
        label = "Foundation"
    elif card["value"] == ROOF:
        label = "Roof"
    else:
        label = str(card["value"])
    return f"{card['color']} {label}"


# ── Deck Generation ──────────────────────────────────────────────────

def create_deck(player_count):
    """Return an unshuffled deck of 32 regular cards per player."""
    deck = []
    for _ in range(player_count):
        for color in CARD_COLORS:
            for value in COLOR_SET:
                deck.append(regular_card(f"card-{len(deck) + 1}", color, value))
    return deck


def shuffle_deck(deck, rng=None):
    """Fisher-Yates shuffle into a new list; the input is left as is."""
    rng = rng or random
    shuffled = list(deck)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


# ── Tsunamis ─────────────────────────────────────────────────────────

def create_tsunami_cards():
    """The tsunami pool: one card per value 0-5."""
    return [tsunami_card(value) for value in TSUNAMI_VALUES]


def select_random_tsunami_cards(rng=None, count=TSUNAMI_COUNT):
    """Pick `count` distinct tsunami cards, uniformly without replacement."""
    rng = rng or random
    return rng.sample(create_tsunami_cards(), count)


def insert_tsunami_cards(deck, tsunamis, rng=None):
    """
    Place tsunami cards into a copy of the deck.

    The first tsunami always becomes the bottom card. The rest land at
    uniform random positions after the first quarter of the deck and above
    the bottom card. Indices are drawn up front and applied high-to-low, so
    no insertion shifts an index still to be used.

    For a deck too short to have room after its first quarter, the extra
    tsunamis are stacked directly above the bottom one.

    Returns (new_deck, tsunami_positions).
    """
    rng = rng or random
    result = list(deck)
    if not tsunamis:
        return result, find_tsunami_positions(result)

    quarter = len(deck) // 4
    result.append(tsunamis[0])
    bottom = len(result) - 1
    low = min(quarter + 1, bottom)

    rest = tsunamis[1:]
    indices = sorted((rng.randint(low, bottom) for _ in rest), reverse=True)
    for index, card in zip(indices, rest):
        result.insert(index, card)

    return result, find_tsunami_positions(result)


def find_tsunami_positions(deck):
    return [i for i, card in enumerate(deck) if is_tsunami(card)]


def find_next_tsunami_position(deck):
    """Number of cards that will be drawn before the next tsunami, or None."""
    positions = find_tsunami_positions(deck)
    return positions[0] if positions else None


# ── Drawing ──────────────────────────────────────────────────────────

def draw_cards(deck, count):
    """
    Draw up to `count` regular cards from the top of the deck.

    A tsunami reached before the count is satisfied is taken off the deck
    and ends the draw; it is returned separately and never lands in `drawn`.

    Returns (drawn, remaining, tsunami_or_None).
    """
    drawn = []
    tsunami = None
    position = 0
    while len(drawn) < count and position < len(deck):
        card = deck[position]
        position += 1
        if is_tsunami(card):
            tsunami = card
            break
        drawn.append(card)
    return drawn, list(deck[position:]), tsunami
