"""
Error taxonomy.

Everything deriving from GameError is a recoverable rejection: the
request is refused, state is left untouched and the reason goes back to
the requester only. IntegrityError marks a broken invariant: a bug,
not a user mistake.
"""


class GameError(ValueError):
    """Base class for rejections that are reported back to the requester."""


class AuthorizationError(GameError):
    """Acting out of turn, or attempting an action the role or phase forbids."""


class MoveRejected(GameError):
    """A move that references missing cards/buildings or breaks a card rule."""


class CapacityError(GameError):
    """Session full, no color left, or not enough players to start."""


class IntegrityError(RuntimeError):
    """Internal state is inconsistent with the sequence of accepted requests."""
