"""SQLModel сущности PickStats."""

from .token import Token  # noqa: F401
from .token_pick import TokenPick  # noqa: F401

__all__ = [
    "Token",
    "TokenPick",
]
