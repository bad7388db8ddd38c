"""Репозитории для работы с БД."""

from .pick_repo import list_pending_picks, list_picks, upsert_pick
from .storage import PickStorage, WriteCallback
from .token_repo import get_token, list_tokens, upsert_token

__all__ = [
    "PickStorage",
    "WriteCallback",
    "get_token",
    "list_pending_picks",
    "list_picks",
    "list_tokens",
    "upsert_pick",
    "upsert_token",
]
