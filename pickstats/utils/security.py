"""JWT-утилиты для служебного HTTP."""

from __future__ import annotations

import time
from typing import Any, Dict

import jwt
from jwt import InvalidTokenError

from config.settings import OpsSettings


def issue_ops_token(settings: OpsSettings, subject: str, ttl_minutes: int | None = None) -> str:
    """Выдаёт короткоживущий JWT для ручного запуска цикла."""

    ttl = ttl_minutes or settings.jwt_ttl_minutes
    now = int(time.time())
    payload = {
        "sub": subject,
        "scope": "ops",
        "iat": now,
        "exp": now + ttl * 60,
    }
    return jwt.encode(payload, _secret(settings), algorithm=settings.jwt_algorithm)


def decode_ops_token(settings: OpsSettings, token: str) -> Dict[str, Any]:
    """Валидирует и возвращает payload JWT."""

    try:
        payload = jwt.decode(token, _secret(settings), algorithms=[settings.jwt_algorithm])
    except InvalidTokenError as exc:
        raise ValueError("Недействительный ops-токен") from exc
    if payload.get("scope") != "ops":
        raise ValueError("Токен не даёт доступа к ops API")
    return payload


def _secret(settings: OpsSettings) -> str:
    secret = settings.jwt_secret.get_secret_value()
    if not secret:
        raise ValueError("OPS__JWT_SECRET не задан, ops API закрыт")
    return secret


__all__ = ["decode_ops_token", "issue_ops_token"]
