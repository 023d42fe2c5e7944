"""Проверка админского bearer-токена."""
import hmac

from fastapi import Header, HTTPException

import config


def verify_admin_token(token: str) -> bool:
    if not token or not config.ADMIN_TOKEN:
        return False
    return hmac.compare_digest(token.encode(), config.ADMIN_TOKEN.encode())


def require_admin(authorization: str | None = Header(None)) -> None:
    """Зависимость FastAPI для админских маршрутов."""
    if not config.ADMIN_TOKEN:
        raise HTTPException(status_code=503, detail="Admin API disabled: ADMIN_TOKEN is not set")
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    token = authorization.removeprefix("Bearer ").strip()
    if not verify_admin_token(token):
        raise HTTPException(status_code=401, detail="Invalid token")
