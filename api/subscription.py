"""Публичная подписка: GET /sub/{token} -> base64 ссылок + заголовки с расходом трафика."""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

import config
from api.routes import get_db
from db.crud import get_account_by_token, list_enabled_inbounds
from services.links import build_subscription

logger = logging.getLogger(__name__)
router = APIRouter(tags=["subscription"])


@router.get("/sub/{token}", response_class=PlainTextResponse)
def get_subscription(token: str, db: Session = Depends(get_db)):
    """Читает только уже сохранённое состояние: демон здесь не трогаем."""
    account = get_account_by_token(db, token)
    if not account or account.status != "active":
        return PlainTextResponse("Not found", status_code=404)
    body, headers = build_subscription(list_enabled_inbounds(db), account, config.SERVER_ADDRESS)
    logger.info("/sub: account_id=%s subscription served", account.id)
    return PlainTextResponse(body, headers=headers)
