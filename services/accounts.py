"""Аккаунты: создание, статус, лимит, удаление. Каждая мутация заканчивается пересборкой конфига."""
import logging
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.crud import get_account, get_account_by_username, soft_delete
from db.models import ACCOUNT_STATUSES, Account
from services.exceptions import AccountValidationError, ConflictError, NotFoundError
from services.quota import expire_if_over_quota, reactivate_if_within_quota
from services.reload import ReloadOutcome, apply_config

logger = logging.getLogger(__name__)

STATS_SEPARATOR = ">>>"


def generate_token() -> str:
    return str(uuid4())


def _require(db: Session, account_id: int) -> Account:
    account = get_account(db, account_id)
    if not account:
        raise NotFoundError("Account", account_id)
    return account


def create_account(
    db: Session,
    username: str,
    telegram_id: int = 0,
    telegram_username: str | None = None,
    traffic_limit: int = 0,
) -> tuple[Account, ReloadOutcome]:
    """
    Новый аккаунт (одобренная заявка или админ). UUID и токен подписки генерируются здесь.
    username - метка в stats sing-box, поэтому без разделителя '>>>'.
    """
    username = (username or "").strip()
    if not username:
        raise AccountValidationError("username is required")
    if STATS_SEPARATOR in username:
        raise AccountValidationError(f"username must not contain '{STATS_SEPARATOR}'")
    if traffic_limit < 0:
        raise AccountValidationError("traffic_limit must be >= 0")
    if get_account_by_username(db, username):
        raise ConflictError(f"Username '{username}' already exists")

    account = Account(
        uuid=str(uuid4()),
        username=username,
        telegram_id=telegram_id or 0,
        telegram_username=(telegram_username or "").strip() or None,
        status="active",
        traffic_limit=traffic_limit,
        traffic_used=0,
        subscription_token=generate_token(),
    )
    db.add(account)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Username '{username}' already exists") from e
    db.refresh(account)
    logger.info("Account created: id=%s username=%s limit=%s", account.id, account.username, account.traffic_limit)
    return account, apply_config(db)


def update_status(db: Session, account_id: int, status: str) -> tuple[Account, ReloadOutcome]:
    """Ручная смена статуса админом (в т.ч. бан/разбан)."""
    if status not in ACCOUNT_STATUSES:
        raise AccountValidationError(f"status must be one of {', '.join(ACCOUNT_STATUSES)}")
    account = _require(db, account_id)
    previous = account.status
    account.status = status
    db.commit()
    db.refresh(account)
    logger.info("Account %s status: %s -> %s (admin)", account.id, previous, status)
    return account, apply_config(db)


def update_limit(db: Session, account_id: int, traffic_limit: int) -> tuple[Account, ReloadOutcome | None]:
    """
    Новый лимит. Если аккаунт expired и лимит снова позволяет - возвращаем в active,
    если active и лимит уже превышен - в expired. Конфиг пересобираем только при смене статуса.
    """
    if traffic_limit < 0:
        raise AccountValidationError("traffic_limit must be >= 0")
    account = _require(db, account_id)
    account.traffic_limit = traffic_limit
    db.flush()
    changed = reactivate_if_within_quota(db, account_id) or expire_if_over_quota(db, account_id)
    db.commit()
    db.refresh(account)
    logger.info("Account %s limit set to %s (status=%s)", account.id, traffic_limit, account.status)
    outcome = apply_config(db) if changed else None
    return account, outcome


def delete_account(db: Session, account_id: int) -> ReloadOutcome:
    account = _require(db, account_id)
    soft_delete(db, account)
    db.commit()
    logger.info("Account deleted: id=%s username=%s", account.id, account.username)
    return apply_config(db)
