"""
Переходы статуса аккаунта по квоте трафика.

  active  -> expired : traffic_limit > 0 и traffic_used >= traffic_limit (счётчик или правка лимита)
  expired -> active  : только явная правка лимита админом, если traffic_limit = 0 или used < limit
  banned             : только админ, здесь не трогаем

Каждый переход - один условный UPDATE: проверка и запись в одной операции,
поэтому гонка тика счётчика с правкой админа не теряет переход.
"""
import logging

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from db.models import Account

logger = logging.getLogger(__name__)


def expire_if_over_quota(db: Session, account_id: int) -> bool:
    """active -> expired, если квота исчерпана. True, если переход произошёл (коммит за вызывающим)."""
    result = db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.deleted_at.is_(None),
            Account.status == "active",
            Account.traffic_limit > 0,
            Account.traffic_used >= Account.traffic_limit,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Quota: account_id=%s active -> expired (traffic limit reached)", account_id)
        return True
    return False


def reactivate_if_within_quota(db: Session, account_id: int) -> bool:
    """expired -> active, если новый лимит снова позволяет работать. Вызывается только из правки лимита."""
    result = db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.deleted_at.is_(None),
            Account.status == "expired",
            or_(Account.traffic_limit == 0, Account.traffic_used < Account.traffic_limit),
        )
        .values(status="active")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Quota: account_id=%s expired -> active (limit raised)", account_id)
        return True
    return False
