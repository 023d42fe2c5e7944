"""Доступ к аккаунтам и инбаундам: чтение живых записей, soft delete, атомарные апдейты."""
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from db.models import Account, InboundDefinition


def live_accounts():
    return select(Account).where(Account.deleted_at.is_(None))


def live_inbounds():
    return select(InboundDefinition).where(InboundDefinition.deleted_at.is_(None))


def get_account(db: Session, account_id: int) -> Account | None:
    return db.scalars(live_accounts().where(Account.id == account_id)).first()


def get_account_by_username(db: Session, username: str) -> Account | None:
    return db.scalars(live_accounts().where(Account.username == username)).first()


def get_account_by_token(db: Session, token: str) -> Account | None:
    return db.scalars(live_accounts().where(Account.subscription_token == token)).first()


def list_accounts(db: Session) -> list[Account]:
    return list(db.scalars(live_accounts().order_by(Account.id)).all())


def list_active_accounts(db: Session) -> list[Account]:
    return list(db.scalars(live_accounts().where(Account.status == "active").order_by(Account.id)).all())


def get_inbound(db: Session, inbound_id: int) -> InboundDefinition | None:
    return db.scalars(live_inbounds().where(InboundDefinition.id == inbound_id)).first()


def list_inbounds(db: Session) -> list[InboundDefinition]:
    return list(db.scalars(live_inbounds().order_by(InboundDefinition.sort_order, InboundDefinition.id)).all())


def list_enabled_inbounds(db: Session) -> list[InboundDefinition]:
    return list(
        db.scalars(
            live_inbounds()
            .where(InboundDefinition.enabled.is_(True))
            .order_by(InboundDefinition.sort_order, InboundDefinition.id)
        ).all()
    )


def tag_taken(db: Session, tag: str, exclude_id: int | None = None) -> bool:
    query = select(func.count()).select_from(InboundDefinition).where(
        InboundDefinition.deleted_at.is_(None), InboundDefinition.tag == tag
    )
    if exclude_id is not None:
        query = query.where(InboundDefinition.id != exclude_id)
    return db.scalar(query) > 0


def port_taken(db: Session, port: int, exclude_id: int | None = None) -> bool:
    if not port:
        return False
    query = select(func.count()).select_from(InboundDefinition).where(
        InboundDefinition.deleted_at.is_(None), InboundDefinition.listen_port == port
    )
    if exclude_id is not None:
        query = query.where(InboundDefinition.id != exclude_id)
    return db.scalar(query) > 0


def find_reality_donor(db: Session) -> InboundDefinition | None:
    """Первый Reality-инбаунд с заполненными ключами (для автокопирования в новый)."""
    return db.scalars(
        live_inbounds()
        .where(InboundDefinition.tls_type == "reality")
        .where(InboundDefinition.reality_private_key != "")
        .order_by(InboundDefinition.sort_order, InboundDefinition.id)
        .limit(1)
    ).first()


def soft_delete(db: Session, record) -> None:
    record.deleted_at = datetime.now(timezone.utc)
    db.add(record)


def increment_traffic(db: Session, account_id: int, delta: int) -> bool:
    """
    Атомарно: traffic_used = traffic_used + delta (одним UPDATE, без чтения).
    Возвращает False, если аккаунта уже нет (удалён между снимком stats и записью).
    """
    result = db.execute(
        update(Account)
        .where(Account.id == account_id, Account.deleted_at.is_(None))
        .values(traffic_used=Account.traffic_used + delta)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def account_stats(db: Session) -> dict:
    """Сводка по аккаунтам: количество по статусам и суммарный трафик."""
    counts = dict(
        db.execute(
            select(Account.status, func.count()).where(Account.deleted_at.is_(None)).group_by(Account.status)
        ).all()
    )
    total_traffic = db.scalar(
        select(func.coalesce(func.sum(Account.traffic_used), 0)).where(Account.deleted_at.is_(None))
    )
    return {
        "total_users": sum(counts.values()),
        "active_users": counts.get("active", 0),
        "banned_users": counts.get("banned", 0),
        "expired_users": counts.get("expired", 0),
        "total_traffic_used": int(total_traffic or 0),
    }
