from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base

ACCOUNT_STATUSES = ("active", "banned", "expired")


class Account(Base):
    """Пользователь прокси: UUID = креденшл в sing-box, username = метка в счётчиках stats."""
    __tablename__ = "accounts"
    __table_args__ = (
        # username уникален только среди неудалённых (soft delete освобождает метку)
        Index(
            "uq_accounts_username_live",
            "username",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    telegram_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, index=True)  # 0 = создан вручную
    telegram_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)  # active, banned, expired
    traffic_limit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # байт, 0 = безлимит
    traffic_used: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # байт, меняет только счётчик
    subscription_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
