from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class InboundDefinition(Base):
    """Инбаунд sing-box: протокол + транспорт + TLS + порт. Встроенные можно выключить, но не удалить."""
    __tablename__ = "inbound_definitions"
    __table_args__ = (
        Index(
            "uq_inbound_definitions_tag_live",
            "tag",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uq_inbound_definitions_port_live",
            "listen_port",
            unique=True,
            sqlite_where=text("deleted_at IS NULL AND listen_port != 0"),
            postgresql_where=text("deleted_at IS NULL AND listen_port != 0"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tag: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    protocol: Mapped[str] = mapped_column(String(16), nullable=False)  # vless | hysteria2
    listen_port: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tls_type: Mapped[str] = mapped_column(String(16), nullable=False, default="")  # "" | reality | certificate
    sni: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    cert_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    key_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    transport: Mapped[str] = mapped_column(String(16), nullable=False, default="")  # "" (tcp) | http | grpc | httpupgrade | ws | xhttp
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")  # path или имя gRPC-сервиса
    user_type: Mapped[str] = mapped_column(String(16), nullable=False, default="")  # legacy | new | hy2
    flow: Mapped[str] = mapped_column(String(32), nullable=False, default="")  # "" | xtls-rprx-vision
    multiplex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_builtin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    server_address: Mapped[str] = mapped_column(String(255), nullable=False, default="")  # пусто = SERVER_ADDRESS

    reality_private_key: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    reality_public_key: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    reality_short_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    fingerprint: Mapped[str] = mapped_column(String(32), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
