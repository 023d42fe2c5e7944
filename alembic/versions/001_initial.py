"""Initial models: Account, InboundDefinition

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE = "deleted_at IS NULL"


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uuid", sa.String(64), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("telegram_username", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("traffic_limit", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("traffic_used", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("subscription_token", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uuid"),
        sa.UniqueConstraint("subscription_token"),
    )
    op.create_index(op.f("ix_accounts_telegram_id"), "accounts", ["telegram_id"], unique=False)
    op.create_index(op.f("ix_accounts_status"), "accounts", ["status"], unique=False)
    op.create_index(op.f("ix_accounts_deleted_at"), "accounts", ["deleted_at"], unique=False)
    op.create_index(
        "uq_accounts_username_live", "accounts", ["username"], unique=True,
        sqlite_where=sa.text(LIVE), postgresql_where=sa.text(LIVE),
    )

    op.create_table(
        "inbound_definitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tag", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("protocol", sa.String(16), nullable=False),
        sa.Column("listen_port", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tls_type", sa.String(16), nullable=False, server_default=""),
        sa.Column("sni", sa.String(255), nullable=False, server_default=""),
        sa.Column("cert_path", sa.String(512), nullable=False, server_default=""),
        sa.Column("key_path", sa.String(512), nullable=False, server_default=""),
        sa.Column("transport", sa.String(16), nullable=False, server_default=""),
        sa.Column("service_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("user_type", sa.String(16), nullable=False, server_default=""),
        sa.Column("flow", sa.String(32), nullable=False, server_default=""),
        sa.Column("multiplex", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_builtin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("server_address", sa.String(255), nullable=False, server_default=""),
        sa.Column("reality_private_key", sa.String(128), nullable=False, server_default=""),
        sa.Column("reality_public_key", sa.String(128), nullable=False, server_default=""),
        sa.Column("reality_short_ids", sa.JSON(), nullable=False),
        sa.Column("fingerprint", sa.String(32), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_inbound_definitions_deleted_at"), "inbound_definitions", ["deleted_at"], unique=False)
    op.create_index(
        "uq_inbound_definitions_tag_live", "inbound_definitions", ["tag"], unique=True,
        sqlite_where=sa.text(LIVE), postgresql_where=sa.text(LIVE),
    )
    op.create_index(
        "uq_inbound_definitions_port_live", "inbound_definitions", ["listen_port"], unique=True,
        sqlite_where=sa.text(f"{LIVE} AND listen_port != 0"),
        postgresql_where=sa.text(f"{LIVE} AND listen_port != 0"),
    )


def downgrade() -> None:
    op.drop_index("uq_inbound_definitions_port_live", table_name="inbound_definitions")
    op.drop_index("uq_inbound_definitions_tag_live", table_name="inbound_definitions")
    op.drop_index(op.f("ix_inbound_definitions_deleted_at"), table_name="inbound_definitions")
    op.drop_table("inbound_definitions")
    op.drop_index("uq_accounts_username_live", table_name="accounts")
    op.drop_index(op.f("ix_accounts_deleted_at"), table_name="accounts")
    op.drop_index(op.f("ix_accounts_status"), table_name="accounts")
    op.drop_index(op.f("ix_accounts_telegram_id"), table_name="accounts")
    op.drop_table("accounts")
