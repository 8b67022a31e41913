"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the durable session tier and the ledger:
  - users                  (chat users keyed by external id)
  - session_records        (pending flows + mode state, JSONB, nullable expires_at)
  - registration_sessions  (absolute 24h expiry)
  - transport_sessions     (refreshing expiry keyed on updated_at)
  - conversation_history   (supportive-mode messages, day-scoped session_id)
  - categories             (global, seeded below)
  - transactions           (per-user ledger rows)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


DEFAULT_CATEGORIES = [
    ("Gaji", "income"),
    ("Freelance", "income"),
    ("Bisnis", "income"),
    ("Investasi", "income"),
    ("Bonus", "income"),
    ("Hadiah", "income"),
    ("Pemasukan Lain", "income"),
    ("Makanan", "expense"),
    ("Transportasi", "expense"),
    ("Listrik", "expense"),
    ("Internet", "expense"),
    ("Sewa Rumah", "expense"),
    ("Kesehatan", "expense"),
    ("Pendidikan", "expense"),
    ("Belanja", "expense"),
    ("Hiburan", "expense"),
    ("Pengeluaran Lain", "expense"),
]


def upgrade() -> None:
    # --- users table ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=32), nullable=False, comment="Stable external identifier (phone-equivalent)"),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("locale", sa.String(length=16), nullable=False, server_default="id-ID"),
        sa.Column("timezone", sa.String(length=50), nullable=False, server_default="Asia/Jakarta"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- session_records table ---
    op.create_table(
        "session_records",
        sa.Column("kind", sa.String(length=32), nullable=False, comment="SessionKind value"),
        sa.Column("key", sa.String(length=100), nullable=False, comment="Record key — the owning user id"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True, comment="Wall-clock deadline; NULL = no expiry"),
        sa.PrimaryKeyConstraint("kind", "key"),
    )
    op.create_index(op.f("ix_session_records_expires_at"), "session_records", ["expires_at"], unique=False)

    # --- registration_sessions table ---
    op.create_table(
        "registration_sessions",
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("step", sa.String(length=32), nullable=False, server_default="name"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="Fields collected so far"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(op.f("ix_registration_sessions_expires_at"), "registration_sessions", ["expires_at"], unique=False)

    # --- transport_sessions table ---
    op.create_table(
        "transport_sessions",
        sa.Column("client_id", sa.String(length=100), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, comment="Liveness marker — rows idle past the transport TTL are expired"),
        sa.PrimaryKeyConstraint("client_id"),
    )
    op.create_index(op.f("ix_transport_sessions_updated_at"), "transport_sessions", ["updated_at"], unique=False)

    # --- conversation_history table ---
    op.create_table(
        "conversation_history",
        sa.Column("id", sa.String(length=36), nullable=False, comment="UUID row identifier"),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False, comment="Day-scoped session id — {user_id}_{YYYY-MM-DD}"),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_conversation_history_created_at"), "conversation_history", ["created_at"], unique=False)
    op.create_index(
        "ix_conversation_history_user_session",
        "conversation_history",
        ["user_id", "session_id"],
        unique=False,
    )

    # --- categories table + seed ---
    categories = op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False, comment="'income' or 'expense'"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", "type"),
    )
    op.bulk_insert(categories, [{"name": name, "type": type_} for name, type_ in DEFAULT_CATEGORIES])

    # --- transactions table ---
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("amount", sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transactions_user_id"), "transactions", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_transactions_user_id"), table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_index("ix_conversation_history_user_session", table_name="conversation_history")
    op.drop_index(op.f("ix_conversation_history_created_at"), table_name="conversation_history")
    op.drop_table("conversation_history")
    op.drop_index(op.f("ix_transport_sessions_updated_at"), table_name="transport_sessions")
    op.drop_table("transport_sessions")
    op.drop_index(op.f("ix_registration_sessions_expires_at"), table_name="registration_sessions")
    op.drop_table("registration_sessions")
    op.drop_index(op.f("ix_session_records_expires_at"), table_name="session_records")
    op.drop_table("session_records")
    op.drop_table("users")
