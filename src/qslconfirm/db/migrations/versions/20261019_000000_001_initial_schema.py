"""Initial schema: QSO records, confirmation tokens and confirmation log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- qso_records (logged contacts, mailing/confirmation flags)
- qsl_tokens (one token per record, unique token string)
- confirmation_logs (append-only lifecycle events)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: initial schema."""
    confirmation_event = postgresql.ENUM(
        "generated",
        "scanned",
        "confirmed",
        "revoked",
        name="confirmation_event",
        create_type=False,
    )
    confirmation_event.create(op.get_bind(), checkfirst=True)

    confirmation_source = postgresql.ENUM(
        "qr", "manual", name="confirmation_source", create_type=False
    )
    confirmation_source.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "qso_records",
        sa.Column("record_id", sa.String(64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("callsign_worked", sa.String(32), nullable=False),
        sa.Column("qso_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("band", sa.String(16), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("frequency", sa.Float(), nullable=True),
        sa.Column("rst_sent", sa.String(8), nullable=True),
        sa.Column("rst_recv", sa.String(8), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("mailed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("mailed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("record_id", name="pk_qso_records"),
    )
    op.create_index("ix_qso_records_callsign_worked", "qso_records", ["callsign_worked"])
    op.create_index("ix_qso_records_mailed", "qso_records", ["mailed"])

    op.create_table(
        "qsl_tokens",
        sa.Column(
            "token_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("record_id", sa.String(64), nullable=False),
        sa.Column("token", sa.String(32), nullable=False),
        sa.Column("pin", sa.String(8), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.String(255), nullable=True),
        sa.Column("used_ip", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("source", confirmation_source, nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(255), nullable=True),
        sa.Column("revoke_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("token_id", name="pk_qsl_tokens"),
        sa.ForeignKeyConstraint(
            ["record_id"],
            ["qso_records.record_id"],
            name="fk_qsl_tokens_record_id_qso_records",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("record_id", name="uq_qsl_tokens_record_id"),
        sa.UniqueConstraint("token", name="uq_qsl_tokens_token"),
    )
    op.create_index("ix_qsl_tokens_used", "qsl_tokens", ["used"])
    op.create_index("ix_qsl_tokens_issued_at", "qsl_tokens", ["issued_at"])

    op.create_table(
        "confirmation_logs",
        sa.Column(
            "log_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("token_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event", confirmation_event, nullable=False),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", postgresql.INET(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("log_id", name="pk_confirmation_logs"),
        sa.ForeignKeyConstraint(
            ["token_id"],
            ["qsl_tokens.token_id"],
            name="fk_confirmation_logs_token_id_qsl_tokens",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_confirmation_logs_token_id", "confirmation_logs", ["token_id"])
    op.create_index("ix_confirmation_logs_event", "confirmation_logs", ["event"])
    op.create_index("ix_confirmation_logs_created_at", "confirmation_logs", ["created_at"])


def downgrade() -> None:
    """Revert migration: drop all tables and enum types."""
    op.drop_table("confirmation_logs")
    op.drop_table("qsl_tokens")
    op.drop_table("qso_records")

    op.execute("DROP TYPE IF EXISTS confirmation_source")
    op.execute("DROP TYPE IF EXISTS confirmation_event")
