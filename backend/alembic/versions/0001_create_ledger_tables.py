"""create ledger tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "personas",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("wallet_address", sa.String(length=128), nullable=True),
        sa.Column("stx_address", sa.String(length=128), nullable=True),
        sa.Column("wallet_key_encrypted", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_placeholder", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("balance", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("wallet_address"),
        sa.UniqueConstraint("stx_address"),
        sa.CheckConstraint("balance >= 0", name="ck_personas_balance_non_negative"),
    )
    op.create_index(op.f("ix_personas_account_id"), "personas", ["account_id"], unique=False)
    op.create_index(op.f("ix_personas_username"), "personas", ["username"], unique=True)

    op.create_table(
        "content",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("uploader_persona_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("splits", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("ai_assisted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("ai_generated", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["uploader_persona_id"], ["personas.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_content_uploader_persona_id"), "content", ["uploader_persona_id"], unique=False)

    op.create_table(
        "pending_collaborators",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("content_id", sa.String(length=36), nullable=False),
        sa.Column("created_by_account_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("percentage", sa.Integer(), nullable=False),
        sa.Column("split_type", sa.String(length=16), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("resolved_persona_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["content_id"], ["content.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resolved_persona_id"], ["personas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("content_id", "split_type", "position", name="uq_pending_collaborators_slot"),
    )
    op.create_index(op.f("ix_pending_collaborators_content_id"), "pending_collaborators", ["content_id"], unique=False)

    op.create_table(
        "earnings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("persona_id", sa.String(length=36), nullable=True),
        sa.Column("beneficiary_ref", sa.String(length=256), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("tx_hash", sa.String(length=128), nullable=True),
        sa.Column("resolved_persona_id", sa.String(length=36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["persona_id"], ["personas.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["resolved_persona_id"], ["personas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index(op.f("ix_earnings_persona_id"), "earnings", ["persona_id"], unique=False)
    op.create_index(op.f("ix_earnings_source_id"), "earnings", ["source_id"], unique=False)

    op.create_table(
        "claim_tokens",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("placeholder_persona_id", sa.String(length=36), nullable=False),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("recipient_name", sa.String(length=200), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_by_persona_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["placeholder_persona_id"], ["personas.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["redeemed_by_persona_id"], ["personas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_claim_tokens_token"), "claim_tokens", ["token"], unique=True)
    op.create_index(op.f("ix_claim_tokens_placeholder_persona_id"), "claim_tokens", ["placeholder_persona_id"], unique=False)

    op.create_table(
        "wallet_aliases",
        sa.Column("alias_wallet", sa.String(length=128), nullable=False),
        sa.Column("resolved_persona_id", sa.String(length=36), nullable=False),
        sa.Column("resolution", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["resolved_persona_id"], ["personas.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("alias_wallet"),
    )
    op.create_index(op.f("ix_wallet_aliases_resolved_persona_id"), "wallet_aliases", ["resolved_persona_id"], unique=False)

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("persona_id", sa.String(length=36), nullable=False),
        sa.Column("destination_address", sa.String(length=128), nullable=False),
        sa.Column("chain", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'reserved'"), nullable=False),
        sa.Column("tx_hash", sa.String(length=128), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["persona_id"], ["personas.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_withdrawals_persona_id"), "withdrawals", ["persona_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_withdrawals_persona_id"), table_name="withdrawals")
    op.drop_table("withdrawals")
    op.drop_index(op.f("ix_wallet_aliases_resolved_persona_id"), table_name="wallet_aliases")
    op.drop_table("wallet_aliases")
    op.drop_index(op.f("ix_claim_tokens_placeholder_persona_id"), table_name="claim_tokens")
    op.drop_index(op.f("ix_claim_tokens_token"), table_name="claim_tokens")
    op.drop_table("claim_tokens")
    op.drop_index(op.f("ix_earnings_source_id"), table_name="earnings")
    op.drop_index(op.f("ix_earnings_persona_id"), table_name="earnings")
    op.drop_table("earnings")
    op.drop_index(op.f("ix_pending_collaborators_content_id"), table_name="pending_collaborators")
    op.drop_table("pending_collaborators")
    op.drop_index(op.f("ix_content_uploader_persona_id"), table_name="content")
    op.drop_table("content")
    op.drop_index(op.f("ix_personas_username"), table_name="personas")
    op.drop_index(op.f("ix_personas_account_id"), table_name="personas")
    op.drop_table("personas")
    op.drop_table("accounts")
