from datetime import datetime, timezone
import uuid

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from royalty_ledger.platform.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


_JSON = JSON().with_variant(JSONB(), "postgresql")


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    deleted_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Persona(Base):
    __tablename__ = "personas"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_personas_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), index=True)

    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(200))

    wallet_address: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    stx_address: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    wallet_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default=text("0"))

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    deactivated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Content(Base):
    __tablename__ = "content"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    uploader_persona_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="RESTRICT"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200))

    splits: Mapped[dict] = mapped_column(_JSON, nullable=False)
    ai_assisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class PendingCollaborator(Base):
    __tablename__ = "pending_collaborators"
    __table_args__ = (
        UniqueConstraint("content_id", "split_type", "position", name="uq_pending_collaborators_slot"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    content_id: Mapped[str] = mapped_column(String(36), ForeignKey("content.id", ondelete="CASCADE"), index=True)
    created_by_account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"))

    name: Mapped[str] = mapped_column(String(200))
    percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    split_type: Mapped[str] = mapped_column(String(16), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    resolved_persona_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Earning(Base):
    __tablename__ = "earnings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    persona_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="RESTRICT"),
        index=True,
        nullable=True,
    )
    beneficiary_ref: Mapped[str] = mapped_column(String(256), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)

    resolved_persona_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="SET NULL"),
        nullable=True,
    )
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class ClaimToken(Base):
    __tablename__ = "claim_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    placeholder_persona_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="CASCADE"),
        index=True,
    )
    account_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"))
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    expires_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    redeemed_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redeemed_by_persona_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class WalletAlias(Base):
    __tablename__ = "wallet_aliases"

    alias_wallet: Mapped[str] = mapped_column(String(128), primary_key=True)
    resolved_persona_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("personas.id", ondelete="CASCADE"),
        index=True,
    )
    resolution: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    persona_id: Mapped[str] = mapped_column(String(36), ForeignKey("personas.id", ondelete="RESTRICT"), index=True)

    destination_address: Mapped[str] = mapped_column(String(128), nullable=False)
    chain: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="reserved", server_default=text("'reserved'"))
    tx_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow)
