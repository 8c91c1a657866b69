from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ConsentRow(Base):
    """Consent (bank link) record; kept after revocation for audit."""

    __tablename__ = "consents"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    consent_handle: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    fi_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    valid_till: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    purpose: Mapped[str] = mapped_column(String, nullable=False, default="")
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Relationships
    transactions: Mapped[list[TransactionRow]] = relationship(
        "TransactionRow", back_populates="consent"
    )
    data_sessions: Mapped[list[DataSessionRow]] = relationship(
        "DataSessionRow", back_populates="consent"
    )


class TransactionRow(Base):
    """Persisted transaction; only category columns change after insert."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "hash_dedupe", name="uq_transactions_user_hash"),
        Index("ix_transactions_user_posted", "user_id", "posted_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    consent_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("consents.id"), nullable=True
    )
    hash_dedupe: Mapped[str] = mapped_column(String(64), nullable=False)
    posted_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    txn_type: Mapped[str] = mapped_column(String, nullable=False)
    balance_after_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    merchant_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    account_ref: Mapped[str] = mapped_column(String, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False)
    subcategory: Mapped[str] = mapped_column(String, nullable=False, default="")
    source: Mapped[str] = mapped_column(String, nullable=False)  # AGGREGATOR | MANUAL
    source_meta: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # Relationships
    consent: Mapped[ConsentRow | None] = relationship(
        "ConsentRow", back_populates="transactions"
    )


class CategoryOverrideRow(Base):
    """User category rule; matcher is a substring or a /regex/."""

    __tablename__ = "category_overrides"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    matcher: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    subcategory: Mapped[str] = mapped_column(String, nullable=False, default="")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class DataSessionRow(Base):
    """Maps a provider session id to the user and consent it was opened for."""

    __tablename__ = "data_sessions"

    session_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    consent_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("consents.id"), nullable=False
    )
    from_date: Mapped[date] = mapped_column(Date, nullable=False)
    to_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Relationships
    consent: Mapped[ConsentRow] = relationship(
        "ConsentRow", back_populates="data_sessions"
    )
