"""Connected external platform accounts."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from weaver.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConnectedAccount(Base):
    """External platform account connected by an application user.

    The application user lives in the backend-as-a-service, so ``user_id`` is
    the opaque subject of its JWT rather than a foreign key.
    """

    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "platform",
            "platform_user_id",
            name="uq_connected_accounts_user_platform_identity",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    platform: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    platform_user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    platform_username: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    display_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    avatar_url: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
    )
    access_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    refresh_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    scopes: Mapped[list[str]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    # "metadata" is reserved on declarative classes
    account_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    # Relationships
    metrics: Mapped[list[AccountMetric]] = relationship(
        "AccountMetric",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class AccountMetric(Base):
    """Cached provider metrics snapshot for a connected account."""

    __tablename__ = "account_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("connected_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    metric_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
    )
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        index=True,
    )

    account: Mapped[ConnectedAccount] = relationship(
        "ConnectedAccount",
        back_populates="metrics",
    )
