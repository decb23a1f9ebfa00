"""Audit logging service for account connection events."""

import logging
import uuid
from enum import StrEnum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.models import ConnectionEvent

logger = logging.getLogger(__name__)


class ConnectionEventType(StrEnum):
    """Connection lifecycle event types."""

    ACCOUNT_CONNECTED = "account_connected"
    ACCOUNT_RECONNECTED = "account_reconnected"
    ACCOUNT_DISCONNECTED = "account_disconnected"
    CONNECT_FAILED = "connect_failed"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    TOKEN_REVOKE_FAILED = "token_revoke_failed"


class AuditLogger:
    """Records connection events; failures never break the calling request."""

    @staticmethod
    async def log_event(
        db: AsyncSession,
        event_type: ConnectionEventType,
        user_id: str | None = None,
        account_id: uuid.UUID | None = None,
        platform: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log a connection event."""
        db.add(
            ConnectionEvent(
                event_type=event_type.value,
                user_id=user_id,
                account_id=account_id,
                platform=platform,
                details=details,
            )
        )
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to record %s audit event: %s", event_type.value, e)
            await db.rollback()
