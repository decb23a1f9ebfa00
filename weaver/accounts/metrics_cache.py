"""Short-lived cache of provider metrics per account."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.config import get_settings
from weaver.models import AccountMetric

from .store import as_utc

settings = get_settings()
logger = logging.getLogger(__name__)


async def get_cached_metrics(
    db: AsyncSession,
    account_id: uuid.UUID,
    metric_type: str,
    max_age_seconds: int | None = None,
) -> dict[str, Any] | None:
    """Return the newest snapshot unless it is stale."""
    result = await db.execute(
        select(AccountMetric)
        .where(
            AccountMetric.account_id == account_id,
            AccountMetric.metric_type == metric_type,
        )
        .order_by(AccountMetric.fetched_at.desc())
        .limit(1)
    )
    metric = result.scalar_one_or_none()
    if metric is None:
        return None

    max_age = timedelta(seconds=max_age_seconds or settings.METRICS_CACHE_TTL_SECONDS)
    if as_utc(metric.fetched_at) < datetime.now(UTC) - max_age:
        return None
    return metric.data


async def cache_metrics(
    db: AsyncSession,
    account_id: uuid.UUID,
    metric_type: str,
    data: dict[str, Any],
) -> None:
    """Store a snapshot. Failures are logged, the caller already has the data."""
    db.add(AccountMetric(account_id=account_id, metric_type=metric_type, data=data))
    try:
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("Failed to cache %s metrics for account %s: %s", metric_type, account_id, e)
        await db.rollback()
