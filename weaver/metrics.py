"""Prometheus metrics endpoint."""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.config import get_settings
from weaver.db.session import get_db

settings = get_settings()
router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(get_db)):
    """Prometheus-compatible metrics endpoint."""

    metrics_output = []
    now = datetime.now(UTC)

    # Connected accounts
    result = await db.execute(text("SELECT COUNT(*) FROM connected_accounts"))
    total_accounts = result.scalar()
    metrics_output.append(f"weaver_connected_accounts_total {total_accounts}")

    # Accounts by platform
    result = await db.execute(
        text("""
        SELECT platform, COUNT(*) FROM connected_accounts GROUP BY platform
    """)
    )
    for row in result.fetchall():
        metrics_output.append(
            f'weaver_connected_accounts_by_platform{{platform="{row[0]}"}} {row[1]}'
        )

    # Tokens due for refresh
    result = await db.execute(
        text("""
        SELECT COUNT(*) FROM connected_accounts
        WHERE token_expires_at IS NOT NULL AND token_expires_at <= :cutoff
    """).bindparams(bindparam("cutoff", type_=DateTime(timezone=True))),
        {"cutoff": now + timedelta(seconds=settings.TOKEN_REFRESH_MARGIN_SECONDS)},
    )
    expiring = result.scalar()
    metrics_output.append(f"weaver_tokens_expiring {expiring}")

    # Connection events (last 24h)
    result = await db.execute(
        text("""
        SELECT event_type, COUNT(*)
        FROM connection_events
        WHERE created_at > :since
        GROUP BY event_type
    """).bindparams(bindparam("since", type_=DateTime(timezone=True))),
        {"since": now - timedelta(hours=24)},
    )
    for row in result.fetchall():
        metrics_output.append(f'weaver_connection_events_24h{{event_type="{row[0]}"}} {row[1]}')

    return "\n".join(metrics_output) + "\n"
