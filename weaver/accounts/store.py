"""Connected account persistence."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.connectors.profile import ProviderProfile
from weaver.models import AccountMetric, ConnectedAccount
from weaver.oauth.tokens import TokenSet

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


async def get_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    user_id: str,
) -> ConnectedAccount | None:
    """Get one of the user's accounts."""
    result = await db.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.id == account_id,
            ConnectedAccount.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_accounts(db: AsyncSession, user_id: str) -> list[ConnectedAccount]:
    """List the user's accounts, newest first."""
    result = await db.execute(
        select(ConnectedAccount)
        .where(ConnectedAccount.user_id == user_id)
        .order_by(ConnectedAccount.created_at.desc())
    )
    return list(result.scalars().all())


async def _find_by_identity(
    db: AsyncSession,
    user_id: str,
    platform: str,
    platform_user_id: str,
) -> ConnectedAccount | None:
    result = await db.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == platform,
            ConnectedAccount.platform_user_id == platform_user_id,
        )
    )
    return result.scalar_one_or_none()


def _apply_connection(
    account: ConnectedAccount,
    profile: ProviderProfile,
    token_set: TokenSet,
) -> None:
    account.platform_username = profile.username
    account.display_name = profile.display_name
    account.avatar_url = profile.avatar_url
    account.account_metadata = dict(profile.metadata)
    account.access_token = token_set.access_token
    account.refresh_token = token_set.refresh_token or account.refresh_token
    account.token_expires_at = token_set.expires_at
    account.scopes = token_set.sorted_scopes
    account.updated_at = datetime.now(UTC)


async def upsert_connected_account(
    db: AsyncSession,
    user_id: str,
    platform: str,
    profile: ProviderProfile,
    token_set: TokenSet,
) -> tuple[ConnectedAccount, bool]:
    """Insert the account or update it in place. Returns (account, created)."""
    account = await _find_by_identity(db, user_id, platform, profile.platform_user_id)
    if account is not None:
        _apply_connection(account, profile, token_set)
        await db.commit()
        return account, False

    account = ConnectedAccount(
        user_id=user_id,
        platform=platform,
        platform_user_id=profile.platform_user_id,
    )
    _apply_connection(account, profile, token_set)
    db.add(account)
    try:
        await db.commit()
        return account, True
    except IntegrityError:
        # A concurrent callback inserted the same identity first
        await db.rollback()
        logger.info(
            "Concurrent insert for %s account %s, updating existing record",
            platform,
            profile.platform_user_id,
        )

    account = await _find_by_identity(db, user_id, platform, profile.platform_user_id)
    if account is None:
        raise NoResultFound("Connected account vanished during upsert")
    _apply_connection(account, profile, token_set)
    await db.commit()
    return account, False


async def update_tokens(
    db: AsyncSession,
    account: ConnectedAccount,
    token_set: TokenSet,
    expected_refresh_token: str | None = None,
) -> bool:
    """Replace both tokens and the expiry in one statement.

    When ``expected_refresh_token`` is given the write only applies if the
    stored refresh token still matches. Returns False when another writer got
    there first; ``account`` is reloaded either way.
    """
    values = {
        "access_token": token_set.access_token,
        "refresh_token": token_set.refresh_token or account.refresh_token,
        "token_expires_at": token_set.expires_at,
        "updated_at": datetime.now(UTC),
    }
    if token_set.scopes:
        values["scopes"] = token_set.sorted_scopes

    stmt = update(ConnectedAccount).where(ConnectedAccount.id == account.id)
    if expected_refresh_token is not None:
        stmt = stmt.where(ConnectedAccount.refresh_token == expected_refresh_token)

    result = await db.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(account)
    return result.rowcount == 1


async def delete_account(db: AsyncSession, account: ConnectedAccount) -> None:
    """Delete the account and its cached metrics."""
    await db.execute(delete(AccountMetric).where(AccountMetric.account_id == account.id))
    await db.execute(delete(ConnectedAccount).where(ConnectedAccount.id == account.id))
    await db.commit()
