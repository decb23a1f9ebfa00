"""Provider token set parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .errors import OAuthExchangeError

_SCOPE_SEPARATORS = re.compile(r"[,\s]+")


def parse_scopes(raw: str | list[str] | None) -> frozenset[str]:
    """Normalize a comma or space delimited scope string into a set."""
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        parts = _SCOPE_SEPARATORS.split(raw)
    else:
        parts = list(raw)
    return frozenset(part.strip() for part in parts if part and part.strip())


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by a provider for one external account."""

    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_at: datetime
    scopes: frozenset[str] = field(default_factory=frozenset)
    open_id: str | None = None
    refresh_expires_in: int | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_response(
        cls,
        payload: dict[str, Any],
        issued_at: datetime | None = None,
    ) -> TokenSet:
        """Build a token set from a token endpoint JSON body."""
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not access_token or expires_in is None:
            raise OAuthExchangeError("Incomplete token payload returned by provider")

        issued_at = issued_at or datetime.now(UTC)
        refresh_expires_in = payload.get("refresh_expires_in")
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in),
            expires_at=issued_at + timedelta(seconds=int(expires_in)),
            scopes=parse_scopes(payload.get("scope")),
            open_id=payload.get("open_id"),
            refresh_expires_in=int(refresh_expires_in) if refresh_expires_in is not None else None,
            token_type=payload.get("token_type") or "Bearer",
        )

    @property
    def sorted_scopes(self) -> list[str]:
        return sorted(self.scopes)
