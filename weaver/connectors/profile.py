"""Platform-neutral profile data used when persisting an account."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProviderProfile:
    """Identity and display fields of an external account."""

    platform_user_id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
