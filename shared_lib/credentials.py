"""
shared_lib.credentials — Jellyfin username -> AniList token routing.

The table is built once from settings and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class CredentialTable:
    """
    Per-user AniList tokens with an optional shared fallback token.

    Attributes:
        users:    Mapping of Jellyfin username -> AniList token
        fallback: Token used for users missing from ``users``
    """
    users: Mapping[str, str] = field(default_factory=dict)
    fallback: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "users", MappingProxyType(dict(self.users)))

    @classmethod
    def from_settings(
        cls,
        users: Mapping[str, Any],
        fallback: Optional[str] = None,
    ) -> "CredentialTable":
        """
        Build the table from the ``anilist_users`` settings block.

        Each value may be a bare token string or a mapping with a ``token`` key
        (``display_name`` and other keys are ignored). Entries without a token
        are skipped so the user falls through to the shared token.
        """
        tokens: dict[str, str] = {}
        for username, value in (users or {}).items():
            if isinstance(value, Mapping):
                token = value.get("token")
            else:
                token = getattr(value, "token", value)
            if token:
                tokens[str(username)] = str(token)
        return cls(users=tokens, fallback=fallback or None)

    def resolve_token(self, username: str) -> Optional[str]:
        """Return the user's token, the shared token, or None when neither exists."""
        token = self.users.get(username)
        if token:
            return token
        return self.fallback

    def __len__(self) -> int:
        return len(self.users)
