"""Creator identity types and resolution errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IdentityKind(str, Enum):
    """Which scheme a creator key belongs to."""

    WALLET = "wallet"
    SOCIAL = "social"


class SocialReferenceKind(str, Enum):
    """Kind of social link found in token metadata."""

    POST = "post"
    COMMUNITY = "community"
    PROFILE = "profile"


class IdentityResolutionError(Exception):
    """Base exception for identity resolution failures."""


class MetadataUnavailable(IdentityResolutionError):
    """Raised when the token metadata document cannot be located or fetched."""


class NoIdentitySignal(IdentityResolutionError):
    """Raised when the metadata carries no usable social reference."""


class UpstreamLookupFailed(IdentityResolutionError):
    """Raised when the social-graph lookup fails."""


@dataclass(frozen=True)
class SocialReference:
    """A social-network link extracted from a metadata document."""

    kind: SocialReferenceKind
    url: str


@dataclass(frozen=True)
class CreatorIdentity:
    """Stable key coins are attributed to.

    A tagged variant: `Wallet(address)` or `Social(handle)`. Build instances
    with `wallet()` / `social()` so social handles are normalized.
    """

    kind: IdentityKind
    key: str
    social_id: str | None = None
    display_name: str | None = None
    profile_url: str | None = None
    source_url: str | None = None
    source_kind: SocialReferenceKind | None = None

    @classmethod
    def wallet(cls, address: str) -> CreatorIdentity:
        return cls(kind=IdentityKind.WALLET, key=address)

    @classmethod
    def social(
        cls,
        handle: str,
        *,
        social_id: str | None = None,
        display_name: str | None = None,
        profile_url: str | None = None,
        source: SocialReference | None = None,
    ) -> CreatorIdentity:
        normalized = handle.strip().lstrip("@").lower()
        if not normalized:
            raise ValueError("social handle must not be empty")
        return cls(
            kind=IdentityKind.SOCIAL,
            key=normalized,
            social_id=social_id,
            display_name=display_name,
            profile_url=profile_url or f"https://twitter.com/{normalized}",
            source_url=source.url if source else None,
            source_kind=source.kind if source else None,
        )

    @property
    def is_wallet(self) -> bool:
        return self.kind == IdentityKind.WALLET
