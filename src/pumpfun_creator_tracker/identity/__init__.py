"""Identity layer - Mapping coin launches to creator identities."""

from pumpfun_creator_tracker.identity.metadata import TokenMetadataClient
from pumpfun_creator_tracker.identity.models import (
    CreatorIdentity,
    IdentityKind,
    IdentityResolutionError,
    MetadataUnavailable,
    NoIdentitySignal,
    UpstreamLookupFailed,
)
from pumpfun_creator_tracker.identity.resolver import (
    IdentityResolver,
    SocialIdentityResolver,
    WalletIdentityResolver,
)
from pumpfun_creator_tracker.identity.social import SocialGraphClient

__all__ = [
    "CreatorIdentity",
    "IdentityKind",
    "IdentityResolutionError",
    "IdentityResolver",
    "MetadataUnavailable",
    "NoIdentitySignal",
    "SocialGraphClient",
    "SocialIdentityResolver",
    "TokenMetadataClient",
    "UpstreamLookupFailed",
    "WalletIdentityResolver",
]
