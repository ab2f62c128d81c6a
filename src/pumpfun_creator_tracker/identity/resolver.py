"""Identity resolution strategies.

Both strategies take a validated coin record and return a `CreatorIdentity`.
Callers treat any `IdentityResolutionError` as non-fatal and store the coin
without a creator link.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pumpfun_creator_tracker.identity.metadata import TokenMetadataClient, extract_social_reference
from pumpfun_creator_tracker.identity.models import (
    CreatorIdentity,
    IdentityResolutionError,
    NoIdentitySignal,
    SocialReference,
    SocialReferenceKind,
)
from pumpfun_creator_tracker.identity.social import (
    SocialGraphClient,
    SocialProfile,
    extract_community_id,
    extract_tweet_id,
    extract_username,
)
from pumpfun_creator_tracker.ingestor.models import CoinRecord

logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):
    """Maps a coin record to its creator identity."""

    async def resolve(self, coin: CoinRecord) -> CreatorIdentity: ...


class WalletIdentityResolver:
    """Identity is the creator wallet verbatim. Never fails."""

    async def resolve(self, coin: CoinRecord) -> CreatorIdentity:
        return CreatorIdentity.wallet(coin.creator)


class SocialIdentityResolver:
    """Resolves a coin to the social account behind its launch.

    Steps: read the mint's metadata document, pick the strongest social
    reference, then ask the social graph who owns it (post author, community
    moderator, or the profile itself).

    Raises (from `resolve`):
        MetadataUnavailable: No metadata document could be read.
        NoIdentitySignal: The document has no social reference.
        UpstreamLookupFailed: The social-graph lookup failed.
    """

    def __init__(self, metadata: TokenMetadataClient, social: SocialGraphClient) -> None:
        self._metadata = metadata
        self._social = social

    async def resolve(self, coin: CoinRecord) -> CreatorIdentity:
        doc = await self._metadata.get_document(coin.mint, fallback_uri=coin.metadata_uri)
        reference = extract_social_reference(doc)
        if reference is None:
            raise NoIdentitySignal(f"no social reference in metadata of {coin.mint}")

        profile = await self._lookup(reference)
        logger.debug(
            "Resolved %s to @%s via %s %s",
            coin.mint,
            profile.username,
            reference.kind.value,
            reference.url,
        )
        return CreatorIdentity.social(
            profile.username,
            social_id=profile.user_id,
            display_name=profile.name,
            profile_url=profile.profile_url,
            source=reference,
        )

    async def _lookup(self, reference: SocialReference) -> SocialProfile:
        if reference.kind == SocialReferenceKind.POST:
            tweet_id = extract_tweet_id(reference.url)
            if not tweet_id:
                raise NoIdentitySignal(f"malformed post url: {reference.url}")
            return await self._social.get_post_author(tweet_id)

        if reference.kind == SocialReferenceKind.COMMUNITY:
            community_id = extract_community_id(reference.url)
            if not community_id:
                raise NoIdentitySignal(f"malformed community url: {reference.url}")
            return await self._social.get_community_owner(community_id)

        username = extract_username(reference.url)
        if not username:
            raise NoIdentitySignal(f"malformed profile url: {reference.url}")
        return await self._social.get_user(username)


async def resolve_or_none(resolver: IdentityResolver, coin: CoinRecord) -> CreatorIdentity | None:
    """Resolve a coin's creator, logging and absorbing resolution failures.

    A `None` result means the coin is stored without a creator link.
    """
    try:
        return await resolver.resolve(coin)
    except IdentityResolutionError as e:
        logger.info("No creator identity for %s (%s): %s", coin.mint, type(e).__name__, e)
        return None
