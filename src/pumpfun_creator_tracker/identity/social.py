"""Social-graph client used to turn social links into creator handles.

Lookups are cached in Redis when a client is provided, since the same
post or community is often referenced by many launches.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

import httpx
from redis.asyncio import Redis

from pumpfun_creator_tracker.identity.models import UpstreamLookupFailed

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.twitterapi.io"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_CACHE_PREFIX = "pumpfun:social:"

_TWEET_ID = re.compile(r"(?:twitter\.com|x\.com)/\w+/status/(\d+)")
_COMMUNITY_ID = re.compile(r"/communities/(\d+)")
_USERNAME = re.compile(r"(?:twitter\.com|x\.com)/(@?\w+)")


def extract_tweet_id(url: str) -> str | None:
    match = _TWEET_ID.search(url or "")
    return match.group(1) if match else None


def extract_community_id(url: str) -> str | None:
    match = _COMMUNITY_ID.search(url or "")
    return match.group(1) if match else None


def extract_username(url: str) -> str | None:
    match = _USERNAME.search(url or "")
    return match.group(1).lstrip("@") if match else None


@dataclass(frozen=True)
class SocialProfile:
    """A social-network account."""

    username: str
    user_id: str | None = None
    name: str | None = None

    @property
    def profile_url(self) -> str:
        return f"https://twitter.com/{self.username}"

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> SocialProfile:
        data = json.loads(raw)
        return cls(username=data["username"], user_id=data.get("user_id"), name=data.get("name"))


class SocialGraphClient:
    """Client for the twitterapi.io lookups the resolver needs.

    Example:
        ```python
        client = SocialGraphClient(api_key="...", redis=Redis.from_url(url))
        author = await client.get_post_author("1790000000000000000")
        ```
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._cache_prefix = DEFAULT_CACHE_PREFIX

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _cache_key(self, key_type: str, ident: str) -> str:
        return f"{self._cache_prefix}{key_type}:{ident.lower()}"

    async def _get_cached(self, key: str) -> SocialProfile | None:
        if not self._redis or self._cache_ttl <= 0:
            return None
        try:
            value = await self._redis.get(key)
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode()
            return SocialProfile.from_json(str(value))
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, profile: SocialProfile) -> None:
        if not self._redis or self._cache_ttl <= 0:
            return
        try:
            await self._redis.set(key, profile.to_json(), ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise UpstreamLookupFailed(f"GET {path} failed: {e}") from e
        if not response.is_success:
            raise UpstreamLookupFailed(f"GET {path} returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamLookupFailed(f"GET {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise UpstreamLookupFailed(f"GET {path} returned unexpected payload")
        return data

    async def get_post_author(self, tweet_id: str) -> SocialProfile:
        """Return the author of a post.

        Raises:
            UpstreamLookupFailed: If the post or its author cannot be read.
        """
        key = self._cache_key("post", tweet_id)
        cached = await self._get_cached(key)
        if cached:
            return cached

        data = await self._get(f"/v2/tweets/{tweet_id}")
        tweet = data.get("data")
        if not isinstance(tweet, dict):
            raise UpstreamLookupFailed(f"no data for post {tweet_id}")
        includes = data.get("includes")
        users = includes.get("users") if isinstance(includes, dict) else None
        author: dict[str, Any] = {}
        if isinstance(users, list) and users and isinstance(users[0], dict):
            author = users[0]
        username = author.get("username")
        if not username:
            raise UpstreamLookupFailed(f"post {tweet_id} has no resolvable author")

        profile = SocialProfile(
            username=str(username),
            user_id=str(tweet.get("author_id") or author.get("id") or "") or None,
            name=author.get("name"),
        )
        await self._set_cached(key, profile)
        return profile

    async def get_user(self, username: str) -> SocialProfile:
        """Look up an account by handle."""
        clean = username.lstrip("@")
        key = self._cache_key("user", clean)
        cached = await self._get_cached(key)
        if cached:
            return cached

        data = await self._get(f"/v2/users/by/username/{clean}")
        user = data.get("data")
        if not isinstance(user, dict) or not user.get("username"):
            raise UpstreamLookupFailed(f"no data for user {clean}")

        profile = SocialProfile(
            username=str(user["username"]),
            user_id=str(user.get("id")) if user.get("id") is not None else None,
            name=user.get("name"),
        )
        await self._set_cached(key, profile)
        return profile

    async def get_community_owner(self, community_id: str) -> SocialProfile:
        """Return the first listed moderator of a community (its creator/admin)."""
        key = self._cache_key("community", community_id)
        cached = await self._get_cached(key)
        if cached:
            return cached

        data = await self._get(
            "/twitter/community/moderators", params={"community_id": community_id}
        )
        members = data.get("members")
        if (
            not isinstance(members, list)
            or not members
            or not isinstance(members[0], dict)
            or not members[0].get("userName")
        ):
            raise UpstreamLookupFailed(f"community {community_id} has no moderators")

        owner = members[0]
        profile = SocialProfile(
            username=str(owner["userName"]),
            user_id=str(owner.get("id")) if owner.get("id") is not None else None,
            name=owner.get("name"),
        )
        await self._set_cached(key, profile)
        return profile
