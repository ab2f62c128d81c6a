"""Token metadata lookup and social-reference extraction.

The metadata URI of a Token-2022 mint lives in its `tokenMetadata`
extension. The document behind it is free-form JSON published by the
launcher, so extraction scans a fixed list of known fields for social links.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from pumpfun_creator_tracker.identity.models import (
    MetadataUnavailable,
    SocialReference,
    SocialReferenceKind,
)

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT_SECONDS = 15.0
DEFAULT_DOCUMENT_TIMEOUT_SECONDS = 10.0
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"
USER_AGENT = "Mozilla/5.0"

POST_URL = re.compile(r"(?:twitter\.com|x\.com)/\w+/status/\d+")
COMMUNITY_URL = re.compile(r"(?:twitter\.com|x\.com)/i/communities/\d+")
PROFILE_URL = re.compile(r"(?:twitter\.com|x\.com)/(?!i/?$)\w+/?$")
_EMBEDDED_OBJECT = re.compile(r"\{[\s\S]*\}")


def _get_path(doc: dict[str, Any], *path: str) -> Any:
    node: Any = doc
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def candidate_links(doc: dict[str, Any]) -> list[str]:
    """List every string in the known social-link fields, in scan order."""
    fields: list[Any] = [
        _get_path(doc, "twitter"),
        _get_path(doc, "social", "twitter"),
        _get_path(doc, "links", "twitter"),
        _get_path(doc, "extensions", "twitter"),
        _get_path(doc, "tweet"),
        _get_path(doc, "tweetUrl"),
        _get_path(doc, "community"),
        _get_path(doc, "communityUrl"),
    ]
    if isinstance(doc.get("properties"), dict):
        fields.extend(
            [
                _get_path(doc, "properties", "twitter"),
                _get_path(doc, "properties", "tweet"),
                _get_path(doc, "properties", "community"),
            ]
        )
    links = doc.get("links")
    if isinstance(links, list):
        for link in links:
            if isinstance(link, str):
                fields.append(link)
            elif isinstance(link, dict):
                fields.append(link.get("url"))
    fields.append(doc.get("external_url"))
    return [f.strip() for f in fields if isinstance(f, str) and f.strip()]


def extract_social_reference(doc: dict[str, Any] | None) -> SocialReference | None:
    """Pick the strongest social reference in a metadata document.

    A direct post link wins over a community link, which wins over a plain
    profile link. Within one kind the first field in scan order wins.
    """
    if not doc:
        return None

    community: str | None = None
    profile: str | None = None
    for link in candidate_links(doc):
        if POST_URL.search(link):
            return SocialReference(kind=SocialReferenceKind.POST, url=link)
        if community is None and COMMUNITY_URL.search(link):
            community = link
        elif profile is None and PROFILE_URL.search(link):
            profile = link

    if community is not None:
        return SocialReference(kind=SocialReferenceKind.COMMUNITY, url=community)
    if profile is not None:
        return SocialReference(kind=SocialReferenceKind.PROFILE, url=profile)
    return None


def parse_metadata_document(body: str, content_type: str | None = None) -> dict[str, Any]:
    """Decode a metadata document.

    JSON bodies are parsed directly; anything else is searched for an
    embedded JSON object.

    Raises:
        MetadataUnavailable: If no JSON object can be recovered.
    """
    candidates = []
    if content_type and "json" in content_type:
        candidates.append(body)
    match = _EMBEDDED_OBJECT.search(body)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            doc = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(doc, dict):
            return doc
    raise MetadataUnavailable("metadata document is not a JSON object")


def to_http_uri(uri: str, *, ipfs_gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    if uri.startswith("ipfs://"):
        return ipfs_gateway + uri[len("ipfs://") :].lstrip("/")
    return uri


class TokenMetadataClient:
    """Locates and fetches the metadata document of a mint.

    Example:
        ```python
        client = TokenMetadataClient("https://mainnet.helius-rpc.com/?api-key=...")
        uri = await client.get_metadata_uri(mint)
        doc = await client.fetch_document(uri)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        rpc_timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        document_timeout: float = DEFAULT_DOCUMENT_TIMEOUT_SECONDS,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
    ) -> None:
        self._rpc_url = rpc_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(follow_redirects=True)
        self._rpc_timeout = rpc_timeout
        self._document_timeout = document_timeout
        self._ipfs_gateway = ipfs_gateway
        self._request_id = 0

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_metadata_uri(self, mint: str) -> str:
        """Read the `tokenMetadata` extension URI of a mint via JSON-RPC.

        Raises:
            MetadataUnavailable: If the RPC call fails or the mint has no URI.
        """
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "getAccountInfo",
            "params": [mint, {"encoding": "jsonParsed"}],
        }
        try:
            response = await self._client.post(self._rpc_url, json=body, timeout=self._rpc_timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MetadataUnavailable(f"getAccountInfo failed for {mint}: {e}") from e

        if not isinstance(payload, dict):
            raise MetadataUnavailable(f"getAccountInfo for {mint} returned a non-object body")
        if payload.get("error"):
            raise MetadataUnavailable(f"getAccountInfo error for {mint}: {payload['error']}")

        extensions = _get_path(payload, "result", "value", "data", "parsed", "info", "extensions")
        if isinstance(extensions, list):
            for ext in extensions:
                if isinstance(ext, dict) and ext.get("extension") == "tokenMetadata":
                    uri = _get_path(ext, "state", "uri")
                    if isinstance(uri, str) and uri:
                        return uri
        raise MetadataUnavailable(f"mint {mint} has no tokenMetadata uri")

    async def fetch_document(self, uri: str) -> dict[str, Any]:
        """Fetch and decode a metadata document.

        Raises:
            MetadataUnavailable: On network errors, non-2xx or undecodable bodies.
        """
        url = to_http_uri(uri, ipfs_gateway=self._ipfs_gateway)
        try:
            response = await self._client.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=self._document_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MetadataUnavailable(f"metadata fetch failed for {uri}: {e}") from e
        return parse_metadata_document(response.text, response.headers.get("content-type"))

    async def get_document(self, mint: str, *, fallback_uri: str | None = None) -> dict[str, Any]:
        """Resolve the mint's metadata URI and fetch the document.

        When the on-chain lookup fails, `fallback_uri` (the URI reported by the
        feed) is used instead.
        """
        try:
            uri = await self.get_metadata_uri(mint)
        except MetadataUnavailable as e:
            if not fallback_uri:
                raise
            logger.debug("On-chain metadata lookup failed for %s (%s); using feed uri", mint, e)
            uri = fallback_uri
        return await self.fetch_document(uri)
