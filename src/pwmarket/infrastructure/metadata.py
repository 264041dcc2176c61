"""
NFT Metadata Resolver
Fetches display metadata (name, image, description) for a token URI.
"""
from __future__ import annotations

import base64
import json
from datetime import datetime
from typing import Any, Dict, Optional

import aiohttp
import structlog

from pwmarket.application.ports import IMetadataResolver
from pwmarket.domain import ListingMetadata

logger = structlog.get_logger()

DATA_JSON_PREFIX = "data:application/json;base64,"


class HttpMetadataResolver(IMetadataResolver):
    """Resolves http(s), ipfs:// and inline base64 JSON token URIs"""

    def __init__(self, ipfs_gateway: str = "https://ipfs.io/ipfs/", timeout: float = 10.0, cache_ttl: int = 3600) -> None:
        self.ipfs_gateway = ipfs_gateway if ipfs_gateway.endswith("/") else ipfs_gateway + "/"
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._cache: Dict[str, tuple[datetime, ListingMetadata]] = {}
        self._cache_ttl = cache_ttl

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={"Accept": "application/json, text/plain, */*"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()

    def to_http(self, uri: str) -> str:
        if uri.startswith("ipfs://"):
            path = uri[len("ipfs://"):]
            if path.startswith("ipfs/"):
                path = path[len("ipfs/"):]
            return self.ipfs_gateway + path
        return uri

    def _to_metadata(self, payload: Any) -> Optional[ListingMetadata]:
        if not isinstance(payload, dict):
            return None
        name = str(payload.get("name") or "").strip()
        if not name:
            return None
        image = payload.get("image") or payload.get("image_url")
        return ListingMetadata(
            name=name,
            image=self.to_http(str(image)) if image else None,
            description=str(payload["description"]) if payload.get("description") else None,
        )

    def _prune(self, now: datetime) -> None:
        expired = [k for k, (at, _) in self._cache.items() if (now - at).total_seconds() >= self._cache_ttl]
        for key in expired:
            del self._cache[key]

    async def resolve_display(self, uri: str) -> Optional[ListingMetadata]:
        """Returns None when the metadata cannot be fetched or has no name"""
        uri = (uri or "").strip()
        if not uri:
            return None

        cached = self._cache.get(uri)
        if cached:
            cached_time, cached_value = cached
            if (datetime.now() - cached_time).total_seconds() < self._cache_ttl:
                return cached_value
            del self._cache[uri]

        if uri.startswith(DATA_JSON_PREFIX):
            try:
                payload = json.loads(base64.b64decode(uri[len(DATA_JSON_PREFIX):]))
            except (ValueError, TypeError) as e:
                logger.warning("inline_metadata_invalid", error=str(e))
                return None
            result = self._to_metadata(payload)
        else:
            url = self.to_http(uri)
            if not url.startswith(("http://", "https://")):
                logger.warning("metadata_uri_unsupported", uri=uri)
                return None

            session = await self._get_session()
            try:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        logger.warning("metadata_fetch_failed", status=resp.status, url=url)
                        return None
                    payload = await resp.json(content_type=None)
            except (aiohttp.ClientError, TimeoutError, ValueError) as e:
                logger.warning("metadata_fetch_error", url=url, error=str(e))
                return None
            result = self._to_metadata(payload)

        if result is not None:
            now = datetime.now()
            self._prune(now)
            self._cache[uri] = (now, result)
        return result
