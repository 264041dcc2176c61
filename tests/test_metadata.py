"""
Tests for the HTTP metadata resolver.
"""
import base64
import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from pwmarket.domain import ListingMetadata
from pwmarket.infrastructure.metadata import HttpMetadataResolver


def fake_session(status=200, payload=None, error=None):
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    session = MagicMock()
    session.closed = False
    if error is not None:
        session.get = MagicMock(side_effect=error)
    else:
        session.get.return_value.__aenter__ = AsyncMock(return_value=resp)
        session.get.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


class TestUriHandling:
    """Tests for URI rewriting."""

    def test_ipfs_rewritten_to_gateway(self):
        resolver = HttpMetadataResolver("https://gw.example/ipfs")
        assert resolver.to_http("ipfs://Qm123/1.json") == "https://gw.example/ipfs/Qm123/1.json"
        assert resolver.to_http("ipfs://ipfs/Qm123") == "https://gw.example/ipfs/Qm123"
        assert resolver.to_http("https://x/1") == "https://x/1"

    @pytest.mark.asyncio
    async def test_inline_base64_json(self):
        payload = {"name": "Cat", "image": "ipfs://img"}
        uri = "data:application/json;base64," + base64.b64encode(json.dumps(payload).encode()).decode()
        meta = await HttpMetadataResolver().resolve_display(uri)
        assert meta.name == "Cat"
        assert meta.image == "https://ipfs.io/ipfs/img"

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self):
        assert await HttpMetadataResolver().resolve_display("ar://abc") is None


class TestHttpFetch:
    """Tests for remote metadata fetches."""

    @pytest.mark.asyncio
    async def test_fetch_and_cache(self):
        resolver = HttpMetadataResolver()
        resolver.session = fake_session(payload={"name": "Dog", "description": "good"})
        first = await resolver.resolve_display("https://meta.example/1")
        second = await resolver.resolve_display("https://meta.example/1")
        assert first.name == "Dog"
        assert second == first
        assert resolver.session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        resolver = HttpMetadataResolver()
        resolver.session = fake_session(status=404)
        assert await resolver.resolve_display("https://meta.example/1") is None

    @pytest.mark.asyncio
    async def test_client_error(self):
        resolver = HttpMetadataResolver()
        resolver.session = fake_session(error=aiohttp.ClientConnectionError("down"))
        assert await resolver.resolve_display("https://meta.example/1") is None

    @pytest.mark.asyncio
    async def test_nameless_metadata(self):
        resolver = HttpMetadataResolver()
        resolver.session = fake_session(payload={"image": "x"})
        assert await resolver.resolve_display("https://meta.example/1") is None


class TestResultCache:
    """Tests for the resolver's result cache expiry."""

    @pytest.mark.asyncio
    async def test_entry_older_than_a_day_is_refetched(self):
        resolver = HttpMetadataResolver(cache_ttl=3600)
        url = "https://meta.example/1"
        resolver._cache[url] = (datetime.now() - timedelta(days=1, seconds=5), ListingMetadata(name="stale"))
        resolver.session = fake_session(payload={"name": "fresh"})

        meta = await resolver.resolve_display(url)

        assert meta.name == "fresh"
        assert resolver.session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_expired_entries_are_evicted(self):
        resolver = HttpMetadataResolver(cache_ttl=3600)
        resolver._cache["https://old.example"] = (datetime.now() - timedelta(hours=2), ListingMetadata(name="old"))
        resolver.session = fake_session(payload={"name": "new"})

        await resolver.resolve_display("https://meta.example/2")

        assert "https://old.example" not in resolver._cache
        assert "https://meta.example/2" in resolver._cache
