"""
Tests for the Record Fetcher and listing normalization.
"""
import pytest

from pwmarket.application.fetcher import RecordFetcher, normalize_listing
from pwmarket.domain import NATIVE_TOKEN, ZERO_ADDRESS, InvalidListingError, ListingFetchError

from tests.conftest import FakeMetadataResolver, raw_listing


class TestNormalizeListing:
    """Tests for normalize_listing."""

    def test_zero_seller_means_no_listing(self):
        assert normalize_listing(1, raw_listing(1, 5, seller=ZERO_ADDRESS)) is None
        assert normalize_listing(1, {}) is None

    def test_fields_mapped(self):
        rec = normalize_listing(42, raw_listing(42, 10**18, quality=2))
        assert rec.token_id == 42
        assert rec.price == 10**18
        assert rec.quality == 2
        assert rec.level == 3
        assert rec.accumulated_food == 12
        assert rec.payment_token == NATIVE_TOKEN
        assert rec.active

    def test_price_from_decimal_string_keeps_precision(self):
        raw = raw_listing(1, 0)
        raw["price"] = "999999999999999999"
        assert normalize_listing(1, raw).price == 999999999999999999

    def test_defaults_for_missing_optional_fields(self):
        raw = {"seller": "0xabc", "price": 1, "quality": 0, "active": True, "paymentToken": "0xToken"}
        rec = normalize_listing(1, raw)
        assert rec.level == 1
        assert rec.accumulated_food == 0
        assert rec.last_list_time == 0
        assert rec.payment_token == "0xToken"

    @pytest.mark.parametrize("price", [None, "abc", -1, "1.5"])
    def test_invalid_price(self, price):
        raw = raw_listing(1, 0)
        raw["price"] = price
        with pytest.raises(InvalidListingError):
            normalize_listing(1, raw)

    @pytest.mark.parametrize("quality", [5, -1, None, "x"])
    def test_invalid_quality(self, quality):
        raw = raw_listing(1, 1)
        raw["quality"] = quality
        with pytest.raises(InvalidListingError):
            normalize_listing(1, raw)


class TestResolve:
    """Tests for RecordFetcher.resolve."""

    @pytest.mark.asyncio
    async def test_miss_reads_remote_and_caches(self, fetcher, ledger, cache):
        ledger.list_token(42, 10**18)
        rec = await fetcher.resolve(42)
        assert rec.price == 10**18
        assert cache.get(42).record == rec
        assert ledger.listing_calls == [42]

    @pytest.mark.asyncio
    async def test_hit_makes_no_remote_call(self, fetcher, ledger):
        ledger.list_token(42, 10**18)
        await fetcher.resolve(42)
        await fetcher.resolve(42)
        assert ledger.listing_calls == [42]

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, fetcher, ledger):
        ledger.list_token(42, 10**18)
        await fetcher.resolve(42)
        ledger.listings[42]["price"] = 5
        rec = await fetcher.resolve(42, force_refresh=True)
        assert rec.price == 5
        assert ledger.listing_calls == [42, 42]

    @pytest.mark.asyncio
    async def test_absent_listing_is_tombstoned(self, fetcher, ledger, cache):
        assert await fetcher.resolve(77) is None
        assert cache.get(77).is_tombstone
        assert await fetcher.resolve(77) is None
        assert ledger.listing_calls == [77]

    @pytest.mark.asyncio
    async def test_transient_errors_retried(self, fetcher, ledger):
        ledger.list_token(1, 3)
        calls = {"n": 0}
        original = ledger.get_listing

        async def flaky(token_id):
            calls["n"] += 1
            if calls["n"] < 3:
                raise TimeoutError()
            return await original(token_id)

        ledger.get_listing = flaky
        assert (await fetcher.resolve(1)).price == 3
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_persistent_failure_raises_fetch_error(self, fetcher, ledger, cache):
        ledger.listing_errors[9] = ConnectionError("down")
        with pytest.raises(ListingFetchError) as exc:
            await fetcher.resolve(9)
        assert exc.value.token_id == 9
        assert ledger.listing_calls == [9, 9, 9]
        assert cache.get(9) is None

    @pytest.mark.asyncio
    async def test_revert_is_not_retried(self, fetcher, ledger):
        ledger.listing_errors[9] = ValueError("execution reverted")
        with pytest.raises(ListingFetchError):
            await fetcher.resolve(9)
        assert ledger.listing_calls == [9]

    @pytest.mark.asyncio
    async def test_invalidated_in_flight_result_not_cached(self, fetcher, ledger, cache):
        ledger.list_token(42, 1)
        original = ledger.get_listing

        async def invalidating(token_id):
            result = await original(token_id)
            cache.invalidate(token_id)
            return result

        ledger.get_listing = invalidating
        rec = await fetcher.resolve(42)
        assert rec.price == 1
        assert cache.get(42) is None


class TestEnrichment:
    """Tests for display metadata enrichment."""

    @pytest.mark.asyncio
    async def test_metadata_name_applied(self, guard, cache, ledger):
        ledger.list_token(42, 1)
        ledger.uris[42] = "ipfs://meta/42"
        fetcher = RecordFetcher(guard, cache, FakeMetadataResolver({"ipfs://meta/42": "Blue Cat"}), retry_delay=0)
        assert (await fetcher.resolve(42)).display_name == "Blue Cat"

    @pytest.mark.asyncio
    async def test_placeholder_when_metadata_missing(self, fetcher, ledger):
        ledger.list_token(42, 1)
        rec = await fetcher.resolve(42)
        assert rec.metadata.name == "Item #42"

    @pytest.mark.asyncio
    async def test_resolver_failure_is_not_fatal(self, guard, cache, ledger):
        class Broken(FakeMetadataResolver):
            async def resolve_display(self, uri):
                raise RuntimeError("boom")

        ledger.list_token(42, 1)
        ledger.uris[42] = "https://meta/42"
        fetcher = RecordFetcher(guard, cache, Broken(), retry_delay=0)
        assert (await fetcher.resolve(42)).display_name == "Item #42"

    @pytest.mark.asyncio
    async def test_inactive_listing_not_enriched(self, fetcher, ledger):
        ledger.list_token(42, 1, active=False)
        ledger.uris[42] = "ipfs://meta/42"
        rec = await fetcher.resolve(42)
        assert rec.metadata is None
        assert fetcher.metadata.calls == []
