"""
Domain Layer: Listing Ordering
Pure ordering, filtering and pagination rules for the marketplace view.
"""
from typing import Iterable, List, Sequence, Tuple

from .models import ListingRecord, PageKey, SortMethod


class ListingSorter:
    """Deterministic total order over listings"""

    def __init__(self, method: SortMethod):
        self.method = method

    def _key(self, record: ListingRecord) -> Tuple[int, int]:
        # prices are Python ints, never floats, so 18-decimal values compare exactly
        if self.method is SortMethod.PRICE_ASC:
            return (record.price, record.token_id)
        if self.method is SortMethod.PRICE_DESC:
            return (-record.price, record.token_id)
        if self.method is SortMethod.ID_ASC:
            return (record.token_id, 0)
        return (-record.token_id, 0)

    def sort(self, records: Iterable[ListingRecord]) -> List[ListingRecord]:
        return sorted(records, key=self._key)


def matches_search(record: ListingRecord, search_text: str) -> bool:
    """Case-insensitive substring match on the display name or NFT #<tokenId>"""
    needle = PageKey.normalize_search(search_text)
    if not needle:
        return True
    if needle in record.display_name.casefold():
        return True
    return needle in f"nft #{record.token_id}"


class Paginator:
    """Fixed-size page slicing"""

    def __init__(self, page_size: int):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size

    def total_pages(self, total_items: int) -> int:
        return max(1, -(-total_items // self.page_size))

    def slice(self, items: Sequence[ListingRecord], page: int) -> Tuple[ListingRecord, ...]:
        """
        Returns page `page` (1-based).
        Pages past the end are empty rather than an error.
        """
        start = (page - 1) * self.page_size
        return tuple(items[start:start + self.page_size])

    def pages(self, items: Sequence[ListingRecord]) -> List[Tuple[ListingRecord, ...]]:
        return [self.slice(items, p) for p in range(1, self.total_pages(len(items)) + 1)]
