"""
Application Layer: Ports (Interfaces)
Defines how the Application layer expects to interact with the Infrastructure.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from pwmarket.domain import IndexRead, ListingMetadata, MutationEvent

class ILedgerClient(Protocol):
    """Read-only access to the marketplace contract over one RPC endpoint"""

    @property
    def endpoint(self) -> str:
        ...

    async def get_block_number(self) -> int:
        ...

    async def get_chain_id(self) -> int:
        ...

    async def get_code(self, address: str) -> bytes:
        ...

    async def is_initialized(self) -> bool:
        ...

    async def read_quality_listing(self, quality: int, index: int) -> IndexRead:
        """Tagged read of qualityListings(quality, index); never raises"""
        ...

    async def get_listing(self, token_id: int) -> Dict[str, Any]:
        """Raw listings(tokenId) struct keyed by ABI output names"""
        ...

    async def token_uri(self, token_id: int) -> Optional[str]:
        ...

    async def get_mutation_events(self, from_block: int, to_block: int) -> List[MutationEvent]:
        ...

    async def close(self) -> None:
        ...

class ILedgerSource(Protocol):
    """Hands out the last-known-good ledger client"""

    @property
    def client(self) -> ILedgerClient:
        ...

class IDurableStore(Protocol):
    """Best-effort key/value persistence; any call may raise"""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> Iterable[str]:
        ...

class IMetadataResolver(Protocol):
    """Resolves a token URI to display fields"""

    async def resolve_display(self, uri: str) -> Optional[ListingMetadata]:
        """Returns None when the metadata is unavailable"""
        ...

    async def close(self) -> None:
        ...

Clock = Callable[[], float]
LedgerClientFactory = Callable[[str], ILedgerClient]
EventHandler = Callable[[MutationEvent], Awaitable[None]]
