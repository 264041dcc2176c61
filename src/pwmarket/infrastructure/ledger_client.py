"""
Infrastructure Layer: Marketplace Ledger Client
web3.py adapter for the read-only side of the NFTMarketplace contract.
"""
import asyncio
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from pwmarket.application.ports import ILedgerClient, LedgerClientFactory
from pwmarket.domain import (
    EndOfBucket,
    IndexRead,
    IndexValue,
    MutationEvent,
    MutationKind,
    TransientFailure,
)
from pwmarket.infrastructure.config import Settings

logger = structlog.get_logger()

# Field order of the listings(uint256) public getter
LISTING_FIELDS: Tuple[str, ...] = (
    "seller",
    "tokenId",
    "paymentToken",
    "price",
    "active",
    "lastListTime",
    "lastDelistTime",
    "lastPriceUpdateTime",
    "quality",
    "level",
    "accumulatedFood",
)

MARKETPLACE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "initialized",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"type": "bool", "name": ""}],
    },
    {
        "type": "function",
        "name": "qualityListings",
        "stateMutability": "view",
        "inputs": [{"type": "uint8", "name": ""}, {"type": "uint256", "name": ""}],
        "outputs": [{"type": "uint256", "name": ""}],
    },
    {
        "type": "function",
        "name": "listings",
        "stateMutability": "view",
        "inputs": [{"type": "uint256", "name": ""}],
        "outputs": [
            {"type": "address", "name": "seller"},
            {"type": "uint256", "name": "tokenId"},
            {"type": "address", "name": "paymentToken"},
            {"type": "uint256", "name": "price"},
            {"type": "bool", "name": "active"},
            {"type": "uint256", "name": "lastListTime"},
            {"type": "uint256", "name": "lastDelistTime"},
            {"type": "uint256", "name": "lastPriceUpdateTime"},
            {"type": "uint8", "name": "quality"},
            {"type": "uint256", "name": "level"},
            {"type": "uint256", "name": "accumulatedFood"},
        ],
    },
    {
        "type": "event",
        "anonymous": False,
        "name": "ListingCreated",
        "inputs": [
            {"type": "address", "name": "seller", "indexed": True},
            {"type": "uint256", "name": "tokenId", "indexed": True},
            {"type": "address", "name": "paymentToken", "indexed": False},
            {"type": "uint256", "name": "price", "indexed": False},
            {"type": "uint8", "name": "quality", "indexed": False},
            {"type": "uint256", "name": "level", "indexed": False},
            {"type": "uint256", "name": "accumulatedFood", "indexed": False},
        ],
    },
    {
        "type": "event",
        "anonymous": False,
        "name": "ListingCancelled",
        "inputs": [
            {"type": "address", "name": "seller", "indexed": True},
            {"type": "uint256", "name": "tokenId", "indexed": True},
            {"type": "uint8", "name": "quality", "indexed": False},
        ],
    },
    {
        "type": "event",
        "anonymous": False,
        "name": "ListingSold",
        "inputs": [
            {"type": "address", "name": "seller", "indexed": True},
            {"type": "address", "name": "buyer", "indexed": True},
            {"type": "uint256", "name": "tokenId", "indexed": True},
            {"type": "address", "name": "paymentToken", "indexed": False},
            {"type": "uint256", "name": "price", "indexed": False},
            {"type": "uint256", "name": "fee", "indexed": False},
            {"type": "uint8", "name": "quality", "indexed": False},
        ],
    },
]

PWNFT_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "tokenURI",
        "stateMutability": "view",
        "inputs": [{"type": "uint256", "name": "tokenId"}],
        "outputs": [{"type": "string", "name": ""}],
    },
]

EVENT_KINDS: Tuple[Tuple[str, MutationKind], ...] = (
    ("ListingCreated", MutationKind.LISTED),
    ("ListingCancelled", MutationKind.DELISTED),
    ("ListingSold", MutationKind.BOUGHT),
)

# Reverts and undecodable returns mean "past the end of the bucket".
# web3 surfaces raw RPC errors and decode failures as ValueError subclasses.
END_OF_DATA_ERRORS = (ContractLogicError, BadFunctionCallOutput, ValueError)
TRANSPORT_ERRORS = (asyncio.TimeoutError, aiohttp.ClientError, OSError)


class LedgerTransportError(ConnectionError):
    """Timeout or connection failure talking to the RPC endpoint"""


class Web3LedgerClient(ILedgerClient):
    """
    Adapter for the NFTMarketplace contract using web3.py.
    One instance per RPC endpoint; the health guard swaps instances.
    """

    def __init__(
        self,
        endpoint: str,
        marketplace_address: str,
        nft_address: Optional[str] = None,
        call_timeout: float = 8.0,
    ) -> None:
        self._endpoint = endpoint
        self._call_timeout = call_timeout
        self._w3 = AsyncWeb3(
            AsyncHTTPProvider(
                endpoint,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=call_timeout)},
            )
        )
        self._marketplace_address = self._w3.to_checksum_address(marketplace_address)
        self._market: Any = self._w3.eth.contract(
            address=self._marketplace_address, abi=MARKETPLACE_ABI
        )
        self._nft: Any = None
        if nft_address:
            self._nft = self._w3.eth.contract(
                address=self._w3.to_checksum_address(nft_address), abi=PWNFT_ABI
            )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _bounded(self, awaitable: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._call_timeout)
        except TRANSPORT_ERRORS as e:
            raise LedgerTransportError(f"{self._endpoint}: {type(e).__name__}: {e}") from e

    # --- Health probes ---

    async def get_block_number(self) -> int:
        result: int = await self._bounded(self._w3.eth.block_number)
        return int(result)

    async def get_chain_id(self) -> int:
        result: int = await self._bounded(self._w3.eth.chain_id)
        return int(result)

    async def get_code(self, address: str) -> bytes:
        code = await self._bounded(self._w3.eth.get_code(self._w3.to_checksum_address(address)))
        return bytes(code)

    async def is_initialized(self) -> bool:
        return bool(await self._bounded(self._market.functions.initialized().call()))

    # --- Listing reads ---

    async def read_quality_listing(self, quality: int, index: int) -> IndexRead:
        try:
            value = await self._bounded(
                self._market.functions.qualityListings(quality, index).call()
            )
        except LedgerTransportError as e:
            return TransientFailure(reason=str(e))
        except END_OF_DATA_ERRORS as e:
            return EndOfBucket(reason=type(e).__name__)
        except Exception as e:
            logger.warning("bucket_read_unexpected_error", quality=quality, index=index, error=str(e))
            return TransientFailure(reason=f"{type(e).__name__}: {e}")

        if value is None:
            return EndOfBucket(reason="empty_return")
        return IndexValue(token_id=int(value))

    async def get_listing(self, token_id: int) -> Dict[str, Any]:
        values = await self._bounded(self._market.functions.listings(token_id).call())
        if isinstance(values, dict):
            return dict(values)
        return dict(zip(LISTING_FIELDS, values))

    async def token_uri(self, token_id: int) -> Optional[str]:
        if self._nft is None:
            return None
        uri = await self._bounded(self._nft.functions.tokenURI(token_id).call())
        return str(uri) if uri else None

    # --- Events ---

    async def get_mutation_events(self, from_block: int, to_block: int) -> List[MutationEvent]:
        events: List[MutationEvent] = []
        for event_name, kind in EVENT_KINDS:
            event = getattr(self._market.events, event_name)
            logs = await self._bounded(event.get_logs(from_block=from_block, to_block=to_block))
            for log in logs:
                events.append(
                    MutationEvent(
                        kind=kind,
                        token_id=int(log["args"]["tokenId"]),
                        block_number=int(log["blockNumber"]),
                    )
                )
        events.sort(key=lambda ev: ev.block_number or 0)
        return events

    async def close(self) -> None:
        provider: Any = self._w3.provider
        if hasattr(provider, "disconnect"):
            await provider.disconnect()


def ledger_client_factory(config: Settings) -> LedgerClientFactory:
    """Builds clients for the configured marketplace on any endpoint"""

    def build(endpoint: str) -> ILedgerClient:
        return Web3LedgerClient(
            endpoint=endpoint,
            marketplace_address=config.market_address,
            nft_address=config.nft_address,
            call_timeout=config.call_timeout,
        )

    return build
