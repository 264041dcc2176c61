"""
Infrastructure Layer: Configuration Adapter
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pwmarket.domain import ZERO_ADDRESS, PaymentToken


@dataclass(frozen=True)
class NetworkProfile:
    """Per-network endpoints and contract addresses"""
    name: str
    chain_id: int
    rpc_url: str
    fallback_rpc_url: str
    marketplace_address: str
    native_symbol: str = "BNB"
    payment_tokens: Tuple[PaymentToken, ...] = ()


NETWORKS: Dict[str, NetworkProfile] = {
    "MAIN": NetworkProfile(
        name="Binance Smart Chain",
        chain_id=56,
        rpc_url="https://bsc-dataseed.binance.org/",
        fallback_rpc_url="https://bsc-dataseed1.binance.org/",
        marketplace_address="0x1DAaD60260C2672c4ab84F887C12481d9c3aA6b5",
        payment_tokens=(
            PaymentToken("USDT", "0x4e79347Ea521Af7E3D948C63E22711fd24472158", 18),
            PaymentToken("USDC", "0x94B77aa27935D75618621B871dcb5A8C1cF83002", 18),
        ),
    ),
    "TEST": NetworkProfile(
        name="BSC Testnet",
        chain_id=97,
        rpc_url="https://data-seed-prebsc-1-s1.binance.org:8545/",
        fallback_rpc_url="https://bsc-testnet-dataseed.bnbchain.org/",
        marketplace_address=ZERO_ADDRESS,
    ),
}


class Settings(BaseSettings):
    """
    Global application settings loaded from .env file and environment variables.
    Follows 12-factor app methodology.
    """

    # Network
    network: str = Field("MAIN", alias="NETWORK")
    rpc_url: Optional[str] = Field(None, alias="RPC_URL")
    fallback_rpc_url: Optional[str] = Field(None, alias="FALLBACK_RPC_URL")
    marketplace_address: Optional[str] = Field(None, alias="MARKETPLACE_ADDRESS")
    nft_address: Optional[str] = Field(None, alias="PWNFT_ADDRESS")

    # Remote reads
    connect_timeout: float = Field(15.0, alias="CONNECT_TIMEOUT")
    call_timeout: float = Field(8.0, alias="CALL_TIMEOUT")
    retry_attempts: int = Field(3, alias="RETRY_ATTEMPTS")
    retry_delay: float = Field(2.0, alias="RETRY_DELAY")
    max_bucket_items: int = Field(1000, alias="MAX_BUCKET_ITEMS")
    max_concurrent_fetches: int = Field(16, alias="MAX_CONCURRENT_FETCHES")
    health_recheck_interval: float = Field(60.0, alias="HEALTH_RECHECK_INTERVAL")

    # Cache
    cache_ttl: float = Field(1800.0, alias="CACHE_TTL")
    cache_sweep_interval: float = Field(600.0, alias="CACHE_SWEEP_INTERVAL")
    cache_dir: str = Field("data/listing_cache", alias="CACHE_DIR")
    cache_max_entries: int = Field(5000, alias="CACHE_MAX_ENTRIES")

    # Metadata
    ipfs_gateway: str = Field("https://ipfs.io/ipfs/", alias="IPFS_GATEWAY")
    metadata_timeout: float = Field(10.0, alias="METADATA_TIMEOUT")

    # Events
    watch_events: bool = Field(True, alias="WATCH_EVENTS")
    event_poll_interval: float = Field(15.0, alias="EVENT_POLL_INTERVAL")
    event_block_batch: int = Field(2000, alias="EVENT_BLOCK_BATCH")

    # View
    page_size: int = Field(6, alias="PAGE_SIZE")
    default_quality: int = Field(1, alias="DEFAULT_QUALITY")
    default_sort: str = Field("price-asc", alias="DEFAULT_SORT")
    scan_delay: float = Field(30.0, alias="SCAN_DELAY")

    # System
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("network")
    @classmethod
    def _known_network(cls, value: str) -> str:
        name = value.strip().upper()
        if name not in NETWORKS:
            raise ValueError(f"unknown network {value!r}, expected one of {sorted(NETWORKS)}")
        return name

    @property
    def profile(self) -> NetworkProfile:
        return NETWORKS[self.network]

    @property
    def primary_rpc(self) -> str:
        return self.rpc_url or self.profile.rpc_url

    @property
    def fallback_rpc(self) -> str:
        return self.fallback_rpc_url or self.profile.fallback_rpc_url

    @property
    def expected_chain_id(self) -> int:
        return self.profile.chain_id

    @property
    def market_address(self) -> str:
        return self.marketplace_address or self.profile.marketplace_address

    def payment_token(self, address: str) -> Optional[PaymentToken]:
        for token in self.profile.payment_tokens:
            if token.address.lower() == address.lower():
                return token
        return None

# Singleton instance
try:
    settings = Settings()  # type: ignore
except Exception as e:
    # reported here; main refuses to start without settings
    print(f"Configuration Error: {e}")
    settings = None  # type: ignore
