"""
Application Layer: Connection Health Guard
Validates an RPC endpoint before the engine reads from it.
"""
import asyncio
from typing import Any, Awaitable, Optional

import structlog

from pwmarket.application.ports import Clock, ILedgerClient, LedgerClientFactory
from pwmarket.domain import HealthState, HealthStatus

logger = structlog.get_logger()


class ConnectionHealthGuard:
    """
    Checks, in order: block number, network identity, deployed byte-code,
    and the contract's initialized() getter.
    An unusable primary gets exactly one attempt against the fallback endpoint.
    """

    def __init__(
        self,
        client: ILedgerClient,
        client_factory: LedgerClientFactory,
        *,
        expected_chain_id: int,
        contract_address: str,
        fallback_endpoint: Optional[str],
        connect_timeout: float = 15.0,
        recheck_interval: float = 60.0,
        clock: Clock,
    ):
        self._client = client
        self._client_factory = client_factory
        self.primary_endpoint = client.endpoint
        self.expected_chain_id = expected_chain_id
        self.contract_address = contract_address
        self.fallback_endpoint = fallback_endpoint
        self.connect_timeout = connect_timeout
        self.recheck_interval = recheck_interval
        self._clock = clock

        self.last_status: Optional[HealthStatus] = None
        self._last_ready_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def client(self) -> ILedgerClient:
        """Last-known-good client"""
        return self._client

    def reset(self) -> None:
        self.last_status = None
        self._last_ready_at = None

    async def ensure_usable(self, force: bool = False) -> HealthStatus:
        async with self._lock:
            if not force and self.last_status is not None and self._ready_is_fresh():
                return self.last_status

            status = await self.check(self._client)
            if not status.usable:
                status = await self._try_fallback(status)

            self.last_status = status
            self._last_ready_at = self._clock() if status.state is HealthState.READY else None
            return status

    def _ready_is_fresh(self) -> bool:
        if self._last_ready_at is None:
            return False
        return self._clock() - self._last_ready_at < self.recheck_interval

    async def _probe(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.connect_timeout)

    async def check(self, client: ILedgerClient) -> HealthStatus:
        """Runs every probe against one client; never raises"""
        endpoint = client.endpoint
        try:
            block = await self._probe(client.get_block_number())
        except Exception as e:
            logger.warning("health_block_number_failed", endpoint=endpoint, error=str(e))
            return HealthStatus.unusable(endpoint, "transport")

        try:
            chain_id = await self._probe(client.get_chain_id())
        except Exception as e:
            logger.warning("health_chain_id_failed", endpoint=endpoint, error=str(e))
            return HealthStatus.unusable(endpoint, "transport")
        if chain_id != self.expected_chain_id:
            logger.warning(
                "health_wrong_network", endpoint=endpoint, chain_id=chain_id, expected=self.expected_chain_id
            )
            return HealthStatus.unusable(endpoint, "wrong_network")

        try:
            code = await self._probe(client.get_code(self.contract_address))
        except Exception as e:
            logger.warning("health_get_code_failed", endpoint=endpoint, error=str(e))
            return HealthStatus.unusable(endpoint, "transport")
        if not code or not bytes(code).strip(b"\x00"):
            logger.warning("health_contract_missing", endpoint=endpoint, address=self.contract_address)
            return HealthStatus.unusable(endpoint, "contract_not_deployed")

        try:
            initialized = await self._probe(client.is_initialized())
        except Exception as e:
            logger.warning("health_contract_call_failed", endpoint=endpoint, error=str(e))
            return HealthStatus.unusable(endpoint, "contract_call_failed")
        if not initialized:
            logger.warning("health_contract_not_initialized", endpoint=endpoint)
            return HealthStatus.degraded(endpoint, "contract_not_initialized")

        logger.info("health_ready", endpoint=endpoint, block=block, chain_id=chain_id)
        return HealthStatus.ready(endpoint)

    def alternate_endpoint(self) -> Optional[str]:
        """The configured endpoint that is not currently in use"""
        current = self._client.endpoint
        for endpoint in (self.primary_endpoint, self.fallback_endpoint):
            if endpoint and endpoint != current:
                return endpoint
        return None

    async def _try_fallback(self, primary: HealthStatus) -> HealthStatus:
        alternate = self.alternate_endpoint()
        if alternate is None:
            return primary

        logger.info("health_trying_fallback", failed=primary.endpoint, reason=primary.reason, fallback=alternate)
        try:
            candidate = self._client_factory(alternate)
        except Exception as e:
            logger.error("health_fallback_unbuildable", endpoint=alternate, error=str(e))
            return primary

        status = await self.check(candidate)
        if not status.usable:
            await self._close_quietly(candidate)
            logger.error("network_unavailable", primary=primary.reason, fallback=status.reason)
            return primary

        previous, self._client = self._client, candidate
        await self._close_quietly(previous)
        logger.info("health_switched_endpoint", endpoint=candidate.endpoint, state=status.state.value)
        return status

    async def _close_quietly(self, client: ILedgerClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug("ledger_client_close_failed", endpoint=client.endpoint, error=str(e))
