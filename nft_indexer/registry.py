import asyncio
import logging
from typing import Awaitable, Callable, Dict

from nft_indexer.contract import LedgerContract
from nft_indexer.helpers import to_addr

logger = logging.getLogger(__name__)


class ContractRegistry:
    """
    One LedgerContract per address, built on first use.

    Lookups of cached clients take no lock. Construction happens under a
    single lock with a second cache check, so concurrent resolvers of the
    same address wait for one construction and share its result. A failed
    construction leaves nothing cached.
    """

    def __init__(self, factory: Callable[[str], Awaitable[LedgerContract]]):
        self._factory = factory
        self._clients: Dict[str, LedgerContract] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, address: str) -> bool:
        return to_addr(address) in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def resolve(self, address: str) -> LedgerContract:
        address = to_addr(address)
        client = self._clients.get(address)
        if client is not None:
            return client

        async with self._lock:
            client = self._clients.get(address)
            if client is None:
                client = await self._factory(address)
                self._clients[address] = client
                logger.info(f"[registry] bound contract {address}")
            return client

    async def close(self):
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.close()
