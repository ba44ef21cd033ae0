import asyncio
import logging
from typing import AsyncIterator, List, Optional

from eth_abi.exceptions import DecodingError, EncodingError
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, MismatchedABI, Web3ValidationError

from nft_indexer import config
from nft_indexer.errors import AbiMismatchError, ChainCommunicationError
from nft_indexer.helpers import normalize_log, to_addr

logger = logging.getLogger(__name__)

ABI_ERRORS = (MismatchedABI, Web3ValidationError, BadFunctionCallOutput, DecodingError, EncodingError, TypeError)
TIMESTAMP_CACHE_SIZE = 4096


class LedgerContract:
    """
    Read access to one deployed contract: calls, log queries, the live log
    feed and block metadata. Every network failure is raised as
    ChainCommunicationError with the original exception chained.
    """

    def __init__(self, w3: AsyncWeb3, address: str, abi: list):
        self.w3 = w3
        self.address = to_addr(address)
        self.abi = abi
        self.contract = w3.eth.contract(address=self.address, abi=abi)
        self._methods = {e.get("name") for e in abi if e.get("type") == "function"}
        self._timestamps = {}

    @classmethod
    async def connect(cls, rpc_url: str, address: str, abi: list) -> "LedgerContract":
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if not await w3.is_connected():
            raise ChainCommunicationError(f"cannot reach RPC endpoint for {address}")
        return cls(w3, address, abi)

    async def close(self):
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.warning(f"[contract] disconnect {self.address}: {e}")

    # ---------- calls ----------
    async def call(self, method: str, *args):
        if method not in self._methods:
            raise AbiMismatchError(f"method {method} not in ABI of {self.address}")
        try:
            fn = self.contract.functions[method](*args)
            return await fn.call()
        except ABI_ERRORS as e:
            raise AbiMismatchError(f"{method}{args} on {self.address}: {e}") from e
        except Exception as e:
            raise ChainCommunicationError(f"{method}{args} on {self.address}: {e}") from e

    # ---------- logs ----------
    async def get_logs(self, from_block: int, to_block: int, topics: Optional[list] = None) -> List[dict]:
        params = {"fromBlock": from_block, "toBlock": to_block, "address": self.address}
        if topics:
            params["topics"] = topics
        try:
            logs = await self.w3.eth.get_logs(params)
        except Exception as e:
            raise ChainCommunicationError(f"get_logs {from_block}-{to_block} on {self.address}: {e}") from e
        return [normalize_log(lg) for lg in logs]

    async def stream_logs(self, stop: asyncio.Event, from_block: Optional[int] = None,
                          poll_interval: Optional[float] = None,
                          confirms: Optional[int] = None) -> AsyncIterator[dict]:
        """
        Yield every log emitted by this contract from `from_block` onwards
        (default: the next block after the current head) until `stop` is set.
        A failed poll is logged and retried from the same block on the next tick.
        """
        poll = config.POLL_INTERVAL if poll_interval is None else poll_interval
        lag = config.CONFIRMS if confirms is None else confirms
        next_block = from_block

        while not stop.is_set():
            try:
                head = await self.head_block()
                if next_block is None:
                    next_block = head + 1
                safe = max(0, head - lag)
                logs = await self.get_logs(next_block, safe) if next_block <= safe else []
            except ChainCommunicationError as e:
                logger.warning(f"[contract] {self.address} poll from block {next_block} failed: {e}")
            else:
                for lg in logs:
                    yield lg
                next_block = max(next_block, safe + 1)
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass

    # ---------- blocks ----------
    async def head_block(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            raise ChainCommunicationError(f"block_number: {e}") from e

    async def block_timestamp(self, block_number: int) -> int:
        ts = self._timestamps.get(block_number)
        if ts is not None:
            return ts
        try:
            block = await self.w3.eth.get_block(block_number)
        except Exception as e:
            raise ChainCommunicationError(f"get_block {block_number}: {e}") from e
        if len(self._timestamps) >= TIMESTAMP_CACHE_SIZE:
            self._timestamps.clear()
        ts = self._timestamps[block_number] = int(block["timestamp"])
        return ts

    async def code_size(self, block_number: int) -> int:
        try:
            code = await self.w3.eth.get_code(self.address, block_identifier=block_number)
        except Exception as e:
            raise ChainCommunicationError(f"get_code {self.address}@{block_number}: {e}") from e
        return len(code)
