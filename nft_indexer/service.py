import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from nft_indexer import config
from nft_indexer.contract import LedgerContract
from nft_indexer.helpers import to_addr
from nft_indexer.indexer import Indexer

logger = logging.getLogger(__name__)

LogHandler = Callable[[dict], Awaitable[None]]


class IndexerService:
    """
    Runs the startup resync and one live watcher task per contract.

    All watchers share a single stop event. Each one pumps its contract's
    log stream into a bounded queue from a producer task and handles logs
    until the event is set or the stream ends.
    """

    def __init__(self, indexer: Indexer, queue_size: Optional[int] = None,
                 shutdown_timeout: Optional[float] = None):
        self.indexer = indexer
        self.queue_size = config.EVENT_QUEUE_SIZE if queue_size is None else queue_size
        self.shutdown_timeout = config.SHUTDOWN_TIMEOUT if shutdown_timeout is None else shutdown_timeout
        self._stop = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}
        indexer.on_bootstrapped = self.watch

    @property
    def watched(self):
        return set(self._tasks)

    async def start(self):
        """Full resync, then the marketplace feed. Resync failures propagate."""
        next_block = await self.indexer.initialize_orders()
        market = self.indexer.market
        self._spawn(market.address, self._run(market, self.indexer.handle_market_log, next_block))
        logger.info(f"[service] started, watching {len(self._tasks)} contracts")

    def watch(self, address: str, from_block: Optional[int] = None):
        """Start the live feed for an NFT contract unless it already has one."""
        address = to_addr(address)
        if self._stop.is_set() or address in self._tasks:
            return
        self._spawn(address, self._run_nft(address, from_block))

    def _spawn(self, address: str, coro):
        task = asyncio.create_task(coro, name=f"watch-{address}")
        self._tasks[address] = task

    async def stop(self):
        self._stop.set()
        tasks = list(self._tasks.values())
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"[service] stopped {len(tasks)} watchers ({len(pending)} cancelled)")

    # ---------- watchers ----------
    async def _run_nft(self, address: str, from_block: Optional[int]):
        try:
            client = await self.indexer.registry.resolve(address)
        except Exception as e:
            logger.error(f"[watch] {address}: cannot bind contract: {e}")
            return
        await self._run(client, self.indexer.handle_nft_log, from_block)

    async def _run(self, client: LedgerContract, handler: LogHandler, from_block: Optional[int]):
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        producer = asyncio.create_task(self._produce(client, queue, from_block))
        stopped = asyncio.create_task(self._stop.wait())
        logger.info(f"[watch] {client.address} live from block {from_block if from_block is not None else 'head'}")
        getter = None
        try:
            while not stopped.done():
                getter = asyncio.create_task(queue.get())
                await asyncio.wait({getter, stopped, producer}, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    await self._handle(client, handler, getter.result())
                    continue
                getter.cancel()
                if stopped.done():
                    break
                # stream ended on its own: drain what it already delivered
                while not queue.empty():
                    await self._handle(client, handler, queue.get_nowait())
                break
        finally:
            owned = [t for t in (producer, stopped, getter) if t is not None]
            for task in owned:
                task.cancel()
            await asyncio.gather(*owned, return_exceptions=True)
            logger.info(f"[watch] {client.address} stopped")

    async def _handle(self, client: LedgerContract, handler: LogHandler, log: dict):
        try:
            await handler(log)
        except Exception as e:
            logger.error(f"[watch] {client.address} tx {log.get('tx_hash')}: {e}")

    async def _produce(self, client: LedgerContract, queue: asyncio.Queue, from_block: Optional[int]):
        try:
            async for log in client.stream_logs(self._stop, from_block):
                await queue.put(log)
        except Exception as e:
            logger.error(f"[watch] {client.address} log stream failed: {e}")
