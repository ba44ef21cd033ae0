import asyncio, logging, signal, sqlite3
from functools import partial

import httpx
import uvloop

from nft_indexer import config
from nft_indexer.contract import LedgerContract
from nft_indexer.db import db, ensure_schema
from nft_indexer.errors import IndexerError
from nft_indexer.indexer import Indexer
from nft_indexer.metadata import MetadataFetcher
from nft_indexer.registry import ContractRegistry
from nft_indexer.service import IndexerService

logger = logging.getLogger("nft_indexer")


async def main():
    if not config.RPC_URL:
        raise SystemExit("Missing RPC_URL in .env")
    if not config.MARKET_ADDRESS:
        raise SystemExit(f"Missing MARKET_ADDRESS in .env (or {config.MARKET_ADDRESS_PATH})")

    conn = db()
    ensure_schema(conn)
    nft_abi = config.load_abi(config.NFT_ABI_PATH)
    market_abi = config.load_abi(config.MARKET_ABI_PATH)

    market = await LedgerContract.connect(config.RPC_URL, config.MARKET_ADDRESS, market_abi)
    registry = ContractRegistry(partial(LedgerContract.connect, config.RPC_URL, abi=nft_abi))
    logger.info(f"Connected, market={market.address} head={await market.head_block()}")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with httpx.AsyncClient(timeout=config.METADATA_TIMEOUT, follow_redirects=True) as http:
        indexer = Indexer(conn, registry, market, MetadataFetcher(http))
        service = IndexerService(indexer)
        try:
            try:
                await service.start()
            except (IndexerError, sqlite3.Error) as e:
                logger.critical(f"startup resync failed: {e}")
                raise SystemExit(1) from e
            await stop.wait()
            logger.info("shutting down")
        finally:
            await service.stop()
            await registry.close()
            await market.close()
            conn.close()


def run():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvloop.run(main())


if __name__ == "__main__":
    run()
