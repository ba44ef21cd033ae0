import logging
from typing import List, Optional

from nft_indexer.contract import LedgerContract
from nft_indexer.errors import NotFoundError

logger = logging.getLogger(__name__)


async def locate_creation_block(client: LedgerContract, head: Optional[int] = None) -> int:
    """
    Lowest block at which the contract has code, found by bisection over
    [0, head]. Code presence is monotonic once deployed, so this takes
    O(log head) get_code queries.
    """
    if head is None:
        head = await client.head_block()
    if await client.code_size(head) == 0:
        raise NotFoundError(f"no contract code at {client.address} as of block {head}")

    lo, hi = 0, head
    while lo < hi:
        mid = (lo + hi) // 2
        if await client.code_size(mid) > 0:
            hi = mid
        else:
            lo = mid + 1
    logger.debug(f"[backfill] {client.address} created at block {lo}")
    return lo


async def replay_history(client: LedgerContract, from_block: int, to_block: int,
                         topics: Optional[list] = None) -> List[dict]:
    """
    Historical logs for [from_block, to_block] in one range query, in the
    node's (block-ascending) order.
    """
    logs = await client.get_logs(from_block, to_block, topics)
    logger.info(f"[backfill] {client.address}: {len(logs)} logs in blocks {from_block}-{to_block}")
    return logs
