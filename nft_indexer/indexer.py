import logging
import sqlite3
from typing import Callable, List, Optional, Tuple

from nft_indexer import backfill, db
from nft_indexer.contract import LedgerContract
from nft_indexer.errors import IndexerError, NotFoundError, UnknownEventError
from nft_indexer.events import (
    MetadataUpdate, NFTContractDeployed, OrderCancelled, OrderCreated,
    OrderFulfilled, Transfer, TRANSFER_TOPIC, UnknownEvent, decode, is_mint,
)
from nft_indexer.helpers import to_addr
from nft_indexer.metadata import MetadataFetcher
from nft_indexer.models import Collection, Order, OrderStatus, Token, TransferRecord
from nft_indexer.registry import ContractRegistry

logger = logging.getLogger(__name__)

# on_bootstrapped(address, first_live_block)
BootstrapHook = Callable[[str, Optional[int]], None]


class Indexer:
    """
    Owns every write to collections, tokens, orders and transfer history.

    Handlers are safe to re-apply: orders are inserted by id and only leave
    the open state once, transfers are keyed by (tx_hash, log_index) and
    owner updates never move backwards in block order.
    """

    def __init__(self, conn: sqlite3.Connection, registry: ContractRegistry,
                 market: LedgerContract, metadata: MetadataFetcher):
        self.conn = conn
        self.registry = registry
        self.market = market
        self.metadata = metadata
        self.on_bootstrapped: Optional[BootstrapHook] = None

    # ---------- full resync ----------
    async def initialize_orders(self) -> int:
        """
        Rebuild orders, tokens and history from the chain. Collections survive.
        Returns the first block the marketplace feed should read.
        """
        db.clear_derived(self.conn)
        head = await self.market.head_block()
        raw = await self.market.call("getOrders")
        orders = [self._order_from_chain(i, o) for i, o in enumerate(raw)]
        db.insert_orders(self.conn, orders)
        logger.info(f"[resync] loaded {len(orders)} orders at block {head}")

        contracts = {o.nft_contract_address for o in orders}
        contracts |= {c.contract_address for c in db.list_collections(self.conn)}
        for address in sorted(contracts):
            try:
                await self.initialize_collection(address)
            except IndexerError as e:
                logger.error(f"[resync] bootstrap of {address} failed: {e}")
        return head + 1

    @staticmethod
    def _order_from_chain(index: int, o) -> Order:
        # getOrders() -> (nft, tokenId, token, price, seller, status)[]
        nft, token_id, token, price, seller, status = o
        return Order(
            id=index + 1,
            nft_contract_address=to_addr(nft),
            token_id=int(token_id),
            token_address=to_addr(token),
            price=str(price),
            seller=to_addr(seller),
            status=OrderStatus(int(status)),
        )

    # ---------- collections / tokens ----------
    async def initialize_collection(self, address: str):
        address = to_addr(address)
        client = await self.registry.resolve(address)

        collection = db.get_collection(self.conn, address)
        if collection is None:
            collection = Collection(
                contract_address=address,
                name=await client.call("name"),
                symbol=await client.call("symbol"),
                token_icon_uri=await self._icon_uri(client),
            )
            db.upsert_collection(self.conn, collection)
            logger.info(f"[bootstrap] new collection {address} ({collection.symbol})")
        elif not collection.token_icon_uri:
            icon = await self._icon_uri(client)
            if icon:
                db.upsert_collection(self.conn, collection.model_copy(update={"token_icon_uri": icon}))

        supply = int(await client.call("totalSupply"))
        failed = 0
        for token_id in range(supply):
            try:
                await self.initialize_token(address, token_id)
            except IndexerError as e:
                failed += 1
                logger.warning(f"[bootstrap] token {address}#{token_id}: {e}")
        logger.info(f"[bootstrap] {address}: {supply - failed}/{supply} tokens populated")

        next_block = await self._backfill(client)
        if self.on_bootstrapped is not None:
            self.on_bootstrapped(address, next_block)

    async def _icon_uri(self, client: LedgerContract) -> str:
        try:
            return await client.call("tokenIconURI")
        except IndexerError as e:
            logger.warning(f"[bootstrap] tokenIconURI on {client.address}: {e}")
            return ""

    async def _backfill(self, client: LedgerContract) -> Optional[int]:
        try:
            head = await client.head_block()
            start = await backfill.locate_creation_block(client, head)
            logs = await backfill.replay_history(client, start, head, [TRANSFER_TOPIC])
        except IndexerError as e:
            logger.error(f"[backfill] {client.address}: {e}")
            return None
        for lg in logs:
            try:
                await self.handle_nft_log(lg)
            except IndexerError as e:
                logger.warning(f"[backfill] {client.address} log {lg.get('tx_hash')}:{lg.get('log_index')}: {e}")
        return head + 1

    async def initialize_token(self, address: str, token_id: int):
        address = to_addr(address)
        if db.get_collection(self.conn, address) is None:
            raise NotFoundError(f"collection {address} is not indexed")
        client = await self.registry.resolve(address)

        token_uri = await client.call("tokenURI", token_id)
        owner = to_addr(await client.call("ownerOf", token_id))
        meta = await self.metadata.fetch(token_uri)

        db.upsert_token(self.conn, Token(
            contract_address=address,
            token_id=token_id,
            owner=owner,
            token_uri=token_uri,
            name=meta.name,
            description=meta.description,
            image=meta.image,
        ))
        db.replace_attributes(self.conn, address, token_id, meta.to_attributes())

    # ---------- NFT contract events ----------
    async def handle_nft_log(self, log: dict):
        event = decode(log)
        if isinstance(event, Transfer):
            await self.handle_transfer(event)
        elif isinstance(event, MetadataUpdate):
            await self.handle_metadata_update(event)
        else:
            logger.debug(f"[nft] ignoring {type(event).__name__} from {log['address']}")

    async def handle_transfer(self, event: Transfer):
        address = to_addr(event.address)
        record = TransferRecord(
            contract_address=address,
            token_id=event.token_id,
            event_type="mint" if is_mint(event) else "transfer",
            from_address=event.from_address,
            to_address=event.to_address,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            block_timestamp=await self._block_timestamp(address, event.block_number),
        )
        db.insert_transfer(self.conn, record)

        if not db.update_token_owner(self.conn, address, event.token_id, event.to_address, event.block_number):
            await self.initialize_token(address, event.token_id)

    async def handle_metadata_update(self, event: MetadataUpdate):
        await self.initialize_token(event.address, event.token_id)

    async def _block_timestamp(self, address: str, block_number: int) -> int:
        try:
            client = await self.registry.resolve(address)
            return await client.block_timestamp(block_number)
        except IndexerError as e:
            logger.warning(f"[nft] timestamp for block {block_number}: {e}")
            return 0

    # ---------- marketplace events ----------
    async def handle_market_log(self, log: dict):
        event = decode(log)
        if isinstance(event, OrderCreated):
            await self.handle_order_created(event)
        elif isinstance(event, OrderCancelled):
            self._transition(event.order_id, OrderStatus.CANCELLED)
        elif isinstance(event, OrderFulfilled):
            self._transition(event.order_id, OrderStatus.FULFILLED)
        elif isinstance(event, NFTContractDeployed):
            await self.handle_contract_deployed(event)
        else:
            topic0 = event.topic0 if isinstance(event, UnknownEvent) else type(event).__name__
            raise UnknownEventError(f"unexpected marketplace event {topic0} in tx {log.get('tx_hash')}")

    async def handle_order_created(self, event: OrderCreated):
        nft = to_addr(event.nft)
        db.insert_orders(self.conn, [Order(
            id=event.order_id + 1,
            nft_contract_address=nft,
            token_id=event.token_id,
            token_address=to_addr(event.token),
            price=str(event.price),
            seller=to_addr(event.seller),
        )])
        if db.get_collection(self.conn, nft) is None:
            try:
                await self.initialize_collection(nft)
            except IndexerError as e:
                logger.error(f"[market] bootstrap of {nft} for order {event.order_id}: {e}")

    def _transition(self, chain_order_id: int, status: OrderStatus):
        order_id = chain_order_id + 1
        order = db.get_order(self.conn, order_id)
        if order is None:
            raise NotFoundError(f"order {order_id} (on-chain {chain_order_id}) not found")
        if order.status == status:
            return
        if order.status != OrderStatus.OPEN:
            logger.warning(f"[market] order {order_id} is {order.status.name}, ignoring {status.name}")
            return
        db.update_order_status(self.conn, order_id, status)
        logger.info(f"[market] order {order_id} -> {status.name}")

    async def handle_contract_deployed(self, event: NFTContractDeployed):
        nft = to_addr(event.nft)
        if db.get_collection(self.conn, nft) is None:
            await self.initialize_collection(nft)

    # ---------- read accessors ----------
    def get_order(self, chain_order_id: int) -> Order:
        order = db.get_order(self.conn, chain_order_id + 1)
        if order is None:
            raise NotFoundError(f"order {chain_order_id} not found")
        return order

    def get_order_by_nft(self, address: str, token_id: int) -> Order:
        order = db.get_order_by_nft(self.conn, to_addr(address), token_id)
        if order is None:
            raise NotFoundError(f"no order for {address}#{token_id}")
        return order

    def list_orders(self) -> List[Order]:
        return db.list_orders(self.conn)

    def list_collections(self) -> List[Collection]:
        return db.list_collections(self.conn)

    async def get_collection(self, address: str) -> Tuple[Collection, List[Token]]:
        address = to_addr(address)
        collection = db.get_collection(self.conn, address)
        if collection is None:
            try:
                await self.initialize_collection(address)
            except IndexerError as e:
                raise NotFoundError(f"{address} is not a valid NFT contract: {e}") from e
            collection = db.get_collection(self.conn, address)
            if collection is None:
                raise NotFoundError(f"{address} is not a valid NFT contract")
        return collection, db.list_tokens(self.conn, address)

    async def get_token(self, address: str, token_id: int) -> Token:
        address = to_addr(address)
        token = db.get_token(self.conn, address, token_id)
        if token is not None:
            return token
        try:
            if db.get_collection(self.conn, address) is None:
                await self.initialize_collection(address)
            else:
                await self.initialize_token(address, token_id)
        except IndexerError as e:
            raise NotFoundError(f"token {address}#{token_id} not found: {e}") from e
        token = db.get_token(self.conn, address, token_id)
        if token is None:
            raise NotFoundError(f"token {address}#{token_id} not found")
        return token

    def get_transfer_history(self, address: str, token_id: int) -> List[TransferRecord]:
        return db.get_transfers(self.conn, to_addr(address), token_id)

    def get_current_owner(self, address: str, token_id: int) -> str:
        latest = db.get_latest_transfer(self.conn, to_addr(address), token_id)
        if latest is None:
            raise NotFoundError(f"no transfer history for {address}#{token_id}")
        return latest.to_address
