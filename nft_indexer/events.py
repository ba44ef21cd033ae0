"""
Topic-signature dispatch for the events the indexer understands.

decode() turns a normalized log dict (see helpers.normalize_log) into one
of the event models below. Indexed parameters are read from topics[1:]
in declaration order; static non-indexed parameters are read from the data
payload as consecutive 32-byte words. An unrecognized topic0 yields
UnknownEvent so each caller decides whether that matters.
"""
from typing import Dict, Optional, Tuple, Type, Union

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from pydantic import BaseModel
from web3 import Web3

from nft_indexer.errors import AbiMismatchError
from nft_indexer.helpers import data_words, is_zero_addr, topic_to_addr, topic_to_u256


class LogEvent(BaseModel):
    address: str
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None

class Transfer(LogEvent):
    from_address: str
    to_address: str
    token_id: int

class MetadataUpdate(LogEvent):
    token_id: int

class OrderCreated(LogEvent):
    order_id: int
    nft: str
    token_id: int
    token: str
    price: int
    seller: str

class OrderCancelled(LogEvent):
    order_id: int

class OrderFulfilled(LogEvent):
    order_id: int
    buyer: Optional[str] = None

class NFTContractDeployed(LogEvent):
    nft: str
    name: str = ""
    symbol: str = ""

class UnknownEvent(LogEvent):
    topic0: Optional[str] = None


DomainEvent = Union[Transfer, MetadataUpdate, OrderCreated, OrderCancelled, OrderFulfilled, NFTContractDeployed]

# (field, abi type, indexed) in declaration order
Layout = Tuple[Tuple[str, str, bool], ...]

EVENTS: Dict[str, Tuple[Type[LogEvent], Layout]] = {
    "Transfer(address,address,uint256)": (Transfer, (
        ("from_address", "address", True),
        ("to_address",   "address", True),
        ("token_id",     "uint256", True),
    )),
    "MetadataUpdate(uint256)": (MetadataUpdate, (
        ("token_id", "uint256", False),
    )),
    "OrderCreated(uint256,address,uint256,address,uint256,address)": (OrderCreated, (
        ("order_id", "uint256", True),
        ("nft",      "address", True),
        ("token_id", "uint256", True),
        ("token",    "address", False),
        ("price",    "uint256", False),
        ("seller",   "address", False),
    )),
    "OrderCancelled(uint256)": (OrderCancelled, (
        ("order_id", "uint256", True),
    )),
    "OrderFulfilled(uint256,address)": (OrderFulfilled, (
        ("order_id", "uint256", True),
        ("buyer",    "address", False),
    )),
    "NFTContractDeployed(address,string,string)": (NFTContractDeployed, (
        ("nft",    "address", True),
        ("name",   "string",  False),
        ("symbol", "string",  False),
    )),
}


def signature_hash(signature: str) -> str:
    return "0x" + Web3.keccak(text=signature).hex().removeprefix("0x")

TOPICS: Dict[str, Tuple[Type[LogEvent], Layout]] = {signature_hash(sig): spec for sig, spec in EVENTS.items()}
TOPIC_BY_EVENT: Dict[Type[LogEvent], str] = {spec[0]: topic for topic, spec in TOPICS.items()}

TRANSFER_TOPIC = TOPIC_BY_EVENT[Transfer]


def _static(typ: str, word: str):
    if typ == "address":
        return topic_to_addr(word)
    return topic_to_u256(word)


def decode(log: dict) -> Union[DomainEvent, UnknownEvent]:
    topics = log.get("topics") or []
    meta = {
        "address":      log["address"],
        "block_number": log.get("block_number"),
        "tx_hash":      log.get("tx_hash"),
        "log_index":    log.get("log_index"),
    }
    topic0 = topics[0].lower() if topics else None
    spec = TOPICS.get(topic0)
    if spec is None:
        return UnknownEvent(topic0=topic0, **meta)

    cls, layout = spec
    indexed = [(name, typ) for name, typ, ix in layout if ix]
    plain = [(name, typ) for name, typ, ix in layout if not ix]
    if len(topics) < len(indexed) + 1:
        raise AbiMismatchError(f"{cls.__name__}: expected {len(indexed)} indexed topics, got {len(topics) - 1}")

    fields = {}
    for (name, typ), topic in zip(indexed, topics[1:]):
        fields[name] = _static(typ, topic)

    data = log.get("data") or "0x"
    if any(typ == "string" for _, typ in plain):
        try:
            values = abi_decode([typ for _, typ in plain], bytes.fromhex(data.removeprefix("0x")))
        except (DecodingError, ValueError) as e:
            raise AbiMismatchError(f"{cls.__name__}: bad data payload: {e}") from e
        for (name, typ), value in zip(plain, values):
            fields[name] = Web3.to_checksum_address(value) if typ == "address" else value
    else:
        words = data_words(data)
        if len(words) < len(plain):
            raise AbiMismatchError(f"{cls.__name__}: expected {len(plain)} data words, got {len(words)}")
        for (name, typ), word in zip(plain, words):
            fields[name] = _static(typ, word)

    return cls(**fields, **meta)


def is_mint(event: Transfer) -> bool:
    return is_zero_addr(event.from_address)
