from enum import IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderStatus(IntEnum):
    OPEN      = 0
    FULFILLED = 1
    CANCELLED = 2


# ---------- persisted rows ----------
class Collection(BaseModel):
    contract_address: str
    name: str = ""
    symbol: str = ""
    token_icon_uri: str = ""

class Attribute(BaseModel):
    trait_type: str
    value: str

class Token(BaseModel):
    contract_address: str
    token_id: int = Field(ge=0)
    owner: Optional[str] = None
    token_uri: str = ""
    name: str = ""
    description: str = ""
    image: str = ""
    attributes: List[Attribute] = Field(default_factory=list)

class Order(BaseModel):
    id: int = Field(ge=1)   # on-chain order id + 1
    nft_contract_address: str
    token_id: int = Field(ge=0)
    token_address: str
    price: str              # uint256 as decimal string
    seller: str
    status: OrderStatus = OrderStatus.OPEN

class TransferRecord(BaseModel):
    contract_address: str
    token_id: int
    event_type: str         # "mint" | "transfer"
    from_address: str
    to_address: str
    tx_hash: str
    log_index: int
    block_number: int
    block_timestamp: int = 0
