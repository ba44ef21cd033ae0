from web3 import AsyncWeb3

from nft_indexer import config

WORD = 64  # hex chars per 32-byte ABI word


# ---------------- helpers ----------------
def to_hex(x):
    if x is None: return None
    if isinstance(x, (bytes, bytearray)): return "0x" + bytes(x).hex()
    if isinstance(x, int): return hex(x)
    s = str(x).lower()
    return s if s.startswith("0x") else "0x" + s

def to_addr(x):
    if x is None: return None
    return AsyncWeb3.to_checksum_address(x)

def hex_to_int(x):
    if x is None: return None
    if isinstance(x, int): return x
    if isinstance(x, bytes): return int.from_bytes(x, "big")
    s = str(x)
    return int(s, 16) if s.startswith("0x") else int(s)

def is_zero_addr(addr: str) -> bool:
    return addr is not None and addr.lower() == config.ZERO_ADDR

def topic_to_addr(topic_hex: str) -> str:
    # topics are 32-byte values; address is the last 20 bytes
    return AsyncWeb3.to_checksum_address("0x" + topic_hex[-40:])

def topic_to_u256(topic_hex: str) -> int:
    return int(topic_hex, 16)

def data_words(data_hex: str) -> list[str]:
    """
    Split an ABI data payload into its 32-byte words (hex, no prefix).
    A trailing partial word is dropped.
    """
    h = data_hex[2:] if data_hex.startswith("0x") else data_hex
    return [h[i:i + WORD] for i in range(0, len(h) - WORD + 1, WORD)]

def normalize_log(lg) -> dict:
    """
    Flatten a web3 log (AttributeDict with HexBytes) into plain python values.
    """
    txh = lg.get("transactionHash")
    return {
        "address":      to_addr(lg["address"]),
        "topics":       [to_hex(t) for t in lg.get("topics") or []],
        "data":         to_hex(lg.get("data") or b""),
        "block_number": hex_to_int(lg.get("blockNumber")),
        "tx_hash":      to_hex(txh) if txh is not None else None,
        "log_index":    hex_to_int(lg.get("logIndex")),
    }
