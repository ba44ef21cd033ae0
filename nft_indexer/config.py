import os, json, pathlib
from dotenv import load_dotenv

# always load from local file
load_dotenv(".env")

# -------- env / config --------
RPC_URL             = os.getenv("RPC_URL")
DB_PATH             = os.getenv("DB_PATH", "nft_market.sqlite")
CONFIRMS            = int(os.getenv("CONFIRMS", "0"))
POLL_INTERVAL       = float(os.getenv("POLL_INTERVAL", "2.0"))
EVENT_QUEUE_SIZE    = int(os.getenv("EVENT_QUEUE_SIZE", "256"))
IPFS_GATEWAY        = os.getenv("IPFS_GATEWAY", "https://ipfs.io/ipfs/")
METADATA_TIMEOUT    = float(os.getenv("METADATA_TIMEOUT", "15"))
SHUTDOWN_TIMEOUT    = float(os.getenv("SHUTDOWN_TIMEOUT", "10"))
LOG_LEVEL           = os.getenv("LOG_LEVEL", "INFO").upper()

# -------- contract artifacts --------
NFT_ABI_PATH        = os.getenv("NFT_ABI_PATH", "contracts/NFT.json")
MARKET_ABI_PATH     = os.getenv("MARKET_ABI_PATH", "contracts/NFTMarket-abi.json")
MARKET_ADDRESS_PATH = os.getenv("MARKET_ADDRESS_PATH", "contracts/NFTMarket-address.json")

ZERO_ADDR           = "0x0000000000000000000000000000000000000000"


def load_abi(path: str) -> list:
    """
    Accepts a bare ABI list or a build artifact with an "abi" key.
    """
    data = json.loads(pathlib.Path(path).read_text())
    if isinstance(data, dict):
        data = data.get("abi")
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain an ABI list")
    return data


def _market_address():
    addr = os.getenv("MARKET_ADDRESS")
    if addr:
        return addr
    p = pathlib.Path(MARKET_ADDRESS_PATH)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text()).get("address")
    except (ValueError, AttributeError) as e:
        print(f"[config] failed to parse {MARKET_ADDRESS_PATH}: {e}")
        return None


MARKET_ADDRESS = _market_address()
