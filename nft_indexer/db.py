import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from nft_indexer import config
from nft_indexer.models import Attribute, Collection, Order, OrderStatus, Token, TransferRecord

DERIVED_TABLES = ("orders", "tokens", "token_attributes", "transfer_events")


def db(path: Optional[str] = None):
    conn = sqlite3.connect(path or config.DB_PATH, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    return conn

def ensure_schema(conn: sqlite3.Connection):
    conn.executescript("""
    CREATE TABLE IF NOT EXISTS collections (
      contract_address TEXT PRIMARY KEY,   -- checksum
      name             TEXT NOT NULL DEFAULT '',
      symbol           TEXT NOT NULL DEFAULT '',
      token_icon_uri   TEXT NOT NULL DEFAULT ''
    );

    CREATE TABLE IF NOT EXISTS tokens (
      contract_address TEXT NOT NULL REFERENCES collections(contract_address),
      token_id         TEXT NOT NULL,      -- uint256 as decimal string
      owner            TEXT,
      owner_block      INTEGER NOT NULL DEFAULT -1,
      token_uri        TEXT NOT NULL DEFAULT '',
      name             TEXT NOT NULL DEFAULT '',
      description      TEXT NOT NULL DEFAULT '',
      image            TEXT NOT NULL DEFAULT '',
      PRIMARY KEY (contract_address, token_id)
    );
    CREATE INDEX IF NOT EXISTS idx_tokens_owner ON tokens(owner);

    CREATE TABLE IF NOT EXISTS token_attributes (
      contract_address TEXT NOT NULL,
      token_id         TEXT NOT NULL,
      position         INTEGER NOT NULL,
      trait_type       TEXT NOT NULL,
      value            TEXT NOT NULL,
      PRIMARY KEY (contract_address, token_id, position)
    );

    CREATE TABLE IF NOT EXISTS orders (
      id                   INTEGER PRIMARY KEY,  -- on-chain order id + 1
      nft_contract_address TEXT NOT NULL,
      token_id             TEXT NOT NULL,
      token_address        TEXT NOT NULL,
      price                TEXT NOT NULL,        -- wei as decimal string
      seller               TEXT NOT NULL,
      status               INTEGER NOT NULL DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_orders_nft ON orders(nft_contract_address, token_id);
    CREATE INDEX IF NOT EXISTS idx_orders_seller ON orders(seller);

    CREATE TABLE IF NOT EXISTS transfer_events (
      contract_address TEXT NOT NULL,
      token_id         TEXT NOT NULL,
      event_type       TEXT NOT NULL,          -- mint | transfer
      from_address     TEXT NOT NULL,
      to_address       TEXT NOT NULL,
      tx_hash          TEXT NOT NULL,
      log_index        INTEGER NOT NULL,
      block_number     INTEGER NOT NULL,
      block_timestamp  INTEGER NOT NULL,
      PRIMARY KEY (tx_hash, log_index)
    );
    CREATE INDEX IF NOT EXISTS idx_transfers_token ON transfer_events(contract_address, token_id, block_number);
    """)

@contextmanager
def transaction(conn: sqlite3.Connection):
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")

def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}

def clear_derived(conn):
    with transaction(conn):
        for table in DERIVED_TABLES:
            conn.execute(f"DELETE FROM {table}")

# ----------------------- collections -----------------------
def upsert_collection(conn, c: Collection):
    conn.execute("""
        INSERT INTO collections(contract_address, name, symbol, token_icon_uri)
        VALUES(?,?,?,?)
        ON CONFLICT(contract_address) DO UPDATE SET
          name=excluded.name, symbol=excluded.symbol, token_icon_uri=excluded.token_icon_uri
    """, (c.contract_address, c.name, c.symbol, c.token_icon_uri))

def get_collection(conn, contract_address: str) -> Optional[Collection]:
    row = conn.execute("SELECT * FROM collections WHERE contract_address=?", (contract_address,)).fetchone()
    return Collection(**row_to_dict(row)) if row else None

def list_collections(conn) -> List[Collection]:
    rows = conn.execute("SELECT * FROM collections ORDER BY contract_address").fetchall()
    return [Collection(**row_to_dict(r)) for r in rows]

# ----------------------- tokens -----------------------
def _token(conn, row) -> Token:
    d = row_to_dict(row)
    d.pop("owner_block", None)
    d["token_id"] = int(d["token_id"])
    d["attributes"] = get_attributes(conn, d["contract_address"], d["token_id"])
    return Token(**d)

def upsert_token(conn, t: Token):
    # owner_block is left alone on conflict: only transfers advance it
    conn.execute("""
        INSERT INTO tokens(contract_address, token_id, owner, token_uri, name, description, image)
        VALUES(?,?,?,?,?,?,?)
        ON CONFLICT(contract_address, token_id) DO UPDATE SET
          owner=excluded.owner, token_uri=excluded.token_uri, name=excluded.name,
          description=excluded.description, image=excluded.image
    """, (t.contract_address, str(t.token_id), t.owner, t.token_uri, t.name, t.description, t.image))

def update_token_owner(conn, contract_address: str, token_id: int, owner: str, block_number: int) -> bool:
    """
    Move ownership unless a transfer from a later block was already applied.
    Returns False when the token row does not exist.
    """
    exists = conn.execute(
        "SELECT 1 FROM tokens WHERE contract_address=? AND token_id=?",
        (contract_address, str(token_id)),
    ).fetchone()
    if not exists:
        return False
    conn.execute("""
        UPDATE tokens SET owner=?, owner_block=?
        WHERE contract_address=? AND token_id=? AND owner_block <= ?
    """, (owner, block_number, contract_address, str(token_id), block_number))
    return True

def get_token(conn, contract_address: str, token_id: int) -> Optional[Token]:
    row = conn.execute(
        "SELECT * FROM tokens WHERE contract_address=? AND token_id=?",
        (contract_address, str(token_id)),
    ).fetchone()
    return _token(conn, row) if row else None

def list_tokens(conn, contract_address: str) -> List[Token]:
    rows = conn.execute("""
        SELECT * FROM tokens WHERE contract_address=?
        ORDER BY length(token_id), token_id
    """, (contract_address,)).fetchall()
    return [_token(conn, r) for r in rows]

def replace_attributes(conn, contract_address: str, token_id: int, attributes: Iterable[Attribute]):
    with transaction(conn):
        conn.execute(
            "DELETE FROM token_attributes WHERE contract_address=? AND token_id=?",
            (contract_address, str(token_id)),
        )
        conn.executemany("""
            INSERT INTO token_attributes(contract_address, token_id, position, trait_type, value)
            VALUES (?,?,?,?,?)
        """, [(contract_address, str(token_id), i, a.trait_type, a.value) for i, a in enumerate(attributes)])

def get_attributes(conn, contract_address: str, token_id: int) -> List[Attribute]:
    rows = conn.execute("""
        SELECT trait_type, value FROM token_attributes
        WHERE contract_address=? AND token_id=? ORDER BY position
    """, (contract_address, str(token_id))).fetchall()
    return [Attribute(**row_to_dict(r)) for r in rows]

# ----------------------- orders -----------------------
def _order(row) -> Order:
    d = row_to_dict(row)
    d["token_id"] = int(d["token_id"])
    return Order(**d)

def insert_orders(conn, orders: Iterable[Order]):
    # an id that already exists keeps its row (and status)
    with transaction(conn):
        conn.executemany("""
            INSERT INTO orders(id, nft_contract_address, token_id, token_address, price, seller, status)
            VALUES (?,?,?,?,?,?,?)
            ON CONFLICT(id) DO NOTHING
        """, [(o.id, o.nft_contract_address, str(o.token_id), o.token_address, o.price, o.seller, int(o.status))
              for o in orders])

def update_order_status(conn, order_id: int, status: OrderStatus) -> int:
    cur = conn.execute("UPDATE orders SET status=? WHERE id=?", (int(status), order_id))
    return cur.rowcount

def get_order(conn, order_id: int) -> Optional[Order]:
    row = conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone()
    return _order(row) if row else None

def get_order_by_nft(conn, contract_address: str, token_id: int) -> Optional[Order]:
    # prefer the open listing, then the most recent one
    row = conn.execute("""
        SELECT * FROM orders WHERE nft_contract_address=? AND token_id=?
        ORDER BY status = 0 DESC, id DESC LIMIT 1
    """, (contract_address, str(token_id))).fetchone()
    return _order(row) if row else None

def list_orders(conn) -> List[Order]:
    return [_order(r) for r in conn.execute("SELECT * FROM orders ORDER BY id").fetchall()]

# ----------------------- transfer history -----------------------
def insert_transfer(conn, ev: TransferRecord) -> bool:
    cur = conn.execute("""
        INSERT OR IGNORE INTO transfer_events
        (contract_address, token_id, event_type, from_address, to_address, tx_hash, log_index, block_number, block_timestamp)
        VALUES (?,?,?,?,?,?,?,?,?)
    """, (ev.contract_address, str(ev.token_id), ev.event_type, ev.from_address, ev.to_address,
          ev.tx_hash, ev.log_index, ev.block_number, int(ev.block_timestamp)))
    return cur.rowcount > 0

def _transfer(row) -> TransferRecord:
    d = row_to_dict(row)
    d["token_id"] = int(d["token_id"])
    return TransferRecord(**d)

def get_transfers(conn, contract_address: str, token_id: int) -> List[TransferRecord]:
    rows = conn.execute("""
        SELECT * FROM transfer_events
        WHERE contract_address=? AND token_id=?
        ORDER BY block_number ASC, log_index ASC
    """, (contract_address, str(token_id))).fetchall()
    return [_transfer(r) for r in rows]

def get_latest_transfer(conn, contract_address: str, token_id: int) -> Optional[TransferRecord]:
    row = conn.execute("""
        SELECT * FROM transfer_events
        WHERE contract_address=? AND token_id=?
        ORDER BY block_number DESC, log_index DESC LIMIT 1
    """, (contract_address, str(token_id))).fetchone()
    return _transfer(row) if row else None
