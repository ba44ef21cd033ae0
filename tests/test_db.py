import pytest

from nft_indexer import db
from nft_indexer.models import Attribute, Collection, Order, OrderStatus, Token, TransferRecord

from tests.fakes import ALICE, BOB, NFT_A, PAY, SELLER, ZERO


def token(token_id=0, owner=ALICE):
    return Token(contract_address=NFT_A, token_id=token_id, owner=owner, token_uri="u", name="n")


def transfer(tx="0x01", index=0, block=1, to=ALICE):
    return TransferRecord(contract_address=NFT_A, token_id=0, event_type="mint", from_address=ZERO,
                          to_address=to, tx_hash=tx, log_index=index, block_number=block)


def order(order_id, token_id=0, status=OrderStatus.OPEN):
    return Order(id=order_id, nft_contract_address=NFT_A, token_id=token_id, token_address=PAY,
                 price="1", seller=SELLER, status=status)


def test_owner_update_requires_row(conn):
    assert db.update_token_owner(conn, NFT_A, 0, BOB, 5) is False


def test_owner_update_is_block_monotonic(conn):
    db.upsert_token(conn, token())
    assert db.update_token_owner(conn, NFT_A, 0, BOB, 10)
    assert db.update_token_owner(conn, NFT_A, 0, ALICE, 9)
    assert db.get_token(conn, NFT_A, 0).owner == BOB

    # a refresh from the chain does not reset the block watermark
    db.upsert_token(conn, token(owner=BOB))
    db.update_token_owner(conn, NFT_A, 0, ALICE, 9)
    assert db.get_token(conn, NFT_A, 0).owner == BOB


def test_large_token_ids_round_trip(conn):
    big = 2**256 - 1
    db.upsert_token(conn, token(token_id=big))
    db.upsert_token(conn, token(token_id=10))
    db.upsert_token(conn, token(token_id=9))
    assert [t.token_id for t in db.list_tokens(conn, NFT_A)] == [9, 10, big]


def test_replace_attributes_keeps_order(conn):
    db.upsert_token(conn, token())
    db.replace_attributes(conn, NFT_A, 0, [Attribute(trait_type="b", value="1"), Attribute(trait_type="a", value="2")])
    db.replace_attributes(conn, NFT_A, 0, [Attribute(trait_type="z", value="9")])
    assert db.get_attributes(conn, NFT_A, 0) == [Attribute(trait_type="z", value="9")]


def test_replace_attributes_rolls_back(conn):
    db.upsert_token(conn, token())
    db.replace_attributes(conn, NFT_A, 0, [Attribute(trait_type="keep", value="1")])
    with pytest.raises(AttributeError):
        db.replace_attributes(conn, NFT_A, 0, [Attribute(trait_type="x", value="1"), None])
    assert [a.trait_type for a in db.get_attributes(conn, NFT_A, 0)] == ["keep"]


def test_transfer_dedup_by_tx_and_log_index(conn):
    assert db.insert_transfer(conn, transfer())
    assert not db.insert_transfer(conn, transfer())
    assert db.insert_transfer(conn, transfer(index=1, block=1, to=BOB))
    assert len(db.get_transfers(conn, NFT_A, 0)) == 2
    assert db.get_latest_transfer(conn, NFT_A, 0).to_address == BOB


def test_insert_orders_keeps_existing_status(conn):
    db.insert_orders(conn, [order(1)])
    db.update_order_status(conn, 1, OrderStatus.CANCELLED)
    db.insert_orders(conn, [order(1), order(2)])
    assert [o.status for o in db.list_orders(conn)] == [OrderStatus.CANCELLED, OrderStatus.OPEN]


def test_order_by_nft(conn):
    db.insert_orders(conn, [order(1, status=OrderStatus.FULFILLED), order(2, status=OrderStatus.CANCELLED)])
    assert db.get_order_by_nft(conn, NFT_A, 0).id == 2
    db.insert_orders(conn, [order(3)])
    assert db.get_order_by_nft(conn, NFT_A, 0).id == 3
    assert db.get_order_by_nft(conn, NFT_A, 1) is None


def test_clear_derived_keeps_collections(conn):
    db.upsert_collection(conn, Collection(contract_address=NFT_A, name="A", symbol="A"))
    db.upsert_token(conn, token())
    db.insert_orders(conn, [order(1)])
    db.insert_transfer(conn, transfer())

    db.clear_derived(conn)
    assert db.list_collections(conn) == [Collection(contract_address=NFT_A, name="A", symbol="A")]
    assert db.list_tokens(conn, NFT_A) == []
    assert db.list_orders(conn) == []
    assert db.get_transfers(conn, NFT_A, 0) == []
