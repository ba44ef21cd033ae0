import pytest

from nft_indexer.errors import AbiMismatchError
from nft_indexer.events import (
    MetadataUpdate, NFTContractDeployed, OrderCancelled, OrderCreated, OrderFulfilled,
    Transfer, TRANSFER_TOPIC, UnknownEvent, decode, is_mint,
)

from tests.fakes import (
    ALICE, BOB, MARKET, NFT_A, PAY, SELLER, ZERO,
    contract_deployed_log, make_log, metadata_update_log, order_cancelled_log,
    order_created_log, order_fulfilled_log, transfer_log, u256_topic,
)


def test_transfer_topic_is_erc721_signature():
    assert TRANSFER_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_decode_transfer():
    ev = decode(transfer_log(NFT_A, ALICE, BOB, 7, block=12, index=3))
    assert isinstance(ev, Transfer)
    assert (ev.from_address, ev.to_address, ev.token_id) == (ALICE, BOB, 7)
    assert ev.address == NFT_A
    assert (ev.block_number, ev.log_index) == (12, 3)
    assert not is_mint(ev)


def test_mint_is_transfer_from_zero():
    ev = decode(transfer_log(NFT_A, ZERO, ALICE, 0, block=1))
    assert is_mint(ev)


def test_decode_metadata_update_reads_token_from_data():
    ev = decode(metadata_update_log(NFT_A, 42, block=5))
    assert isinstance(ev, MetadataUpdate)
    assert ev.token_id == 42


def test_decode_order_created():
    ev = decode(order_created_log(3, NFT_A, 9, price=10**21))
    assert isinstance(ev, OrderCreated)
    assert ev.order_id == 3
    assert ev.nft == NFT_A
    assert ev.token_id == 9
    assert ev.token == PAY
    assert ev.price == 10**21
    assert ev.seller == SELLER


def test_decode_order_cancelled_and_fulfilled():
    cancelled = decode(order_cancelled_log(4))
    assert isinstance(cancelled, OrderCancelled) and cancelled.order_id == 4

    fulfilled = decode(order_fulfilled_log(5, buyer=BOB))
    assert isinstance(fulfilled, OrderFulfilled)
    assert fulfilled.order_id == 5
    assert fulfilled.buyer == BOB


def test_decode_contract_deployed_strings():
    ev = decode(contract_deployed_log(NFT_A, "Test Apes", "TAPE"))
    assert isinstance(ev, NFTContractDeployed)
    assert (ev.nft, ev.name, ev.symbol) == (NFT_A, "Test Apes", "TAPE")


def test_unknown_topic_is_not_an_error():
    ev = decode(make_log(MARKET, ["0x" + "ab" * 32]))
    assert isinstance(ev, UnknownEvent)
    assert ev.topic0 == "0x" + "ab" * 32


def test_anonymous_log_is_unknown():
    assert isinstance(decode(make_log(MARKET, [])), UnknownEvent)


def test_missing_indexed_topics():
    lg = transfer_log(NFT_A, ALICE, BOB, 1, block=1)
    lg["topics"] = lg["topics"][:3]
    with pytest.raises(AbiMismatchError):
        decode(lg)


def test_short_data_payload():
    lg = order_created_log(1, NFT_A, 1, price=5)
    lg["data"] = "0x" + lg["data"][2:2 + 64]
    with pytest.raises(AbiMismatchError):
        decode(lg)


def test_bad_string_payload():
    lg = contract_deployed_log(NFT_A, "n", "s")
    lg["data"] = u256_topic(1)
    with pytest.raises(AbiMismatchError):
        decode(lg)
