import pytest

from nft_indexer.db import db, ensure_schema
from nft_indexer.indexer import Indexer
from nft_indexer.registry import ContractRegistry

from tests.fakes import FakeChain, FakeMarket, FakeMetadata


@pytest.fixture
def conn():
    c = db(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def metadata():
    return FakeMetadata()


@pytest.fixture
def indexer(conn, chain, market, metadata):
    return Indexer(conn, ContractRegistry(chain.connect), market, metadata)
