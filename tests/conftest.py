import pytest
from sqlalchemy import BigInteger, Boolean, Column, Integer, MetaData, Table, Text, UniqueConstraint, create_engine
from sqlalchemy.pool import StaticPool

from payloads import NOW_MS

metadata = MetaData()

ens_bids = Table(
    "ens_bids",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bid_id", Text, nullable=False, unique=True),
    Column("contract_address", Text, nullable=False),
    Column("token_id", Text),
    Column("maker_address", Text, nullable=False),
    Column("taker_address", Text),
    Column("status", Text, nullable=False),
    Column("price_raw", Text, nullable=False),
    Column("price_decimal", Text, nullable=False),
    Column("price_usd", Text),
    Column("currency_contract", Text),
    Column("currency_symbol", Text),
    Column("source_domain", Text),
    Column("source_name", Text),
    Column("marketplace_fee", Integer),
    Column("created_at_api", Text, nullable=False),
    Column("updated_at_api", Text),
    Column("valid_from", BigInteger),
    Column("valid_until", BigInteger),
    Column("processed_at", Text),
    Column("ens_name", Text),
    Column("nft_image", Text),
    Column("nft_description", Text),
    Column("posted", Boolean, default=False),
)

processed_sales = Table(
    "processed_sales",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transaction_hash", Text, nullable=False),
    Column("log_index", Integer, nullable=False, default=0),
    Column("contract_address", Text, nullable=False),
    Column("token_id", Text, nullable=False),
    Column("marketplace", Text),
    Column("buyer_address", Text),
    Column("seller_address", Text),
    Column("price_amount", Text, nullable=False),
    Column("price_usd", Text),
    Column("block_number", BigInteger),
    Column("block_timestamp", Text),
    Column("processed_at", Text),
    Column("collection_name", Text),
    Column("nft_name", Text),
    Column("nft_image", Text),
    Column("posted", Boolean, default=False),
    UniqueConstraint("transaction_hash", "log_index"),
)

ens_registrations = Table(
    "ens_registrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("transaction_hash", Text, nullable=False),
    Column("contract_address", Text, nullable=False),
    Column("token_id", Text, nullable=False, unique=True),
    Column("ens_name", Text, nullable=False),
    Column("full_name", Text, nullable=False),
    Column("owner_address", Text, nullable=False),
    Column("cost_wei", Text),
    Column("cost_eth", Text),
    Column("cost_usd", Text),
    Column("block_number", BigInteger),
    Column("block_timestamp", Text),
    Column("processed_at", Text),
    Column("expires_at", Text),
    Column("image", Text),
    Column("description", Text),
    Column("posted", Boolean, default=False),
)

system_state = Table(
    "system_state",
    metadata,
    Column("key", Text, primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", Text),
)


@pytest.fixture()
def engine():
    # persistence runs in executor threads, so every thread must share the one in-memory database
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    return lambda: NOW_MS
