"""Idempotent persistence for ingested bids, sales and registrations.

Every insert is a single ``INSERT ... ON CONFLICT DO NOTHING RETURNING id``
against the entity's natural key, so a replayed webhook or an overlapping
poll window can never produce a second row, even when two deliveries race.
The ``*_exists`` lookups are only an optimisation that lets producers skip
enrichment calls for items that are already stored.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from enswatch.ingest.models import Bid, PersistOutcome, Registration, Sale

logger = logging.getLogger(__name__)

BID_WATERMARK_KEY = "last_processed_bid_timestamp"


class RecordStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def bid_exists(self, bid_id: str) -> bool:
        return self._exists("SELECT 1 FROM ens_bids WHERE bid_id = :bid_id", {"bid_id": bid_id})

    def sale_exists(self, transaction_hash: str, log_index: int) -> bool:
        return self._exists(
            "SELECT 1 FROM processed_sales WHERE transaction_hash = :tx AND log_index = :log_index",
            {"tx": transaction_hash, "log_index": log_index},
        )

    def registration_exists(self, token_id: str) -> bool:
        return self._exists(
            "SELECT 1 FROM ens_registrations WHERE token_id = :token_id", {"token_id": token_id}
        )

    def insert_bid(self, bid: Bid) -> PersistOutcome:
        return self._insert(
            """
            INSERT INTO ens_bids (
              bid_id, contract_address, token_id, maker_address, taker_address, status,
              price_raw, price_decimal, price_usd, currency_contract, currency_symbol,
              source_domain, source_name, marketplace_fee, created_at_api, updated_at_api,
              valid_from, valid_until, processed_at, ens_name, nft_image, nft_description, posted
            )
            VALUES (
              :bid_id, :contract_address, :token_id, :maker_address, :taker_address, :status,
              :price_raw, :price_decimal, :price_usd, :currency_contract, :currency_symbol,
              :source_domain, :source_name, :marketplace_fee, :created_at_api, :updated_at_api,
              :valid_from, :valid_until, :processed_at, :ens_name, :nft_image, :nft_description, :posted
            )
            ON CONFLICT (bid_id) DO NOTHING
            RETURNING id
            """,
            {
                "bid_id": bid.bid_id,
                "contract_address": bid.contract_address,
                "token_id": bid.token_id,
                "maker_address": bid.maker_address,
                "taker_address": bid.taker_address,
                "status": bid.status,
                "price_raw": bid.price_raw,
                "price_decimal": bid.price_decimal,
                "price_usd": bid.price_usd,
                "currency_contract": bid.currency_contract,
                "currency_symbol": bid.currency_symbol,
                "source_domain": bid.source_domain,
                "source_name": bid.source_name,
                "marketplace_fee": bid.marketplace_fee,
                "created_at_api": bid.created_at_api,
                "updated_at_api": bid.updated_at_api,
                "valid_from": bid.valid_from,
                "valid_until": bid.valid_until,
                "processed_at": bid.processed_at,
                "ens_name": bid.ens_name,
                "nft_image": bid.nft_image,
                "nft_description": bid.nft_description,
                "posted": bid.posted,
            },
            key=f"bid {bid.bid_id}",
        )

    def insert_sale(self, sale: Sale) -> PersistOutcome:
        return self._insert(
            """
            INSERT INTO processed_sales (
              transaction_hash, log_index, contract_address, token_id, marketplace,
              buyer_address, seller_address, price_amount, price_usd, block_number,
              block_timestamp, processed_at, collection_name, nft_name, nft_image, posted
            )
            VALUES (
              :transaction_hash, :log_index, :contract_address, :token_id, :marketplace,
              :buyer_address, :seller_address, :price_amount, :price_usd, :block_number,
              :block_timestamp, :processed_at, :collection_name, :nft_name, :nft_image, :posted
            )
            ON CONFLICT (transaction_hash, log_index) DO NOTHING
            RETURNING id
            """,
            {
                "transaction_hash": sale.transaction_hash,
                "log_index": sale.log_index,
                "contract_address": sale.contract_address,
                "token_id": sale.token_id,
                "marketplace": sale.marketplace,
                "buyer_address": sale.buyer_address,
                "seller_address": sale.seller_address,
                "price_amount": sale.price_eth,
                "price_usd": sale.price_usd,
                "block_number": sale.block_number,
                "block_timestamp": sale.block_timestamp,
                "processed_at": sale.processed_at,
                "collection_name": sale.collection_name,
                "nft_name": sale.nft_name,
                "nft_image": sale.nft_image,
                "posted": sale.posted,
            },
            key=f"sale {sale.transaction_hash}:{sale.log_index}",
        )

    def insert_registration(self, registration: Registration) -> PersistOutcome:
        return self._insert(
            """
            INSERT INTO ens_registrations (
              transaction_hash, contract_address, token_id, ens_name, full_name, owner_address,
              cost_wei, cost_eth, cost_usd, block_number, block_timestamp, processed_at,
              expires_at, image, description, posted
            )
            VALUES (
              :transaction_hash, :contract_address, :token_id, :ens_name, :full_name, :owner_address,
              :cost_wei, :cost_eth, :cost_usd, :block_number, :block_timestamp, :processed_at,
              :expires_at, :image, :description, :posted
            )
            ON CONFLICT (token_id) DO NOTHING
            RETURNING id
            """,
            {
                "transaction_hash": registration.transaction_hash,
                "contract_address": registration.contract_address,
                "token_id": registration.token_id,
                "ens_name": registration.ens_name,
                "full_name": registration.full_name,
                "owner_address": registration.owner_address,
                "cost_wei": registration.cost_wei,
                "cost_eth": registration.cost_eth,
                "cost_usd": registration.cost_usd,
                "block_number": registration.block_number,
                "block_timestamp": registration.block_timestamp,
                "processed_at": registration.processed_at,
                "expires_at": registration.expires_at,
                "image": registration.image,
                "description": registration.description,
                "posted": registration.posted,
            },
            key=f"registration {registration.token_id}",
        )

    def get_watermark(self, key: str = BID_WATERMARK_KEY) -> int | None:
        with self.engine.connect() as conn:
            value = conn.execute(
                text("SELECT value FROM system_state WHERE key = :key"), {"key": key}
            ).scalar_one_or_none()
        if value is None:
            return None
        return int(value)

    def set_watermark(self, value: int, key: str = BID_WATERMARK_KEY) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO system_state (key, value, updated_at)
                    VALUES (:key, :value, CURRENT_TIMESTAMP)
                    ON CONFLICT (key) DO UPDATE SET
                      value = EXCLUDED.value,
                      updated_at = EXCLUDED.updated_at
                    """
                ),
                {"key": key, "value": str(value)},
            )

    def _exists(self, query: str, params: dict[str, object]) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text(query), params).first() is not None

    def _insert(self, query: str, params: dict[str, object], *, key: str) -> PersistOutcome:
        with self.engine.begin() as conn:
            inserted = conn.execute(text(query), params).scalar_one_or_none()
        if inserted is None:
            logger.info("Already processed %s, skipping", key)
            return PersistOutcome.DUPLICATE
        logger.debug("Stored %s as row %s", key, inserted)
        return PersistOutcome.STORED
