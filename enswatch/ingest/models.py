"""Ingestion data models."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass

from enswatch.utils.dates import iso_to_ms

GRACE_PERIOD_MS = 15 * 60 * 1000


@dataclass(slots=True)
class Contract:
    name: str
    address: str
    role: str
    layout: str | None = None


@dataclass(slots=True)
class TokenMetadata:
    name: str | None
    image: str | None = None
    description: str | None = None
    collection: str | None = None
    source: str | None = None


@dataclass(slots=True)
class Bid:
    bid_id: str
    contract_address: str
    token_id: str | None
    maker_address: str
    taker_address: str | None
    status: str
    price_raw: str
    price_decimal: str
    price_usd: str | None
    currency_contract: str
    currency_symbol: str
    source_domain: str | None
    source_name: str | None
    marketplace_fee: int
    created_at_api: str
    updated_at_api: str
    valid_from: int
    valid_until: int
    processed_at: str
    ens_name: str | None = None
    nft_image: str | None = None
    nft_description: str | None = None
    posted: bool = False

    def created_at_ms(self) -> int:
        return iso_to_ms(self.created_at_api)

    def is_postable(self, now_ms: int) -> bool:
        """True while more than the grace period of validity remains."""
        return self.valid_until * 1000 > now_ms + GRACE_PERIOD_MS


@dataclass(slots=True)
class Sale:
    transaction_hash: str
    log_index: int
    contract_address: str
    token_id: str
    buyer_address: str
    seller_address: str
    price_eth: str
    block_number: int
    block_timestamp: str
    processed_at: str
    marketplace: str = "seaport"
    price_usd: str | None = None
    collection_name: str | None = None
    nft_name: str | None = None
    nft_image: str | None = None
    posted: bool = False


@dataclass(slots=True)
class Registration:
    transaction_hash: str
    contract_address: str
    token_id: str
    ens_name: str
    full_name: str
    owner_address: str
    cost_wei: str
    cost_eth: str
    block_number: int
    block_timestamp: str
    processed_at: str
    cost_usd: str | None = None
    expires_at: str | None = None
    image: str | None = None
    description: str | None = None
    posted: bool = False


@dataclass(slots=True)
class BidPage:
    bids: list[Bid]
    next_offset: int | None
    limit: int
    failed: bool = False

    @classmethod
    def empty(cls, limit: int) -> BidPage:
        return cls(bids=[], next_offset=None, limit=limit)

    @classmethod
    def failure(cls, limit: int) -> BidPage:
        """Empty page standing in for a request that could not be completed."""
        return cls(bids=[], next_offset=None, limit=limit, failed=True)


class StopReason(str, enum.Enum):
    EMPTY_PAGE = "empty_page"
    BOUNDARY = "boundary"
    STALE_PAGES = "stale_pages"
    END_OF_DATA = "end_of_data"
    PAGE_CEILING = "page_ceiling"
    FETCH_FAILED = "fetch_failed"


@dataclass(slots=True)
class SyncResult:
    bids: list[Bid]
    newest_seen_ms: int | None
    pages: int
    observed: int
    stop_reason: StopReason


class PersistOutcome(str, enum.Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class IngestStats:
    processed: int = 0
    stored: int = 0
    duplicates: int = 0
    skipped: int = 0
    dropped: int = 0
    errors: int = 0

    def record(self, outcome: PersistOutcome) -> None:
        if outcome is PersistOutcome.STORED:
            self.stored += 1
        else:
            self.duplicates += 1

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
