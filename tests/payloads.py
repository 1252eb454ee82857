"""Builders for source payloads used across the test suite."""

from decimal import Decimal

import pendulum

from enswatch.utils.dates import ms_to_iso

NOW = pendulum.datetime(2024, 5, 1, 12, 0, 0, tz="UTC")
NOW_MS = int(NOW.timestamp() * 1000)
MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * MINUTE_MS

REGISTRAR = "0x57f1887a8bf19b14fc0df6fd9b2acc9af147ea85"
WRAPPER = "0xd4416b13d2b3a9abae7acd5d6c2bbdbe25686401"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
BIDS_URL = "https://api-mainnet.magiceden.dev/v4/bids"


def bid_record(
    index: int,
    created_ms: int,
    *,
    valid_until_ms: int | None = None,
    status: str = "active",
    price: str = "0.5",
    symbol: str = "WETH",
    token_id: str | None = None,
) -> dict:
    created = ms_to_iso(created_ms)
    token_id = token_id or str(1000 + index)
    return {
        "bid": {
            "id": f"bid-{index}",
            "contract": REGISTRAR,
            "maker": "0x00000000000000000000000000000000000000AA",
            "status": status,
            "priceV2": {
                "amount": {
                    "raw": str(int(Decimal(price) * 10**18)),
                    "native": price,
                    "fiat": {"usd": None},
                },
                "currency": {"contract": WETH, "symbol": symbol},
            },
            "maxFees": {"royaltyBp": 0, "makerMarketplaceBp": 50, "takerMarketplaceBp": 0},
            "criteria": {"type": "ASSET", "assetId": f"{REGISTRAR}:{token_id}"},
            "expiry": {
                "validFrom": created,
                "validUntil": ms_to_iso(valid_until_ms or NOW_MS + DAY_MS),
            },
            "source": "OpenSea",
            "createdAt": created,
            "updatedAt": created,
        }
    }


def page_response(records: list[dict]) -> dict:
    return {"data": records, "pagination": {"hasMore": bool(records)}}


class StubChain:
    """Metadata chain double recording every lookup."""

    def __init__(self, metadata=None, error: Exception | None = None):
        self.metadata = metadata
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def lookup(self, token_id, contract=None):
        self.calls.append((token_id, contract))
        if self.error:
            raise self.error
        return self.metadata
