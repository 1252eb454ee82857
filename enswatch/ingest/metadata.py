"""Token metadata lookups with provider fallback."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from enswatch.ingest import contract_address
from enswatch.ingest.models import TokenMetadata
from enswatch.utils.rate_limit import RateLimiter
from enswatch.utils.settings import Settings

logger = logging.getLogger(__name__)

OPENSEA_ENDPOINT = "https://api.opensea.io/api/v2/chain/ethereum/contract/{contract}/nfts/{token_id}"
ENS_METADATA_ENDPOINT = "https://metadata.ens.domains/mainnet/{contract}/{token_id}"
USER_AGENT = "enswatch/1.0"


class OpenSeaClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        session: httpx.AsyncClient | None = None,
        enabled: bool = True,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.api_key = api_key
        self.enabled = enabled
        self.session = session or httpx.AsyncClient(timeout=10.0)
        self._rate_limiter = rate_limiter or RateLimiter(rate=4.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch(self, contract: str, token_id: str) -> TokenMetadata | None:
        if not self.enabled:
            logger.debug("OpenSea disabled, skipping %s/%s", contract, token_id)
            return None
        if not self.api_key:
            logger.debug("OpenSea API key not configured, skipping %s/%s", contract, token_id)
            return None
        url = OPENSEA_ENDPOINT.format(contract=contract.lower(), token_id=token_id)
        await self._rate_limiter.acquire(url)
        data = await _get_json(
            self.session,
            url,
            headers={"accept": "application/json", "x-api-key": self.api_key, "User-Agent": USER_AGENT},
            provider="OpenSea",
        )
        nft = (data or {}).get("nft")
        if not isinstance(nft, dict):
            return None
        return TokenMetadata(
            name=nft.get("name"),
            image=nft.get("image_url") or nft.get("display_image_url"),
            description=nft.get("description"),
            collection=nft.get("collection"),
            source="opensea",
        )


class EnsMetadataClient:
    def __init__(self, *, session: httpx.AsyncClient | None = None, enabled: bool = True) -> None:
        self.enabled = enabled
        self.session = session or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch(self, contract: str, token_id: str) -> TokenMetadata | None:
        if not self.enabled:
            logger.debug("ENS metadata disabled, skipping %s/%s", contract, token_id)
            return None
        url = ENS_METADATA_ENDPOINT.format(contract=contract.lower(), token_id=token_id)
        data = await _get_json(
            self.session,
            url,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            provider="ENS metadata",
        )
        if not data:
            return None
        return TokenMetadata(
            name=data.get("name"),
            image=data.get("image") or data.get("image_url"),
            description=data.get("description"),
            collection="ENS",
            source="ens_metadata",
        )


async def _get_json(
    session: httpx.AsyncClient, url: str, *, headers: dict[str, str], provider: str
) -> dict[str, Any] | None:
    try:
        response = await session.get(url, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except httpx.TimeoutException:
        logger.warning("%s timeout for %s", provider, url)
        return None
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status == 404:
            logger.debug("%s has no token at %s", provider, url)
        elif status == 429:
            logger.warning("%s rate limit hit for %s", provider, url)
        else:
            logger.warning("%s error %s for %s", provider, status, url)
        return None
    except httpx.HTTPError as exc:
        logger.warning("%s request failed for %s: %s", provider, url, exc)
        return None
    except ValueError:
        logger.warning("%s returned invalid JSON for %s", provider, url)
        return None
    if not isinstance(payload, dict):
        logger.warning("%s returned a %s instead of an object for %s", provider, type(payload).__name__, url)
        return None
    return payload


class MetadataChain:
    """Try each provider in order and return the first result that has a name.

    Order: OpenSea on the unwrapped registrar contract, OpenSea on the name
    wrapper contract, then the ENS metadata service.
    """

    def __init__(
        self,
        opensea: OpenSeaClient,
        ens: EnsMetadataClient,
        *,
        unwrapped_contract: str | None = None,
        wrapped_contract: str | None = None,
    ) -> None:
        self.opensea = opensea
        self.ens = ens
        self.unwrapped_contract = unwrapped_contract or contract_address("registrar")
        self.wrapped_contract = wrapped_contract or contract_address("wrapper")

    @classmethod
    def from_settings(cls, settings: Settings, session: httpx.AsyncClient) -> MetadataChain:
        return cls(
            OpenSeaClient(settings.opensea_api_key, session=session, enabled=settings.toggles.opensea),
            EnsMetadataClient(session=session, enabled=settings.toggles.ens_metadata),
        )

    async def lookup(self, token_id: str, contract: str | None = None) -> TokenMetadata | None:
        steps = (
            ("OpenSea (unwrapped)", self.opensea, self.unwrapped_contract),
            ("OpenSea (wrapped)", self.opensea, self.wrapped_contract),
            ("ENS metadata", self.ens, (contract or self.unwrapped_contract)),
        )
        for label, provider, step_contract in steps:
            metadata = await provider.fetch(step_contract, token_id)
            if metadata and metadata.name:
                logger.info("Metadata for %s from %s: %s", token_id, label, metadata.name)
                return metadata
            logger.debug("No usable metadata for %s from %s", token_id, label)
        logger.warning("All metadata providers failed for token %s", token_id)
        return None
