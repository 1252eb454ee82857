"""FastAPI application receiving marketplace webhooks."""

from __future__ import annotations

import contextlib
import functools
import logging
from collections.abc import AsyncIterator

import httpx
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from enswatch.db.session import create_engine_from_env
from enswatch.ingest.metadata import MetadataChain
from enswatch.ingest.prices import EthPriceClient
from enswatch.ingest.registrations import RegistrationIngestor
from enswatch.ingest.sales import SalesIngestor
from enswatch.ingest.webhooks import (
    NONCE_HEADER,
    TIMESTAMP_HEADER,
    RawLogBatch,
    SettlementBatch,
    WebhookBatch,
    WebhookError,
    decode_webhook,
)
from enswatch.utils.settings import Settings, configure_logging

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    load_dotenv()
    configure_logging(get_settings().log_level)
    yield


app = FastAPI(title="enswatch ingestion API", lifespan=lifespan)


class IngestResponse(BaseModel):
    status: str = "ok"
    processed: int
    stored: int
    duplicates: int
    skipped: int
    dropped: int
    errors: int


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@functools.lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_engine_from_env()


async def get_http_session() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=10.0) as session:
        yield session


def get_metadata_chain(
    settings: Settings = Depends(get_settings),
    session: httpx.AsyncClient = Depends(get_http_session),
) -> MetadataChain:
    return MetadataChain.from_settings(settings, session)


def get_price_client(
    settings: Settings = Depends(get_settings),
    session: httpx.AsyncClient = Depends(get_http_session),
) -> EthPriceClient | None:
    if not settings.alchemy_api_key:
        return None
    return EthPriceClient(settings.alchemy_api_key, session=session, enabled=settings.toggles.alchemy)


async def _decode(request: Request, settings: Settings, expected: type[WebhookBatch]) -> WebhookBatch:
    body = await request.body()
    try:
        batch = decode_webhook(body, request.headers, settings.quicknode_secret, default=expected)
    except WebhookError as exc:
        logger.warning(
            "Rejected webhook %s (nonce=%s, timestamp=%s, %s bytes): %s",
            request.url.path,
            request.headers.get(NONCE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
            len(body),
            exc,
        )
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    if not isinstance(batch, expected):
        raise HTTPException(status_code=400, detail=f"Expected {expected.__name__} payload")
    return batch


@app.post("/webhooks/quicknode/sales", response_model=IngestResponse)
async def sales_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
    chain: MetadataChain = Depends(get_metadata_chain),
    prices: EthPriceClient | None = Depends(get_price_client),
) -> IngestResponse:
    batch = await _decode(request, settings, SettlementBatch)
    stats = await SalesIngestor(engine, chain, prices=prices).ingest(batch)
    return IngestResponse(**stats.as_dict())


@app.post("/webhooks/quicknode/registrations", response_model=IngestResponse)
async def registrations_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
    chain: MetadataChain = Depends(get_metadata_chain),
    prices: EthPriceClient | None = Depends(get_price_client),
) -> IngestResponse:
    batch = await _decode(request, settings, RawLogBatch)
    stats = await RegistrationIngestor(engine, chain, prices=prices).ingest(batch)
    return IngestResponse(**stats.as_dict())
