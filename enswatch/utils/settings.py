"""Environment-driven configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/enswatch"
DEFAULT_MAGIC_EDEN_URL = "https://api-mainnet.magiceden.dev/v4"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool = True) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True, slots=True)
class ApiToggles:
    """Which external providers may be called at all."""

    magic_eden: bool = True
    opensea: bool = True
    ens_metadata: bool = True
    alchemy: bool = True

    @classmethod
    def from_env(cls) -> ApiToggles:
        return cls(
            magic_eden=_flag("API_TOGGLE_MAGIC_EDEN"),
            opensea=_flag("API_TOGGLE_OPENSEA"),
            ens_metadata=_flag("API_TOGGLE_ENS_METADATA"),
            alchemy=_flag("API_TOGGLE_ALCHEMY"),
        )


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    magic_eden_base_url: str = DEFAULT_MAGIC_EDEN_URL
    magic_eden_api_key: str | None = None
    opensea_api_key: str | None = None
    alchemy_api_key: str | None = None
    quicknode_secret: str | None = None
    bids_min_eth: float = 0.4
    log_level: str = "INFO"
    toggles: ApiToggles = field(default_factory=ApiToggles)

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            magic_eden_base_url=os.environ.get("MAGIC_EDEN_BASE_URL", DEFAULT_MAGIC_EDEN_URL),
            magic_eden_api_key=os.environ.get("MAGIC_EDEN_API_KEY") or None,
            opensea_api_key=os.environ.get("OPENSEA_API_KEY") or None,
            alchemy_api_key=os.environ.get("ALCHEMY_API_KEY") or None,
            quicknode_secret=os.environ.get("QUICKNODE_SECRET") or None,
            bids_min_eth=float(os.environ.get("BIDS_MIN_ETH", 0.4)),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            toggles=ApiToggles.from_env(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
