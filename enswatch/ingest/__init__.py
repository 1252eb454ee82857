"""Ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from enswatch.ingest.models import Contract

CONTRACTS_PATH = pathlib.Path(__file__).with_name("contracts.yml")


def load_contracts(role: str | None = None) -> list[Contract]:
    data = yaml.safe_load(CONTRACTS_PATH.read_text())
    contracts = [Contract(**item) for item in data]
    if role:
        return [c for c in contracts if c.role == role]
    return contracts


def contract_address(role: str) -> str:
    matches = load_contracts(role)
    if not matches:
        raise KeyError(f"No contract configured for role {role!r}")
    return matches[0].address.lower()
