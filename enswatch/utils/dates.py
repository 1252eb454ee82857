"""Datetime helpers."""

from __future__ import annotations

import pendulum

UTC = "UTC"


def now_ms() -> int:
    return int(pendulum.now(UTC).timestamp() * 1000)


def utc_now_iso() -> str:
    return pendulum.now(UTC).to_iso8601_string()


def iso_to_ms(value: str) -> int:
    return int(pendulum.parse(value).timestamp() * 1000)


def iso_to_unix(value: str) -> int:
    return pendulum.parse(value).int_timestamp


def ms_to_iso(value: int) -> str:
    return pendulum.from_timestamp(value / 1000, tz=UTC).to_iso8601_string()


def unix_to_iso(value: int) -> str:
    return pendulum.from_timestamp(value, tz=UTC).to_iso8601_string()
