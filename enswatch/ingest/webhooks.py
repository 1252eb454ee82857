"""Webhook body verification and decoding.

Deliveries are at-least-once: the same body may arrive several times, so
nothing here deduplicates. That is left to the record store.
"""

from __future__ import annotations

import gzip
import hashlib
import hmac
import json
import logging
import zlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-qn-signature"
NONCE_HEADER = "x-qn-nonce"
TIMESTAMP_HEADER = "x-qn-timestamp"
GZIP_MAGIC = b"\x1f\x8b"


class WebhookError(ValueError):
    status_code = 400


class SignatureError(WebhookError):
    status_code = 401


class PayloadError(WebhookError):
    status_code = 400


@dataclass(slots=True)
class SettlementBatch:
    """Seaport ``OrderFulfilled`` records."""

    records: list[dict[str, Any]]


@dataclass(slots=True)
class RawLogBatch:
    """Raw ``NameRegistered`` logs, plus the enclosing block when the source sends one."""

    records: list[dict[str, Any]]
    block: dict[str, Any] = field(default_factory=dict)


WebhookBatch = SettlementBatch | RawLogBatch


def compute_signature(secret: str, nonce: str, timestamp: str, body: bytes) -> str:
    message = nonce.encode() + timestamp.encode() + body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, headers: Mapping[str, str], secret: str | None) -> bool:
    """Check the HMAC over (nonce, timestamp, raw body).

    Returns False when no secret is configured and the body is accepted
    unauthenticated; raises SignatureError on a missing or wrong signature.
    """
    if not secret:
        logger.warning("No webhook secret configured, accepting unauthenticated delivery")
        return False
    signature = headers.get(SIGNATURE_HEADER)
    nonce = headers.get(NONCE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    if not signature or nonce is None or timestamp is None:
        raise SignatureError("Missing signature headers")
    expected = compute_signature(secret, nonce, timestamp, body)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise SignatureError("Invalid signature")
    return True


def decompress(body: bytes, headers: Mapping[str, str]) -> bytes:
    encoding = (headers.get("content-encoding") or "").lower()
    if "gzip" not in encoding and not body.startswith(GZIP_MAGIC):
        return body
    try:
        return gzip.decompress(body)
    except (OSError, EOFError, zlib.error) as exc:
        raise PayloadError(f"Invalid gzip body: {exc}") from exc


def parse_json(body: bytes) -> Any:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Invalid JSON body: {exc}") from exc
    # some senders wrap the payload as a one-element list holding a JSON string
    if isinstance(payload, list) and payload and isinstance(payload[0], str):
        try:
            payload = json.loads(payload[0])
        except json.JSONDecodeError as exc:
            raise PayloadError(f"Invalid wrapped JSON body: {exc}") from exc
    return payload


def classify(payload: Any, default: type[WebhookBatch] | None = None) -> WebhookBatch:
    """Decide once whether a payload holds settlements or raw logs."""
    block: dict[str, Any] = {}
    records: Any = payload
    if isinstance(payload, dict):
        if "orderFulfilled" in payload:
            return SettlementBatch(records=_record_list(payload["orderFulfilled"]))
        if "logs" in payload:
            block = payload.get("block") or {}
            return RawLogBatch(records=_record_list(payload["logs"]), block=block)
        records = payload.get("data", payload.get("result"))
    if not isinstance(records, list):
        raise PayloadError("Unrecognised webhook payload")
    if not records:
        if default is None:
            raise PayloadError("Empty webhook payload of unknown kind")
        return default(records=[])
    first = records[0]
    if isinstance(first, dict) and ("offer" in first or "consideration" in first):
        return SettlementBatch(records=_record_list(records))
    if isinstance(first, dict) and "topics" in first:
        return RawLogBatch(records=_record_list(records), block=block)
    raise PayloadError("Unrecognised webhook records")


def _record_list(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise PayloadError("Webhook records must be a list of objects")
    return value


def decode_webhook(
    body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
    *,
    default: type[WebhookBatch] | None = None,
) -> WebhookBatch:
    normalized = {key.lower(): value for key, value in headers.items()}
    verify_signature(body, normalized, secret)
    payload = parse_json(decompress(body, normalized))
    return classify(payload, default)
