import gzip
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from enswatch.api import main
from enswatch.ingest.models import TokenMetadata
from enswatch.ingest.webhooks import compute_signature
from enswatch.utils.settings import Settings
from payloads import REGISTRAR, StubChain

SECRET = "qn-secret"
ORDER = {
    "txHash": "0xa11ce",
    "logIndex": 1,
    "blockNumber": 19000000,
    "offerer": "0x1111111111111111111111111111111111111111",
    "recipient": "0x2222222222222222222222222222222222222222",
    "offer": [{"itemType": 2, "token": REGISTRAR, "identifier": "42", "amount": "1"}],
    "consideration": [
        {
            "itemType": 0,
            "token": "0x0000000000000000000000000000000000000000",
            "amount": "1500000000000000000",
            "recipient": "0x1111111111111111111111111111111111111111",
        }
    ],
}


@pytest.fixture()
def client(engine):
    main.app.dependency_overrides[main.get_settings] = lambda: Settings(quicknode_secret=SECRET)
    main.app.dependency_overrides[main.get_engine] = lambda: engine
    main.app.dependency_overrides[main.get_metadata_chain] = lambda: StubChain(TokenMetadata(name="answer.eth"))
    main.app.dependency_overrides[main.get_price_client] = lambda: None
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def signed(body: bytes, **extra: str) -> dict[str, str]:
    headers = {
        "x-qn-nonce": "n-1",
        "x-qn-timestamp": "1714564800",
        "x-qn-signature": compute_signature(SECRET, "n-1", "1714564800", body),
    }
    headers.update(extra)
    return headers


def test_signed_sales_webhook_is_stored_once(client, engine):
    body = json.dumps({"orderFulfilled": [ORDER]}).encode()
    first = client.post("/webhooks/quicknode/sales", content=body, headers=signed(body))
    replay = client.post("/webhooks/quicknode/sales", content=body, headers=signed(body))
    assert first.status_code == 200
    assert first.json()["stored"] == 1
    assert replay.json()["duplicates"] == 1
    with engine.connect() as conn:
        row = conn.execute(text("SELECT nft_name, price_amount FROM processed_sales")).one()
    assert tuple(row) == ("answer.eth", "1.5")


def test_gzip_body_is_accepted(client):
    body = gzip.compress(json.dumps([ORDER]).encode())
    response = client.post(
        "/webhooks/quicknode/sales", content=body, headers=signed(body, **{"content-encoding": "gzip"})
    )
    assert response.status_code == 200
    assert response.json()["processed"] == 1


def test_bad_signature_is_unauthorized(client):
    body = json.dumps({"orderFulfilled": [ORDER]}).encode()
    headers = signed(body)
    headers["x-qn-signature"] = "0" * 64
    response = client.post("/webhooks/quicknode/sales", content=body, headers=headers)
    assert response.status_code == 401


def test_invalid_json_is_a_bad_request(client):
    body = b"{broken"
    assert client.post("/webhooks/quicknode/sales", content=body, headers=signed(body)).status_code == 400


def test_payload_for_the_other_endpoint_is_rejected(client):
    body = json.dumps({"logs": [{"topics": ["0x1", "0x2", "0x3"], "data": "0x"}]}).encode()
    response = client.post("/webhooks/quicknode/sales", content=body, headers=signed(body))
    assert response.status_code == 400


def test_empty_registration_delivery_is_ok(client):
    body = b"[]"
    response = client.post("/webhooks/quicknode/registrations", content=body, headers=signed(body))
    assert response.status_code == 200
    assert response.json()["processed"] == 0
