# =============================================
# File: tests/test_interaction_endpoint.py
# Purpose: Validation boundary, auth and storage-failure behaviour of POST /interaction
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, select

from conftest import auth_headers
from storefront.db.models import InteractionEvent, as_utc, utcnow
from storefront.main import app

client = TestClient(app)


def _rows(engine):
    with Session(engine) as s:
        return s.exec(select(InteractionEvent)).all()


def _payload(**overrides):
    body = {"user_id": "u1", "event_type": "view", "item_id": "p1", "item_type": "product", "tags": ["vitamins"]}
    body.update(overrides)
    return body


def test_invalid_event_type_is_rejected(db_engine):
    r = client.post("/interaction", json=_payload(event_type="invalid_type"), headers=auth_headers("u1"))
    assert r.status_code == 400
    assert "event_type" in r.json()["error"]
    assert r.json()["kind"] == "validation"
    assert _rows(db_engine) == []


def test_enum_values_are_not_coerced(db_engine):
    r = client.post("/interaction", json=_payload(event_type="VIEW"), headers=auth_headers("u1"))
    assert r.status_code == 400
    r = client.post("/interaction", json=_payload(item_type="article"), headers=auth_headers("u1"))
    assert r.status_code == 400
    assert "item_type" in r.json()["error"]
    assert _rows(db_engine) == []


def test_missing_required_fields(db_engine):
    body = _payload()
    del body["item_id"]
    r = client.post("/interaction", json=body, headers=auth_headers("u1"))
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields: item_id"


def test_valid_event_creates_exactly_one_row(db_engine):
    r = client.post(
        "/interaction",
        json=_payload(tags=[" vitamins ", "vitamins", "", "immunity"]),
        headers=auth_headers("u1"),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["data"]["user_id"] == "u1"
    assert body["data"]["event_type"] == "view"
    assert body["data"]["tags"] == ["vitamins", "immunity"]
    assert body["data"]["id"] and body["data"]["created_at"]

    rows = _rows(db_engine)
    assert len(rows) == 1
    assert rows[0].item_id == "p1"


def test_stored_timestamp_is_current_utc(db_engine):
    before = utcnow()
    assert before.tzinfo is not None
    r = client.post("/interaction", json=_payload(), headers=auth_headers("u1"))
    assert r.status_code == 201

    stored = as_utc(_rows(db_engine)[0].created_at)
    assert abs((stored - before).total_seconds()) < 60


def test_tags_are_optional(db_engine):
    body = _payload()
    del body["tags"]
    r = client.post("/interaction", json=body, headers=auth_headers("u1"))
    assert r.status_code == 201
    assert r.json()["data"]["tags"] == []


def test_no_deduplication_at_the_store(db_engine):
    for _ in range(2):
        r = client.post("/interaction", json=_payload(), headers=auth_headers("u1"))
        assert r.status_code == 201
    assert len(_rows(db_engine)) == 2


def test_requires_authentication(db_engine):
    r = client.post("/interaction", json=_payload())
    assert r.status_code == 401
    assert r.json()["kind"] == "authentication"

    r = client.post("/interaction", json=_payload(), headers=auth_headers("u1", expires_in=-10))
    assert r.status_code == 401
    assert "expired" in r.json()["error"].lower()

    r = client.post("/interaction", json=_payload(), headers=auth_headers("u1", secret="some-other-secret-0123456789abcdef"))
    assert r.status_code == 401
    assert _rows(db_engine) == []


def test_cannot_write_another_users_history(db_engine):
    r = client.post("/interaction", json=_payload(user_id="someone-else"), headers=auth_headers("u1"))
    assert r.status_code == 401
    assert _rows(db_engine) == []


def test_wrong_method_is_405():
    r = client.get("/interaction", headers=auth_headers("u1"))
    assert r.status_code == 405
    assert r.json()["error"] == "Method not allowed"


def test_storage_failure_is_500_with_details(db_engine):
    SQLModel.metadata.drop_all(db_engine, tables=[InteractionEvent.__table__])
    r = client.post("/interaction", json=_payload(), headers=auth_headers("u1"))
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Failed to record interaction"
    assert body["details"]
