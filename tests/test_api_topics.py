# tests/test_api_topics.py

from __future__ import annotations

import base64
import io
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi import HTTPException

from main import _read_upload

PDF = b"%PDF-1.4\n%%EOF\n"


def _create(client, user, title="Linear algebra", subtopics=(), **fields):
    body = {"title": title, "subtopics": [{"title": s} for s in subtopics], **fields}
    resp = client.post("/topics", json=body, headers=user.headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_topic_with_subtopics(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["Vectors", "Matrices"], description="MIT 18.06")

    assert topic["owner"] == user.id
    assert topic["progress"] == 0
    assert [s["title"] for s in topic["subtopics"]] == ["Vectors", "Matrices"]
    assert all(s["id"] and s["completed"] is False for s in topic["subtopics"])
    assert topic["subtopics"][0]["id"] != topic["subtopics"][1]["id"]


def test_create_topic_requires_title(client, register) -> None:
    user = register()
    assert client.post("/topics", json={"description": "x"}, headers=user.headers).status_code == 400


def test_create_topic_rejects_non_pdf_attachment(client, register) -> None:
    user = register()
    resp = client.post(
        "/topics",
        json={"title": "x", "attachment_url": "data:image/png;base64,AAAA"},
        headers=user.headers,
    )
    assert resp.status_code == 400


def test_toggle_subtopic_updates_progress(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a", "b", "c"])
    first, second = topic["subtopics"][0]["id"], topic["subtopics"][1]["id"]

    client.patch(f"/topics/{topic['id']}/subtopics/{first}", headers=user.headers)
    resp = client.patch(f"/topics/{topic['id']}/subtopics/{second}", headers=user.headers)
    assert resp.status_code == 200
    assert resp.json()["progress"] == 67

    back = client.patch(f"/topics/{topic['id']}/subtopics/{second}", headers=user.headers).json()
    assert back["progress"] == 33
    assert [s["completed"] for s in back["subtopics"]] == [True, False, False]


def test_toggle_unknown_subtopic_is_404(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a"])
    resp = client.patch(f"/topics/{topic['id']}/subtopics/nope", headers=user.headers)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Subtopic not found"


def test_add_subtopic(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a"])

    resp = client.post(f"/topics/{topic['id']}/subtopics", json={"title": "b"}, headers=user.headers)
    assert resp.status_code == 201
    assert [s["title"] for s in resp.json()["subtopics"]] == ["a", "b"]

    assert client.post(f"/topics/{topic['id']}/subtopics", json={}, headers=user.headers).status_code == 400


def test_list_topics_sorted_by_completion(client, register) -> None:
    user = register()
    empty = _create(client, user, title="empty", subtopics=["x"])
    full = _create(client, user, title="full", subtopics=["x"])
    half = _create(client, user, title="half", subtopics=["x", "y"])
    client.patch(f"/topics/{full['id']}/subtopics/{full['subtopics'][0]['id']}", headers=user.headers)
    client.patch(f"/topics/{half['id']}/subtopics/{half['subtopics'][0]['id']}", headers=user.headers)

    def order(sort=None):
        params = {"sort": sort} if sort else {}
        resp = client.get("/topics", params=params, headers=user.headers)
        assert resp.status_code == 200, resp.text
        return [(t["title"], t["progress"]) for t in resp.json()]

    assert order() == [("empty", 0), ("full", 100), ("half", 50)]
    assert order("completion-desc") == [("full", 100), ("half", 50), ("empty", 0)]
    assert order("completion-asc") == [("empty", 0), ("half", 50), ("full", 100)]
    assert client.get("/topics", params={"sort": "name"}, headers=user.headers).status_code == 400
    assert empty["id"]


def test_patch_topic_keeps_unsent_fields(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a"], description="keep me")

    resp = client.patch(f"/topics/{topic['id']}", json={"title": "Renamed"}, headers=user.headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["title"] == "Renamed"
    assert body["description"] == "keep me"
    assert [s["id"] for s in body["subtopics"]] == [topic["subtopics"][0]["id"]]


def test_put_topic_replaces_subtopics(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a", "b"])
    keep = topic["subtopics"][0]

    resp = client.put(
        f"/topics/{topic['id']}",
        json={"title": "New", "subtopics": [{**keep, "completed": True}, {"title": "c"}]},
        headers=user.headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert [s["title"] for s in body["subtopics"]] == ["a", "c"]
    assert body["subtopics"][0]["id"] == keep["id"]
    assert body["progress"] == 50


def test_delete_topic(client, register) -> None:
    user = register()
    topic = _create(client, user)
    assert client.delete(f"/topics/{topic['id']}", headers=user.headers).json() == {"id": topic["id"]}
    assert client.get(f"/topics/{topic['id']}", headers=user.headers).status_code == 404


def test_subtopic_pdf_upload(client, register) -> None:
    user = register()
    topic = _create(client, user, subtopics=["a"])
    sub_id = topic["subtopics"][0]["id"]
    url = f"/topics/{topic['id']}/subtopics/{sub_id}/attachment"

    resp = client.post(url, files={"file": ("notes.pdf", PDF, "application/pdf")}, headers=user.headers)
    assert resp.status_code == 200, resp.text
    stored = resp.json()["subtopics"][0]["attachment_url"]
    assert stored.startswith("data:application/pdf;base64,")
    assert base64.b64decode(stored.split(",", 1)[1]) == PDF

    rejected = client.post(url, files={"file": ("notes.txt", b"hello", "text/plain")}, headers=user.headers)
    assert rejected.status_code == 400
    missing = client.post(url, headers=user.headers)
    assert missing.status_code == 400
    assert missing.json()["detail"] == "No file uploaded"


def test_topic_pdf_upload(client, register) -> None:
    user = register()
    topic = _create(client, user)
    resp = client.post(
        f"/topics/{topic['id']}/attachment",
        files={"file": ("book.pdf", PDF, "application/pdf")},
        headers=user.headers,
    )
    assert resp.status_code == 200
    assert resp.json()["attachment_url"].startswith("data:application/pdf;base64,")


def test_upload_respects_configured_size_limit(client, register, settings) -> None:
    user = register()
    topic = _create(client, user)
    oversized = PDF + b"0" * settings.max_attachment_bytes
    resp = client.post(
        f"/topics/{topic['id']}/attachment",
        files={"file": ("big.pdf", oversized, "application/pdf")},
        headers=user.headers,
    )
    assert resp.status_code == 400
    assert "too large" in resp.json()["detail"]


def test_topic_owner_guard(client, register) -> None:
    alice = register("alice@example.com")
    mallory = register("mallory@example.com")
    topic = _create(client, alice, subtopics=["a"])
    sub_id = topic["subtopics"][0]["id"]

    assert client.get(f"/topics/{topic['id']}", headers=mallory.headers).status_code == 401
    assert client.patch(f"/topics/{topic['id']}", json={"title": "x"}, headers=mallory.headers).status_code == 401
    assert client.delete(f"/topics/{topic['id']}", headers=mallory.headers).status_code == 401
    assert client.patch(f"/topics/{topic['id']}/subtopics/{sub_id}", headers=mallory.headers).status_code == 401
    base = f"/topics/{topic['id']}"
    pdf = {"file": ("notes.pdf", PDF, "application/pdf")}
    assert client.put(base, json={"title": "x"}, headers=mallory.headers).status_code == 401
    assert client.post(f"{base}/subtopics", json={"title": "b"}, headers=mallory.headers).status_code == 401
    assert client.post(f"{base}/attachment", files=pdf, headers=mallory.headers).status_code == 401
    assert client.post(f"{base}/subtopics/{sub_id}/attachment", files=pdf, headers=mallory.headers).status_code == 401
    assert client.get("/topics", headers=mallory.headers).json() == []

    untouched = client.get(base, headers=alice.headers).json()
    assert untouched["title"] == "Linear algebra"
    assert [s["title"] for s in untouched["subtopics"]] == ["a"]
    assert untouched["attachment_url"] is None

    assert client.get("/topics/0123456789abcdef01234567", headers=alice.headers).status_code == 404


def test_default_order_follows_creation_not_storage_order(client, register, mongo_db) -> None:
    user = register()
    # Stored newest-first; listing must still be oldest-first.
    for n, title in ((3, "third"), (1, "first"), (2, "second")):
        mongo_db["topic"].insert_one(
            {"_id": ObjectId(f"{n:024x}"), "title": title, "owner": user.id, "subtopics": []}
        )

    resp = client.get("/topics", headers=user.headers)
    assert [t["title"] for t in resp.json()] == ["first", "second", "third"]
    tied = client.get("/topics", params={"sort": "completion-desc"}, headers=user.headers)
    assert [t["title"] for t in tied.json()] == ["first", "second", "third"]


class _RecordingFile(io.BytesIO):
    """Upload body that remembers how much was asked for."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.requested: list = []

    def read(self, size=-1):
        self.requested.append(size)
        return super().read(size)


def test_upload_reads_at_most_one_byte_past_the_limit(settings) -> None:
    body = _RecordingFile(PDF + b"0" * (settings.max_attachment_bytes * 3))
    upload = SimpleNamespace(file=body, filename="big.pdf", content_type="application/pdf")

    with pytest.raises(HTTPException) as exc:
        _read_upload(upload, settings)
    assert exc.value.status_code == 400
    assert body.requested == [settings.max_attachment_bytes + 1]
    assert body.closed
