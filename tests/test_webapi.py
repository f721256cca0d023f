import pytest
from fastapi.testclient import TestClient

from preview_service import webapi

from .fakes import FakeEngine, fake_pdf, png_size
from .test_preview_service import make_service


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(webapi, "SERVICE", make_service(tmp_path))
    monkeypatch.setattr(webapi, "MAX_UPLOAD_MB", 1)
    return TestClient(webapi.app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_creates_document_with_preview(client):
    resp = client.post("/documents", files={"file": ("resume.pdf", fake_pdf(pages=10), "application/pdf")})
    assert resp.status_code == 201
    body = resp.json()
    assert body["preview_strategy"] == "native"
    assert body["preview_name"] == "resume.png"
    assert "document_uri" not in body and "preview_uri" not in body
    assert resp.headers["Location"] == f"/documents/{body['id']}"

    meta = client.get(f"/documents/{body['id']}")
    assert meta.status_code == 200
    assert meta.json()["checksum"] == body["checksum"]

    preview = client.get(body["links"]["preview"])
    assert preview.status_code == 200
    assert preview.headers["content-type"] == "image/png"
    assert png_size(preview.content) == (918, 1188)


def test_passthrough_preview_serves_the_original(client, tmp_path, monkeypatch):
    engine = FakeEngine(render_error=RuntimeError("unsupported shading"))
    monkeypatch.setattr(webapi, "SERVICE", make_service(tmp_path, engine=engine))
    document = fake_pdf()
    resp = client.post("/documents", files={"file": ("scan.PDF", document, "application/octet-stream")})
    assert resp.status_code == 201
    body = resp.json()
    assert body["preview_passthrough"] is True

    preview = client.get(f"/documents/{body['id']}/preview")
    assert preview.status_code == 200
    assert preview.headers["content-type"] == "application/pdf"
    assert preview.content == document


def test_rejects_unsupported_media_type(client):
    resp = client.post("/documents", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 415
    assert resp.json()["detail"]["code"] == "unsupported_media_type"


def test_rejects_oversized_upload(client):
    resp = client.post("/documents", files={"file": ("big.pdf", b"x" * (1024 * 1024 + 10), "application/pdf")})
    assert resp.status_code == 413


def test_rejects_empty_upload(client):
    resp = client.post("/documents", files={"file": ("empty.pdf", b"", "application/pdf")})
    assert resp.status_code == 400


def test_unknown_document(client):
    assert client.get("/documents/missing").status_code == 404
    assert client.get("/documents/missing/preview").status_code == 404
