"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from doc_analysis_server import server
from doc_analysis_server.analysis import ingestion
from doc_analysis_server.analysis.ingestion import DocumentParsingService
from doc_analysis_server.analysis.models import ParseTask
from doc_analysis_server.analysis.repository import InMemoryRepository

INTRO_TEXT = "第一章：介绍\n\n这是介绍段落。"


@pytest.fixture
def service(tmp_path, monkeypatch):
    service = DocumentParsingService(
        InMemoryRepository(),
        InMemoryRepository(),
        upload_dir=tmp_path,
        run_in_background=False,
    )
    monkeypatch.setattr(server, "service", service)
    yield service
    service.shutdown()


@pytest.fixture
def client(service):
    return TestClient(server.app)


def _upload(client, name="介绍.txt", data=INTRO_TEXT.encode("utf-8"), content_type="text/plain"):
    return client.post("/api/v1/upload", files={"file": (name, data, content_type)})


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, client):
        """Test the liveness endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        """Test the readiness endpoint with in-memory stores."""
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "checks": {"repository": True, "external_parser": False},
        }


class TestUpload:
    """Tests for the upload endpoint."""

    def test_upload_parses_document(self, client):
        """Test that an upload returns the parsed document in camelCase."""
        response = _upload(client)
        assert response.status_code == 201

        body = response.json()
        assert body["status"] == "completed"
        assert body["originalName"] == "介绍.txt"
        assert body["parseSource"] == "fallback"
        assert body["mimeType"] == "text/plain"
        assert [block["type"] for block in body["contentBlocks"]] == ["title", "paragraph"]
        assert body["structureNodes"][1]["parentId"] == body["structureNodes"][0]["id"]
        assert body["taskId"]

    def test_unsupported_type(self, client):
        """Test that an unsupported extension is a 400."""
        response = _upload(client, name="image.png", data=b"\x89PNG", content_type="image/png")
        assert response.status_code == 400
        assert response.json()["code"] == "UNSUPPORTED_FILE_TYPE"

    def test_file_too_large(self, client, monkeypatch):
        """Test that an oversized upload is a 413."""
        monkeypatch.setattr(ingestion, "MAX_UPLOAD_SIZE", 8)
        response = _upload(client, data=b"0123456789")
        assert response.status_code == 413
        assert response.json()["code"] == "FILE_TOO_LARGE"


class TestParse:
    """Tests for the parse task endpoints."""

    def test_parse_flow(self, client):
        """Test starting a task, checking its status and reading its result."""
        document_id = _upload(client).json()["id"]

        response = client.post("/api/v1/parse", json={"documentId": document_id, "mode": "pro"})
        assert response.status_code == 202
        task = response.json()
        assert task["documentId"] == document_id
        task_id = task["taskId"]

        status = client.get(f"/api/v1/parse/{task_id}/status").json()
        assert status["status"] == "SUCCESS"
        assert status["documentId"] == document_id
        assert "createdAt" in status

        result = client.get(f"/api/v1/parse/{task_id}/result").json()
        assert result["status"] == "SUCCESS"
        assert len(result["result"]["contentBlocks"]) == 2
        assert len(result["result"]["structureNodes"]) == 2
        assert result["summary"]["parseSource"] == "fallback"

    def test_result_before_success(self, client, service):
        """Test that a pending task has no result yet."""
        service.tasks.put("t1", ParseTask(task_id="t1", document_id="d1"))
        body = client.get("/api/v1/parse/t1/result").json()
        assert body["status"] == "PENDING"
        assert body["result"] is None

    def test_invalid_mode(self, client):
        """Test that unknown parse modes are rejected."""
        response = client.post("/api/v1/parse", json={"documentId": "x", "mode": "fast"})
        assert response.status_code == 422

    def test_unknown_document(self, client):
        """Test that parsing an unknown document is a 404."""
        response = client.post("/api/v1/parse", json={"documentId": "missing"})
        assert response.status_code == 404
        assert response.json()["code"] == "DOCUMENT_NOT_FOUND"

    def test_unknown_task(self, client):
        """Test that unknown task ids are a 404."""
        response = client.get("/api/v1/parse/missing/status")
        assert response.status_code == 404
        assert response.json()["code"] == "TASK_NOT_FOUND"


class TestDocuments:
    """Tests for the document endpoints."""

    def test_list_and_paginate(self, client):
        """Test listing with pagination and a status filter."""
        for i in range(3):
            _upload(client, name=f"doc{i}.txt")

        body = client.get("/api/v1/documents", params={"page": 2, "limit": 2}).json()
        assert body["total"] == 3
        assert body["page"] == 2
        assert [doc["originalName"] for doc in body["documents"]] == ["doc2.txt"]

        failed = client.get("/api/v1/documents", params={"status": "failed"}).json()
        assert failed["total"] == 0

    def test_document_parts(self, client):
        """Test the per-part document endpoints."""
        document_id = _upload(client, data="如图1所示\n\nA|B|C\n1|2|3".encode("utf-8")).json()["id"]

        assert client.get(f"/api/v1/documents/{document_id}").json()["id"] == document_id
        assert len(client.get(f"/api/v1/documents/{document_id}/blocks").json()) == 2
        assert client.get(f"/api/v1/documents/{document_id}/structure").json()[0]["type"] == "document"
        assert len(client.get(f"/api/v1/documents/{document_id}/tables").json()) == 1
        assert len(client.get(f"/api/v1/documents/{document_id}/figures").json()) == 1

    def test_delete(self, client):
        """Test deleting a document."""
        document_id = _upload(client).json()["id"]

        response = client.delete(f"/api/v1/documents/{document_id}")
        assert response.status_code == 200
        assert response.json() == {"deleted": True, "documentId": document_id}

        response = client.get(f"/api/v1/documents/{document_id}")
        assert response.status_code == 404
        assert response.json()["code"] == "DOCUMENT_NOT_FOUND"
