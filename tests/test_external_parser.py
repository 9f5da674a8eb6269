"""Tests for the EasyDoc client and result adapters."""

import httpx
import pytest

from doc_analysis_server.analysis.external_parser import (
    EasyDocClient,
    PayloadShape,
    ParseResponse,
    adapt_task_result,
    classify_payload,
)
from doc_analysis_server.analysis.models import StructureNodeType


def _client(handler, **kwargs) -> EasyDocClient:
    return EasyDocClient(
        api_key="test-key",
        base_url="https://easydoc.test",
        transport=httpx.MockTransport(handler),
        sleep=lambda seconds: None,
        **kwargs,
    )


def _result(status: str, task_result=None) -> dict:
    return {
        "success": True,
        "data": {"taskId": "task-1", "task_status": status, "task_result": task_result},
    }


class TestEasyDocClient:
    """Tests for EasyDocClient requests and error handling."""

    def test_requires_api_key(self, monkeypatch):
        """Test that a missing key is a configuration error."""
        monkeypatch.delenv("EASYDOC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="EASYDOC_API_KEY"):
            EasyDocClient()

    def test_parse_document_request(self, tmp_path):
        """Test the upload request path, header and form fields."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["method"] = request.method
            seen["api_key"] = request.headers.get("api-key")
            seen["body"] = request.content
            return httpx.Response(200, json={"success": True, "data": {"taskId": "task-1"}})

        file_path = tmp_path / "report.pdf"
        file_path.write_bytes(b"%PDF-1.4 test")

        with _client(handler) as client:
            response = client.parse_document(file_path, mode="pro", start_page=2)

        assert response.success is True
        assert response.data.task_id == "task-1"
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v1/parse"
        assert seen["api_key"] == "test-key"
        assert b'name="mode"' in seen["body"]
        assert b"pro" in seen["body"]
        assert b'name="start_page"' in seen["body"]
        assert b'name="end_page"' not in seen["body"]
        assert b'filename="report.pdf"' in seen["body"]

    def test_parse_document_missing_file(self, tmp_path):
        """Test that a missing file raises before any request."""
        client = _client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(FileNotFoundError):
            client.parse_document(tmp_path / "missing.pdf")

    def test_error_envelope_is_kept(self):
        """Test that an HTTP error body in the API envelope is returned as is."""

        def handler(request):
            return httpx.Response(
                500, json={"success": False, "errCode": "QUOTA", "errMessage": "quota exceeded"}
            )

        response = _client(handler).get_parse_result("task-1")
        assert response.success is False
        assert response.err_code == "QUOTA"
        assert response.err_message == "quota exceeded"

    def test_http_error_without_envelope(self):
        """Test that a non-JSON error body maps to the endpoint's error code."""
        response = _client(lambda request: httpx.Response(502, text="bad gateway")).get_parse_result("t")
        assert response.success is False
        assert response.err_code == "GET_RESULT_ERROR"

    def test_connection_error(self):
        """Test that transport failures become unsuccessful responses."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        response = _client(handler).get_parse_result("task-1")
        assert response.success is False
        assert response.err_code == "GET_RESULT_ERROR"
        assert "connection refused" in response.err_message

    def test_timeout(self):
        """Test that timeouts become unsuccessful responses."""

        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        response = _client(handler).get_parse_result("task-1")
        assert response.success is False
        assert response.err_message.startswith("Request timed out")

    def test_unreadable_body(self):
        """Test that a 200 response without JSON is a failure."""
        response = _client(lambda request: httpx.Response(200, text="<html>")).get_parse_result("t")
        assert response.success is False
        assert response.err_message.startswith("Unreadable response")


class TestPolling:
    """Tests for poll_parse_result."""

    def test_success_after_pending(self):
        """Test that polling continues until the task succeeds."""
        statuses = iter(["PENDING", "PROGRESSING", "SUCCESS"])
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json=_result(next(statuses), {"text": "内容"}))

        sleeps = []
        client = EasyDocClient(
            api_key="test-key",
            base_url="https://easydoc.test",
            transport=httpx.MockTransport(handler),
            sleep=sleeps.append,
        )
        response = client.poll_parse_result("task-1", max_attempts=5, interval=0.5)

        assert response.success is True
        assert response.data.task_status == "SUCCESS"
        assert len(calls) == 3
        assert calls[0] == "/api/v1/parse/task-1/result"
        assert sleeps == [0.5, 0.5]

    def test_task_error(self):
        """Test that a failed task stops polling."""
        response = _client(lambda request: httpx.Response(200, json=_result("ERROR"))).poll_parse_result("t")
        assert response.success is False
        assert response.err_code == "PARSE_TASK_ERROR"

    def test_attempts_exhausted(self):
        """Test that polling gives up after max_attempts."""
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, json=_result("PENDING"))

        response = _client(handler).poll_parse_result("t", max_attempts=3)
        assert response.success is False
        assert response.err_code == "TIMEOUT"
        assert len(calls) == 3

    def test_request_failure_stops_polling(self):
        """Test that an unsuccessful response is returned immediately."""
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404, json={"success": False, "errCode": "NOT_FOUND"})

        response = _client(handler).poll_parse_result("t", max_attempts=3)
        assert response.err_code == "NOT_FOUND"
        assert len(calls) == 1


class TestAdapters:
    """Tests for classify_payload and adapt_task_result."""

    def test_classify_payload(self):
        """Test shape detection for each known payload."""
        assert classify_payload({"content_blocks": []}) == PayloadShape.SNAKE_CASE
        assert classify_payload({"contentBlocks": []}) == PayloadShape.CAMEL_CASE
        assert classify_payload({"text": "x"}) == PayloadShape.TEXT
        assert classify_payload({"pages": []}) == PayloadShape.PAGES
        assert classify_payload({"other": 1}) == PayloadShape.UNKNOWN
        assert classify_payload("text") == PayloadShape.UNKNOWN
        assert classify_payload(None) == PayloadShape.UNKNOWN

    def test_snake_case_payload(self):
        """Test a structured payload with snake_case keys and no outline."""
        payload = {
            "content_blocks": [
                {"id": "b1", "type": "title", "content": "第一章 概述"},
                {"id": "b2", "type": "paragraph", "content": "正文内容。"},
            ]
        }
        result = adapt_task_result(payload, "doc")

        assert [block.id for block in result.content_blocks] == ["b1", "b2"]
        root, chapter = result.structure_nodes
        assert chapter.type == StructureNodeType.CHAPTER
        assert chapter.content_block_ids == ["b1", "b2"]

    def test_camel_case_payload(self):
        """Test a structured payload with camelCase keys and its own outline."""
        payload = {
            "contentBlocks": [
                {"id": "b1", "type": "paragraph", "content": "Body", "metadata": {"wordCount": 1}}
            ],
            "structureNodes": [
                {"id": "n0", "type": "document", "title": "Doc", "level": 0, "contentBlockIds": ["b1"]}
            ],
            "tables": [],
            "figures": [],
        }
        result = adapt_task_result(payload, "doc")

        assert result.content_blocks[0].metadata.word_count == 1
        assert len(result.structure_nodes) == 1
        assert result.structure_nodes[0].content_block_ids == ["b1"]

    def test_text_payload(self):
        """Test that plain text runs through the local analysis."""
        result = adapt_task_result({"text": "第一章：介绍\n\n这是介绍段落。"}, "doc")
        assert [block.type for block in result.content_blocks] == ["title", "paragraph"]
        assert len(result.structure_nodes) == 2

    def test_pages_payload(self):
        """Test that page-grouped blocks carry their page numbers."""
        payload = {
            "pages": [
                {"blocks": [{"type": "title", "text": "Overview"}, {"text": "First page."}]},
                {"blocks": [{"content": "Second page.", "y": 300}, {"text": "   "}]},
            ]
        }
        result = adapt_task_result(payload, "doc", locale="en")

        blocks = result.content_blocks
        assert [block.id for block in blocks] == ["block_doc_1", "block_doc_2", "block_doc_3"]
        assert [block.position.page for block in blocks] == [1, 1, 2]
        assert [block.position.y for block in blocks] == [0, 50, 300]
        assert blocks[1].type == "paragraph"

        chapter = result.structure_nodes[1]
        assert chapter.title == "Overview"
        assert chapter.content_block_ids == ["block_doc_1", "block_doc_2", "block_doc_3"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"other": "value"},
            {"text": "   "},
            {"pages": []},
            {"content_blocks": []},
            {"content_blocks": [{"type": "paragraph"}]},
        ],
    )
    def test_unusable_payloads(self, payload):
        """Test that unknown, empty or invalid payloads yield None."""
        assert adapt_task_result(payload, "doc") is None

    def test_failure_helper(self):
        """Test the failure constructor."""
        response = ParseResponse.failure("CODE", "message")
        assert response.success is False
        assert response.err_code == "CODE"
        assert response.data is None
