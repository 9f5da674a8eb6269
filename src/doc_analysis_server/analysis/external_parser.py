"""Client for the EasyDoc document-parsing API and adapters for its results.

The API is asynchronous: a file upload returns a task id whose result is
polled until it succeeds, fails or the attempts run out. Transport and HTTP
failures never raise; they come back as unsuccessful ParseResponse objects
so the caller can fall back to local analysis.
"""

import os
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..logger import logger
from .decoder import AnalysisError
from .keywords import extract_keywords
from .models import (
    AnalysisResult,
    BlockMetadata,
    ContentBlock,
    FigureData,
    Position,
    StructureNode,
    TableData,
)
from .pipeline import analyze_text
from .rules import get_rules
from .segmenter import count_words
from .structure import attach_blocks

DEFAULT_API_URL = "https://api.easydoc.sh"
DEFAULT_TIMEOUT = 120.0
UPLOAD_TIMEOUT = 300.0

POLL_MAX_ATTEMPTS = 60
POLL_INTERVAL_SECONDS = 5.0

LARGE_FILE_BYTES = 10 * 1024 * 1024

STATUS_SUCCESS = "SUCCESS"
STATUS_ERROR = "ERROR"


class ParseTaskData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    task_id: str | None = Field(default=None, alias="taskId")
    task_status: str | None = None
    task_result: Any = None


class ParseResponse(BaseModel):
    """Envelope returned by every EasyDoc endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    success: bool = False
    err_code: str | None = Field(default=None, alias="errCode")
    err_message: str | None = Field(default=None, alias="errMessage")
    data: ParseTaskData | None = None

    @classmethod
    def failure(cls, code: str, message: str, data: ParseTaskData | None = None) -> "ParseResponse":
        return cls(success=False, err_code=code, err_message=message, data=data)


class EasyDocClient:
    """Synchronous EasyDoc API client.

    Args:
        api_key: API key; defaults to EASYDOC_API_KEY.
        base_url: API root; defaults to EASYDOC_API_URL or the public endpoint.
        timeout: Timeout in seconds for result requests.
        upload_timeout: Timeout in seconds for the upload-and-parse request.
        transport: Optional httpx transport, used by tests.
        sleep: Function used to wait between polls.

    Raises:
        ValueError: If no API key is configured.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        upload_timeout: float = UPLOAD_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key or os.getenv("EASYDOC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "EASYDOC_API_KEY environment variable is not set. "
                "Set it to use the EasyDoc parser."
            )

        self.base_url = (base_url or os.getenv("EASYDOC_API_URL") or DEFAULT_API_URL).rstrip("/")
        self.upload_timeout = upload_timeout
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"api-key": self.api_key},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EasyDocClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _send(self, error_code: str, method: str, url: str, **kwargs: Any) -> ParseResponse:
        try:
            response = self._client.request(method, url, **kwargs)
            logger.debug("easydoc response", method=method, url=url, status_code=response.status_code)
            response.raise_for_status()
            return ParseResponse.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.warn(
                "easydoc request failed",
                url=url,
                status_code=e.response.status_code,
                error=str(e),
            )
            # Error bodies usually carry the API's own envelope
            try:
                body = e.response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and "success" in body:
                try:
                    return ParseResponse.model_validate(body)
                except ValidationError:
                    pass
            return ParseResponse.failure(error_code, str(e))
        except httpx.TimeoutException as e:
            logger.warn("easydoc request timed out", url=url, error=str(e))
            return ParseResponse.failure(error_code, f"Request timed out: {e}")
        except httpx.RequestError as e:
            logger.warn("easydoc request error", url=url, error=str(e))
            return ParseResponse.failure(error_code, str(e) or type(e).__name__)
        except (ValueError, ValidationError) as e:
            logger.warn("easydoc returned an unreadable response", url=url, error=str(e))
            return ParseResponse.failure(error_code, f"Unreadable response: {e}")

    def parse_document(
        self,
        file_path: str | Path,
        mode: str = "lite",
        start_page: int | None = None,
        end_page: int | None = None,
    ) -> ParseResponse:
        """Upload a file and start a parse task.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        file_size = file_path.stat().st_size
        if file_size > LARGE_FILE_BYTES:
            logger.warn("large file may time out", file_path=str(file_path), file_size=file_size)

        form = {"mode": mode}
        if start_page:
            form["start_page"] = str(start_page)
        if end_page:
            form["end_page"] = str(end_page)

        logger.info("uploading to easydoc", file_name=file_path.name, file_size=file_size, mode=mode)
        with open(file_path, "rb") as f:
            return self._send(
                "PARSE_ERROR",
                "POST",
                "/api/v1/parse",
                data=form,
                files={"file": (file_path.name, f)},
                timeout=self.upload_timeout,
            )

    def get_parse_result(self, task_id: str) -> ParseResponse:
        return self._send("GET_RESULT_ERROR", "GET", f"/api/v1/parse/{task_id}/result")

    def poll_parse_result(
        self,
        task_id: str,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        interval: float = POLL_INTERVAL_SECONDS,
    ) -> ParseResponse:
        """Fetch the task result until it succeeds, fails or attempts run out."""
        for attempt in range(1, max_attempts + 1):
            logger.debug("polling parse result", task_id=task_id, attempt=attempt, max_attempts=max_attempts)
            result = self.get_parse_result(task_id)
            if not result.success:
                return result

            status = result.data.task_status if result.data else None
            if status == STATUS_SUCCESS:
                logger.info("easydoc task completed", task_id=task_id, attempts=attempt)
                return result
            if status == STATUS_ERROR:
                logger.warn("easydoc task failed", task_id=task_id)
                return ParseResponse.failure("PARSE_TASK_ERROR", "Parse task failed", data=result.data)

            if attempt < max_attempts:
                self._sleep(interval)

        return ParseResponse.failure("TIMEOUT", f"Parse task timed out after {max_attempts} attempts")


class PayloadShape(str, Enum):
    SNAKE_CASE = "content_blocks"
    CAMEL_CASE = "contentBlocks"
    TEXT = "text"
    PAGES = "pages"
    UNKNOWN = "unknown"


def classify_payload(payload: Any) -> PayloadShape:
    """Identify which of the known task_result shapes a payload has."""
    if not isinstance(payload, dict):
        return PayloadShape.UNKNOWN
    if isinstance(payload.get("content_blocks"), list):
        return PayloadShape.SNAKE_CASE
    if isinstance(payload.get("contentBlocks"), list):
        return PayloadShape.CAMEL_CASE
    if isinstance(payload.get("text"), str):
        return PayloadShape.TEXT
    if isinstance(payload.get("pages"), list):
        return PayloadShape.PAGES
    return PayloadShape.UNKNOWN


def _adapt_structured(
    payload: dict, keys: tuple[str, str, str, str], document_id: str, locale: str | None
) -> AnalysisResult:
    blocks_key, nodes_key, tables_key, figures_key = keys
    blocks = [ContentBlock.model_validate(item) for item in payload.get(blocks_key) or []]
    nodes = [StructureNode.model_validate(item) for item in payload.get(nodes_key) or []]
    if not nodes and blocks:
        text = " ".join(block.content for block in blocks)
        nodes = attach_blocks(blocks, document_id, get_rules(locale, text=text))
    return AnalysisResult(
        content_blocks=blocks,
        structure_nodes=nodes,
        tables=[TableData.model_validate(item) for item in payload.get(tables_key) or []],
        figures=[FigureData.model_validate(item) for item in payload.get(figures_key) or []],
    )


def adapt_snake_case(payload: dict, document_id: str, locale: str | None = "auto") -> AnalysisResult:
    keys = ("content_blocks", "structure_nodes", "tables", "figures")
    return _adapt_structured(payload, keys, document_id, locale)


def adapt_camel_case(payload: dict, document_id: str, locale: str | None = "auto") -> AnalysisResult:
    keys = ("contentBlocks", "structureNodes", "tables", "figures")
    return _adapt_structured(payload, keys, document_id, locale)


def adapt_text(payload: dict, document_id: str, locale: str | None = "auto") -> AnalysisResult:
    """Plain text results go through the local analysis."""
    return analyze_text(payload["text"], document_id, locale=locale)


def adapt_pages(payload: dict, document_id: str, locale: str | None = "auto") -> AnalysisResult:
    """Flatten page-grouped blocks into content blocks with page numbers."""
    raw_blocks = []
    for page_index, page in enumerate(payload["pages"]):
        if not isinstance(page, dict):
            continue
        for block_index, block in enumerate(page.get("blocks") or []):
            if not isinstance(block, dict):
                continue
            content = str(block.get("text") or block.get("content") or "").strip()
            if content:
                raw_blocks.append((page_index + 1, block_index, block, content))

    text = " ".join(content for _, _, _, content in raw_blocks)
    rules = get_rules(locale, text=text)

    blocks = []
    for page, block_index, block, content in raw_blocks:
        blocks.append(
            ContentBlock(
                id=f"block_{document_id}_{len(blocks) + 1}",
                type=block.get("type") or "paragraph",
                content=content,
                position=Position(
                    page=page,
                    x=block.get("x") or 0,
                    y=block.get("y") or block_index * 50,
                    width=block.get("width") or 100,
                    height=block.get("height") or 40,
                ),
                metadata=BlockMetadata(
                    confidence=block.get("confidence") or 0.8,
                    word_count=count_words(content),
                    language=block.get("language") or rules.language,
                    semantic_tags=extract_keywords(content, rules),
                ),
            )
        )

    return AnalysisResult(
        content_blocks=blocks,
        structure_nodes=attach_blocks(blocks, document_id, rules) if blocks else [],
    )


ADAPTERS: dict[PayloadShape, Callable[..., AnalysisResult]] = {
    PayloadShape.SNAKE_CASE: adapt_snake_case,
    PayloadShape.CAMEL_CASE: adapt_camel_case,
    PayloadShape.TEXT: adapt_text,
    PayloadShape.PAGES: adapt_pages,
}


def adapt_task_result(
    payload: Any, document_id: str, locale: str | None = "auto"
) -> AnalysisResult | None:
    """Convert an EasyDoc task_result into an AnalysisResult.

    Returns:
        The adapted result, or None when the payload has an unknown shape,
        does not validate or yields no content blocks.
    """
    shape = classify_payload(payload)
    adapter = ADAPTERS.get(shape)
    if adapter is None:
        logger.warn("unrecognized parse result shape", document_id=document_id)
        return None

    try:
        result = adapter(payload, document_id, locale=locale)
    except (AnalysisError, ValidationError, ValueError, TypeError) as e:
        logger.warn("parse result could not be adapted", document_id=document_id, shape=shape.value, error=str(e))
        return None

    if not result.content_blocks:
        logger.warn("parse result has no content", document_id=document_id, shape=shape.value)
        return None

    logger.info(
        "parse result adapted",
        document_id=document_id,
        shape=shape.value,
        content_blocks=len(result.content_blocks),
        structure_nodes=len(result.structure_nodes),
    )
    return result
