"""FastAPI REST API for document upload, parsing and analysis results."""

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, File, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .analysis import (
    DocumentNotFoundError,
    DocumentParsingService,
    EasyDocClient,
    FileTooLargeError,
    InMemoryRepository,
    PathValidationError,
    PgRepository,
    TaskNotFoundError,
    UnsupportedFileTypeError,
)
from .analysis.models import (
    AnalysisResult,
    CamelModel,
    ContentBlock,
    Document,
    DocumentStatus,
    FigureData,
    ParseTask,
    StructureNode,
    TableData,
    TaskStatus,
)
from .logger import logger

# --- Request/Response Models ---


class ParseRequest(CamelModel):
    document_id: str = Field(..., min_length=1)
    mode: str = Field(default="lite", pattern="^(lite|pro)$")
    start_page: int | None = Field(default=None, ge=1)
    end_page: int | None = Field(default=None, ge=1)


class ParseTaskResponse(CamelModel):
    task_id: str
    document_id: str
    status: TaskStatus


class TaskStatusResponse(CamelModel):
    task_id: str
    document_id: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    error: str | None = None


class TaskResultResponse(CamelModel):
    task_id: str
    status: TaskStatus
    result: AnalysisResult | None = None
    summary: dict | None = None
    error: str | None = None


class DocumentListResponse(CamelModel):
    documents: list[Document]
    total: int
    page: int
    limit: int


class DeleteResponse(CamelModel):
    deleted: bool
    document_id: str


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, bool] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    code: str
    message: str


# --- App State ---

service: DocumentParsingService | None = None


def build_service() -> DocumentParsingService:
    """Create the parsing service from environment configuration."""
    store = os.getenv("DOCUMENT_STORE", "memory").lower()
    if store == "postgres":
        documents = PgRepository(Document, kind="document")
        tasks = PgRepository(ParseTask, kind="parse_task")
        documents.connect()
        tasks.connect()
    elif store == "memory":
        documents = InMemoryRepository()
        tasks = InMemoryRepository()
    else:
        raise ValueError(f"Unknown DOCUMENT_STORE {store!r}; expected 'memory' or 'postgres'")

    external_client = EasyDocClient() if os.getenv("EASYDOC_API_KEY") else None
    logger.info(
        "parsing service configured",
        document_store=store,
        external_parser=external_client is not None,
    )
    return DocumentParsingService(documents, tasks, external_client=external_client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global service

    logger.info("starting server")

    owned = service is None
    if owned:
        service = build_service()

    yield

    if owned and service:
        service.shutdown(wait=False)
        if service.external_client:
            service.external_client.close()
        for repository in (service.documents, service.tasks):
            if isinstance(repository, PgRepository):
                repository.disconnect()
        service = None
    logger.info("server shutdown")


app = FastAPI(
    title="Document Analysis API",
    description="Document upload, parsing and structural analysis API",
    version="0.1.0",
    lifespan=lifespan,
)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=code, message=message).model_dump(),
    )


# --- Exception Handlers ---


@app.exception_handler(PathValidationError)
async def path_validation_handler(request, exc: PathValidationError):
    return _error(403, "ACCESS_DENIED", str(exc))


@app.exception_handler(FileNotFoundError)
async def file_not_found_handler(request, exc: FileNotFoundError):
    return _error(404, "FILE_NOT_FOUND", str(exc))


@app.exception_handler(DocumentNotFoundError)
async def document_not_found_handler(request, exc: DocumentNotFoundError):
    return _error(404, "DOCUMENT_NOT_FOUND", str(exc))


@app.exception_handler(TaskNotFoundError)
async def task_not_found_handler(request, exc: TaskNotFoundError):
    return _error(404, "TASK_NOT_FOUND", str(exc))


@app.exception_handler(UnsupportedFileTypeError)
async def unsupported_file_type_handler(request, exc: UnsupportedFileTypeError):
    return _error(400, "UNSUPPORTED_FILE_TYPE", str(exc))


@app.exception_handler(FileTooLargeError)
async def file_too_large_handler(request, exc: FileTooLargeError):
    return _error(413, "FILE_TOO_LARGE", str(exc))


# --- Health Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness check."""
    return HealthResponse(status="healthy")


@app.get("/ready", response_model=HealthResponse)
async def ready():
    """Readiness check - verifies the document and task stores respond."""
    checks = {"repository": False}

    if service:
        checks["repository"] = await asyncio.to_thread(
            lambda: service.documents.ping() and service.tasks.ping()
        )
        checks["external_parser"] = service.external_client is not None

    status = "healthy" if checks["repository"] else "unhealthy"
    return HealthResponse(status=status, checks=checks)


# --- Upload & Parse Endpoints ---


@app.post("/api/v1/upload", response_model=Document, status_code=201)
async def upload_file(file: UploadFile = File(...)):
    """Store an uploaded document and schedule its parsing."""
    data = await file.read()
    document = await asyncio.to_thread(
        service.register_upload, file.filename or "", data, file.content_type
    )
    # Parsing runs on the service's worker pool
    await asyncio.to_thread(service.start_parse_task, document.id)
    return await asyncio.to_thread(service.get_document, document.id)


@app.post("/api/v1/parse", response_model=ParseTaskResponse, status_code=202)
async def start_parse(request: ParseRequest):
    """Start a parse task for an uploaded document."""
    task = await asyncio.to_thread(
        service.start_parse_task,
        request.document_id,
        request.mode,
        request.start_page,
        request.end_page,
    )
    return ParseTaskResponse(task_id=task.task_id, document_id=task.document_id, status=task.status)


@app.get("/api/v1/parse/{task_id}/status", response_model=TaskStatusResponse)
async def parse_status(task_id: str):
    task = await asyncio.to_thread(service.get_task, task_id)
    return TaskStatusResponse(
        task_id=task.task_id,
        document_id=task.document_id,
        status=task.status,
        created_at=task.created_at,
        updated_at=task.updated_at,
        error=task.error,
    )


@app.get("/api/v1/parse/{task_id}/result", response_model=TaskResultResponse)
async def parse_result(task_id: str):
    """Analysis of the task's document, once the task has succeeded."""
    task = await asyncio.to_thread(service.get_task, task_id)
    if task.status != TaskStatus.SUCCESS:
        return TaskResultResponse(task_id=task.task_id, status=task.status, error=task.error)

    document = await asyncio.to_thread(service.get_document, task.document_id)
    return TaskResultResponse(
        task_id=task.task_id,
        status=task.status,
        result=AnalysisResult(
            content_blocks=document.content_blocks,
            structure_nodes=document.structure_nodes,
            tables=document.tables,
            figures=document.figures,
        ),
        summary=task.result,
    )


# --- Document Endpoints ---


@app.get("/api/v1/documents", response_model=DocumentListResponse)
async def list_documents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: DocumentStatus | None = None,
):
    """List uploaded documents, newest last."""
    docs = await asyncio.to_thread(service.list_documents)
    if status is not None:
        docs = [d for d in docs if d.status == status]
    offset = (page - 1) * limit
    return DocumentListResponse(
        documents=docs[offset:offset + limit],
        total=len(docs),
        page=page,
        limit=limit,
    )


@app.get("/api/v1/documents/{document_id}", response_model=Document)
async def get_document(document_id: str):
    return await asyncio.to_thread(service.get_document, document_id)


@app.get("/api/v1/documents/{document_id}/blocks", response_model=list[ContentBlock])
async def get_document_blocks(document_id: str):
    document = await asyncio.to_thread(service.get_document, document_id)
    return document.content_blocks


@app.get("/api/v1/documents/{document_id}/structure", response_model=list[StructureNode])
async def get_document_structure(document_id: str):
    document = await asyncio.to_thread(service.get_document, document_id)
    return document.structure_nodes


@app.get("/api/v1/documents/{document_id}/tables", response_model=list[TableData])
async def get_document_tables(document_id: str):
    document = await asyncio.to_thread(service.get_document, document_id)
    return document.tables


@app.get("/api/v1/documents/{document_id}/figures", response_model=list[FigureData])
async def get_document_figures(document_id: str):
    document = await asyncio.to_thread(service.get_document, document_id)
    return document.figures


@app.delete("/api/v1/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(document_id: str):
    """Delete a document and its stored file."""
    await asyncio.to_thread(service.delete_document, document_id)
    return DeleteResponse(deleted=True, document_id=document_id)
