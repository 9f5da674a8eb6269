"""Document lifecycle: upload registration, parse tasks and batch parsing."""

import os
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from pydantic import BaseModel

from ..logger import clear_context, logger, set_context
from .external_parser import STATUS_SUCCESS, EasyDocClient, adapt_task_result
from .models import AnalysisResult, Document, DocumentStatus, ParseTask, TaskStatus
from .pipeline import SOURCE_BASIC_SAMPLE, analyze_with_fallback
from .repository import Repository
from .rules import RULESETS

SOURCE_EXTERNAL = "external"

ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx", ".txt", ".rtf"}

# Maximum file size for uploads (50MB)
MAX_UPLOAD_SIZE = 50 * 1024 * 1024

DEFAULT_UPLOAD_DIR = "uploads"


class PathValidationError(ValueError):
    """Raised when a file path fails security validation."""

    pass


class UnsupportedFileTypeError(ValueError):
    pass


class FileTooLargeError(ValueError):
    pass


class DocumentNotFoundError(LookupError):
    pass


class TaskNotFoundError(LookupError):
    pass


class ParseOutcome(BaseModel):
    """Result of parsing one document in a batch."""

    document_id: str
    status: DocumentStatus | None = None
    parse_source: str | None = None
    error: str | None = None


def validate_file_path(
    file_path: Path, allowed_dirs: list[Path] | None = None
) -> Path:
    """Validate a file path to prevent directory traversal attacks.

    Args:
        file_path: Path to validate.
        allowed_dirs: Optional list of allowed directories. If provided,
            the resolved path must be within one of these directories.

    Returns:
        Resolved absolute path.

    Raises:
        PathValidationError: If path is outside allowed directories.
        FileNotFoundError: If the file does not exist.
    """
    resolved = file_path.resolve()

    if allowed_dirs is not None:
        allowed_resolved = [d.resolve() for d in allowed_dirs]
        if not any(
            resolved.is_relative_to(allowed_dir) for allowed_dir in allowed_resolved
        ):
            raise PathValidationError(
                f"Path {resolved} is not within allowed directories"
            )

    if not resolved.exists():
        raise FileNotFoundError(f"File not found: {resolved}")

    return resolved


def validate_upload(original_name: str, file_size: int) -> str:
    """Check an upload's extension and size.

    Returns:
        The lower-cased extension.

    Raises:
        UnsupportedFileTypeError: If the extension is not accepted.
        FileTooLargeError: If the file exceeds MAX_UPLOAD_SIZE.
    """
    extension = Path(original_name).suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(sorted(ext.lstrip(".") for ext in ALLOWED_EXTENSIONS))
        raise UnsupportedFileTypeError(f"Unsupported file type {extension or '(none)'}; allowed: {allowed}")
    if file_size > MAX_UPLOAD_SIZE:
        raise FileTooLargeError(
            f"File too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB"
        )
    return extension


def _result_summary(document: Document) -> dict:
    return {
        "contentBlocks": len(document.content_blocks),
        "structureNodes": len(document.structure_nodes),
        "tables": len(document.tables),
        "figures": len(document.figures),
        "parseSource": document.parse_source,
    }


class DocumentParsingService:
    """Owns documents and parse tasks and runs parse jobs off the request path.

    Parsing tries the external parser first when one is configured and
    falls back to local analysis otherwise. Only a missing or unreadable
    upload marks a document failed.

    Args:
        documents: Document store.
        tasks: Parse task store.
        upload_dir: Directory uploads are written to; defaults to UPLOAD_DIR.
        external_client: EasyDoc client, or None for local analysis only.
        locale: Rule set for local analysis; defaults to ANALYSIS_LOCALE or "auto".
        max_workers: Size of the background parse pool.
        run_in_background: When False, parse tasks run inline in start_parse_task().

    Raises:
        ValueError: If the locale has no registered rule set.
    """

    def __init__(
        self,
        documents: Repository[Document],
        tasks: Repository[ParseTask],
        upload_dir: str | Path | None = None,
        external_client: EasyDocClient | None = None,
        locale: str | None = None,
        max_workers: int = 4,
        run_in_background: bool = True,
    ):
        self.documents = documents
        self.tasks = tasks
        self.upload_dir = Path(upload_dir or os.getenv("UPLOAD_DIR", DEFAULT_UPLOAD_DIR))
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.external_client = external_client
        self.locale = locale or os.getenv("ANALYSIS_LOCALE", "auto")
        if self.locale != "auto" and self.locale not in RULESETS:
            raise ValueError(
                f"Unknown analysis locale {self.locale!r}; expected 'auto' or one of {sorted(RULESETS)}"
            )
        self.max_workers = max_workers
        self.run_in_background = run_in_background
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="parse")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # --- Documents ---

    def register_upload(
        self, original_name: str, data: bytes, mime_type: str | None = None
    ) -> Document:
        """Store an uploaded file and create its document record.

        Raises:
            UnsupportedFileTypeError: If the extension is not accepted.
            FileTooLargeError: If the file exceeds the size limit.
        """
        extension = validate_upload(original_name, len(data))

        document_id = uuid.uuid4().hex
        file_name = f"{document_id}{extension}"
        (self.upload_dir / file_name).write_bytes(data)

        document = Document(
            id=document_id,
            file_name=file_name,
            original_name=original_name,
            file_size=len(data),
            mime_type=mime_type,
        )
        self.documents.put(document.id, document)
        logger.info(
            "document uploaded",
            document_id=document.id,
            file_name=original_name,
            file_size=len(data),
        )
        return document

    def get_document(self, document_id: str) -> Document:
        document = self.documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def list_documents(self) -> list[Document]:
        return self.documents.list()

    def delete_document(self, document_id: str) -> None:
        """Delete a document record and its stored file."""
        document = self.get_document(document_id)
        self.documents.delete(document_id)
        (self.upload_dir / document.file_name).unlink(missing_ok=True)
        logger.info("document deleted", document_id=document_id)

    # --- Parse tasks ---

    def get_task(self, task_id: str) -> ParseTask:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def start_parse_task(
        self,
        document_id: str,
        mode: str = "lite",
        start_page: int | None = None,
        end_page: int | None = None,
    ) -> ParseTask:
        """Create a parse task for a document and schedule it.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        document = self.get_document(document_id)

        task = ParseTask(task_id=uuid.uuid4().hex, document_id=document_id)
        self.tasks.put(task.task_id, task)

        document.task_id = task.task_id
        document.status = DocumentStatus.PARSING
        self.documents.put(document.id, document)

        logger.info("parse task created", task_id=task.task_id, document_id=document_id, mode=mode)

        if self.run_in_background:
            future: Future = self._executor.submit(
                self.run_parse_task, task.task_id, mode, start_page, end_page
            )
            future.add_done_callback(self._log_task_crash)
            return task
        return self.run_parse_task(task.task_id, mode, start_page, end_page)

    @staticmethod
    def _log_task_crash(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("parse task crashed", error=str(error))

    def run_parse_task(
        self,
        task_id: str,
        mode: str = "lite",
        start_page: int | None = None,
        end_page: int | None = None,
    ) -> ParseTask:
        """Run a parse task to completion and record its outcome."""
        task = self.get_task(task_id)
        set_context(task_id=task_id, document_id=task.document_id)
        try:
            task.mark(TaskStatus.PROGRESSING)
            self.tasks.put(task_id, task)

            try:
                document = self.parse_document(task.document_id, mode, start_page, end_page)
            except DocumentNotFoundError as e:
                task.mark(TaskStatus.FAILED, error=str(e))
                self.tasks.put(task_id, task)
                logger.warn("parse task failed", error=str(e))
                return task
            except Exception as e:
                logger.exception("parse task crashed", error=str(e))
                self._record_failure(task, str(e))
                return task

            if document.status == DocumentStatus.COMPLETED:
                task.mark(TaskStatus.SUCCESS, result=_result_summary(document))
            else:
                task.mark(TaskStatus.FAILED, error=document.error_message)
            self.tasks.put(task_id, task)
            return task
        finally:
            clear_context()

    def _record_failure(self, task: ParseTask, error: str) -> None:
        """Mark a task and its document failed, as far as the stores allow."""
        task.mark(TaskStatus.FAILED, error=error)
        try:
            self.tasks.put(task.task_id, task)
            document = self.documents.get(task.document_id)
            if document is not None:
                document.status = DocumentStatus.FAILED
                document.error_message = error
                self.documents.put(document.id, document)
        except Exception as e:
            logger.error("failed to record parse failure", task_id=task.task_id, error=str(e))

    # --- Parsing ---

    def parse_document(
        self,
        document_id: str,
        mode: str = "lite",
        start_page: int | None = None,
        end_page: int | None = None,
    ) -> Document:
        """Parse a stored document and persist the analysis.

        Returns:
            The updated document: completed with results, or failed when the
            upload is missing or unreadable.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        document = self.get_document(document_id)
        set_context(document_id=document.id, file_name=document.original_name)
        start = time.perf_counter()

        document.status = DocumentStatus.PARSING
        self.documents.put(document.id, document)

        try:
            file_path = validate_file_path(self.upload_dir / document.file_name, [self.upload_dir])
            result = self._parse_external(file_path, document, mode, start_page, end_page)
            if result is not None:
                source = SOURCE_EXTERNAL
            else:
                outcome = analyze_with_fallback(
                    file_path.read_bytes(),
                    document.file_name,
                    document.id,
                    original_name=document.original_name,
                    locale=self.locale,
                )
                result, source = outcome.result, outcome.source
        except (OSError, PathValidationError) as e:
            document.status = DocumentStatus.FAILED
            document.error_message = str(e)
            self.documents.put(document.id, document)
            logger.error("document parse failed", error=str(e))
            return document

        document.apply_result(result, source)
        if source == SOURCE_BASIC_SAMPLE:
            logger.warn("document completed with basic sample data")
        self.documents.put(document.id, document)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document parsed",
            parse_source=source,
            content_blocks=len(result.content_blocks),
            structure_nodes=len(result.structure_nodes),
            tables=len(result.tables),
            figures=len(result.figures),
            duration_ms=round(duration_ms, 2),
        )
        return document

    def _parse_external(
        self,
        file_path: Path,
        document: Document,
        mode: str,
        start_page: int | None,
        end_page: int | None,
    ) -> AnalysisResult | None:
        if self.external_client is None:
            return None

        response = self.external_client.parse_document(
            file_path, mode=mode, start_page=start_page, end_page=end_page
        )
        if not response.success or response.data is None:
            logger.warn(
                "external parse failed, using local analysis",
                err_code=response.err_code,
                error=response.err_message,
            )
            return None

        data = response.data
        if data.task_status != STATUS_SUCCESS or data.task_result is None:
            if not data.task_id:
                logger.warn("external parse returned no task id, using local analysis")
                return None
            response = self.external_client.poll_parse_result(data.task_id)
            if not response.success or response.data is None:
                logger.warn(
                    "external parse task failed, using local analysis",
                    err_code=response.err_code,
                    error=response.err_message,
                )
                return None
            data = response.data

        return adapt_task_result(data.task_result, document.id, locale=self.locale)

    def parse_batch(
        self, document_ids: list[str], max_workers: int | None = None
    ) -> list[ParseOutcome]:
        """Parse several documents in parallel.

        Returns:
            One ParseOutcome per document id, in input order.
        """
        total = len(document_ids)
        if total == 0:
            return []

        max_workers = max_workers or self.max_workers
        logger.info("starting batch parse", total_documents=total, max_workers=max_workers)
        start = time.perf_counter()

        results: dict[int, ParseOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_index = {
                executor.submit(self._parse_worker, document_id): i
                for i, document_id in enumerate(document_ids)
            }

            completed = 0
            for future in as_completed(future_to_index):
                idx = future_to_index[future]
                document_id = document_ids[idx]
                try:
                    document = future.result()
                    results[idx] = ParseOutcome(
                        document_id=document_id,
                        status=document.status,
                        parse_source=document.parse_source,
                        error=document.error_message,
                    )
                except DocumentNotFoundError as e:
                    logger.error("failed to parse document", document_id=document_id, error=str(e))
                    results[idx] = ParseOutcome(document_id=document_id, error=str(e))

                completed += 1
                if completed % 10 == 0 or completed == total:
                    logger.info(
                        "batch progress",
                        processed=completed,
                        total=total,
                        percent=round(completed / total * 100, 1),
                    )

        outcomes = [results[i] for i in range(total)]
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "batch parse complete",
            total_documents=total,
            completed=sum(1 for o in outcomes if o.status == DocumentStatus.COMPLETED),
            failed=sum(1 for o in outcomes if o.status != DocumentStatus.COMPLETED),
            duration_ms=round(duration_ms, 2),
        )
        return outcomes

    def _parse_worker(self, document_id: str) -> Document:
        try:
            return self.parse_document(document_id)
        finally:
            clear_context()
