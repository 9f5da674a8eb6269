"""Turn an uploaded file's bytes into clean Unicode text.

Binary formats go through their extractor (python-docx for Word files,
PyMuPDF for PDFs). Everything else is treated as plain text whose encoding
is detected with charset-normalizer and, failing that, guessed from a fixed
list of encodings common in Chinese documents.
"""

import html
import io
import re
import unicodedata
import zipfile
from pathlib import Path

import docx
import fitz  # PyMuPDF
from charset_normalizer import from_bytes

from ..logger import logger
from .models import DecodedText

# Tried in order when detection is not confident
FALLBACK_ENCODINGS = ("utf-8", "gbk", "gb2312", "big5", "utf-16-le", "utf-16-be", "gb18030")

# A fallback decode is accepted only if this share of characters is CJK, printable ASCII or whitespace
MIN_VALID_CHAR_RATIO = 0.7

# charset-normalizer "chaos" above this means the detection is a guess
MAX_DETECTION_CHAOS = 0.2

# Detected guesses with weaker language coherence than this defer to the fallback list
MIN_DETECTION_COHERENCE = 0.1

# Word extraction shorter than this triggers the markup path
MIN_WORD_TEXT_LENGTH = 10

# Threshold for detecting garbage text (corrupted font encodings)
GARBAGE_CONTROL_CHAR_RATIO = 0.1

WORD_EXTENSIONS = {".docx", ".doc"}
PDF_EXTENSIONS = {".pdf"}

_VALID_CHAR = re.compile(r"[\u4e00-\u9fa5\x20-\x7e\s]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_MARKUP_TAG = re.compile(r"<[^>]*>")
_WHITESPACE_RUN = re.compile(r"\s+")


class AnalysisError(Exception):
    """Base class for failures the analysis pipeline recovers from."""


class DecodeError(AnalysisError):
    """A binary-format extractor could not read the file."""

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.reason = reason or message


class UnsupportedEncodingError(AnalysisError):
    """No candidate encoding produced a clean decode."""


class EmptyContentError(AnalysisError):
    """The decoded text is blank."""


def _is_garbage_text(text: str) -> bool:
    """Detect binary garbage produced by corrupted PDF font encodings."""
    if not text or len(text) < 20:
        return False
    control_chars = sum(1 for c in text if ord(c) < 32 and c not in "\n\t\r ")
    return control_chars / len(text) > GARBAGE_CONTROL_CHAR_RATIO


def valid_char_ratio(text: str) -> float:
    """Share of characters that are CJK ideographs, printable ASCII or whitespace."""
    if not text:
        return 0.0
    return len(_VALID_CHAR.findall(text)) / len(text)


def normalize_text(text: str) -> str:
    """Strip byte-order marks, control and replacement characters; unify newlines; NFC."""
    text = text.lstrip("\ufeff\ufffe")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\ufffd", "")
    return unicodedata.normalize("NFC", text)


def decode_with_priority_list(
    data: bytes, encodings: tuple[str, ...] = FALLBACK_ENCODINGS
) -> tuple[str, str]:
    """Decode with the first encoding whose output looks like real text.

    Returns:
        Tuple of (text, encoding).

    Raises:
        UnsupportedEncodingError: If no encoding qualifies.
    """
    for encoding in encodings:
        try:
            decoded = data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue

        if not decoded or "\ufffd" in decoded:
            continue

        ratio = valid_char_ratio(decoded)
        if ratio >= MIN_VALID_CHAR_RATIO:
            logger.debug("decoded with fallback encoding", encoding=encoding, valid_char_ratio=round(ratio, 2))
            return decoded, encoding

        logger.debug("fallback encoding rejected", encoding=encoding, valid_char_ratio=round(ratio, 2))

    raise UnsupportedEncodingError(f"none of {', '.join(encodings)} produced a clean decode")


def decode_plain_text(data: bytes) -> tuple[str, str]:
    """Decode a plain-text buffer, repairing encoding mismatches where possible.

    Returns:
        Tuple of (text, encoding). The encoding is "utf-8 (forced)" when
        every strategy failed and the buffer was decoded lossily.
    """
    detected = _detect_encoding(data)

    try:
        candidate = decode_with_priority_list(data)
    except UnsupportedEncodingError as e:
        candidate = None
        logger.debug("no fallback encoding qualified", error=str(e))

    if detected is not None:
        text, encoding, confident = detected
        # Short GBK text is often detected as cp949 and decodes cleanly to Hangul
        if confident and (candidate is None or valid_char_ratio(candidate[0]) <= valid_char_ratio(text)):
            return text, encoding
        if candidate is None:
            logger.warn("using unconfirmed detected encoding", encoding=encoding)
            return text, encoding

    if candidate is not None:
        return candidate

    logger.warn("falling back to lossy utf-8")
    return data.decode("utf-8", errors="replace"), "utf-8 (forced)"


def _detect_encoding(data: bytes) -> tuple[str, str, bool] | None:
    """Decode with charset-normalizer's best guess.

    Returns:
        Tuple of (text, encoding, confident), or None when nothing was
        detected or the guess does not decode cleanly. A guess is confident
        when its output passes the same character check as the fallback
        encodings and its language coherence is at least
        MIN_DETECTION_COHERENCE.
    """
    match = from_bytes(data).best()
    if match is None or not match.encoding or match.chaos > MAX_DETECTION_CHAOS:
        return None

    try:
        text = data.decode(match.encoding)
    except (UnicodeDecodeError, LookupError) as e:
        logger.warn("detected encoding failed to decode", encoding=match.encoding, error=str(e))
        return None
    if "\ufffd" in text:
        return None

    ratio = valid_char_ratio(text)
    confident = ratio >= MIN_VALID_CHAR_RATIO and match.coherence >= MIN_DETECTION_COHERENCE
    logger.debug(
        "detected encoding",
        encoding=match.encoding,
        chaos=match.chaos,
        coherence=match.coherence,
        valid_char_ratio=round(ratio, 2),
        confident=confident,
    )
    return text, match.encoding, confident


def _word_markup_text(data: bytes) -> str:
    """Pull text out of word/document.xml by dropping the markup."""
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        xml_payload = archive.read("word/document.xml").decode("utf-8", errors="replace")
    # Paragraph ends become spaces like every other tag
    text = _MARKUP_TAG.sub(" ", xml_payload)
    text = html.unescape(text)
    return _WHITESPACE_RUN.sub(" ", text).strip()


def _table_row_line(row) -> str:
    cells = [_WHITESPACE_RUN.sub(" ", cell.text).strip() for cell in row.cells]
    return "| " + " | ".join(cells) + " |"


def _extract_word_text(data: bytes, extension: str) -> str:
    """Extract text from a Word file, retrying through the raw markup.

    Raises:
        DecodeError: If neither extraction path can read the file.
    """
    text = ""
    primary_error: Exception | None = None
    try:
        document = docx.Document(io.BytesIO(data))
        parts = [p.text for p in document.paragraphs]
        # One pipe-delimited line per row, so each table reads as a single region
        for table in document.tables:
            parts.append("\n".join(_table_row_line(row) for row in table.rows))
        text = "\n\n".join(part for part in parts if part.strip())
        logger.info("word document extracted", extension=extension, content_length=len(text))
    except Exception as e:
        primary_error = e
        logger.warn("word text extraction failed", extension=extension, error=str(e))

    if len(text.strip()) >= MIN_WORD_TEXT_LENGTH:
        return text

    logger.info("word extraction yielded little content, trying markup", extension=extension)
    try:
        markup_text = _word_markup_text(data)
    except (zipfile.BadZipFile, KeyError, OSError) as e:
        if primary_error is not None:
            raise DecodeError(
                f"Failed to process {extension.lstrip('.').upper()} file: {primary_error}",
                reason=str(primary_error),
            ) from e
        logger.warn("markup extraction failed", extension=extension, error=str(e))
        return text

    return markup_text if len(markup_text) > len(text.strip()) else text


def _extract_pdf_text(data: bytes) -> tuple[str, int]:
    """Extract text from every PDF page.

    Raises:
        DecodeError: If PyMuPDF cannot open or read the document.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise DecodeError(f"Failed to process PDF file: {e}", reason=str(e)) from e

    try:
        pages = []
        for page_num, page in enumerate(doc):
            page_text = page.get_text()
            if _is_garbage_text(page_text):
                logger.warn("garbage text detected on pdf page", page_number=page_num + 1)
            pages.append(page_text)
        page_count = doc.page_count
    except Exception as e:
        raise DecodeError(f"Failed to process PDF file: {e}", reason=str(e)) from e
    finally:
        doc.close()

    logger.info("pdf extracted", total_pages=page_count, content_length=sum(len(p) for p in pages))
    return "\n".join(pages), page_count


def decode_document(data: bytes, file_name: str) -> DecodedText:
    """Decode a file buffer according to the extension of its name.

    Args:
        data: Raw file contents.
        file_name: Original file name; only its extension is used.

    Returns:
        DecodedText with normalized, non-blank text.

    Raises:
        DecodeError: If a Word or PDF extractor fails.
        EmptyContentError: If nothing but whitespace remains after cleanup.
    """
    extension = Path(file_name).suffix.lower()
    page_count = None

    if extension in WORD_EXTENSIONS:
        text = _extract_word_text(data, extension)
        encoding = f"{extension.lstrip('.')}-python-docx"
        source_format = extension.lstrip(".")
    elif extension in PDF_EXTENSIONS:
        text, page_count = _extract_pdf_text(data)
        encoding = "pymupdf"
        source_format = "pdf"
    else:
        text, encoding = decode_plain_text(data)
        source_format = "text"

    text = normalize_text(text)
    if not text.strip():
        raise EmptyContentError("Document content is empty or unreadable")

    logger.info(
        "document decoded",
        extension=extension or None,
        encoding=encoding,
        content_length=len(text),
    )
    return DecodedText(text=text, encoding=encoding, source_format=source_format, page_count=page_count)
