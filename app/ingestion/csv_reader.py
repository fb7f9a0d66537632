"""
app/ingestion/csv_reader.py

Streaming CSV reader shared by the column sniffer and the bulk row loader.

Header names are sanitised and de-duplicated here, once, so that column
descriptors and stored row documents always use identical keys.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterator, Sequence
from typing import BinaryIO

from app.errors import InputValidationError

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNNAMED_PREFIX = "column"


def sanitize_column_name(raw: str, *, max_length: int = 255) -> str:
    """
    Collapse whitespace, strip control characters and truncate a header cell.
    """

    cleaned = _CONTROL_CHARS.sub(" ", raw or "")
    cleaned = " ".join(cleaned.split())
    return cleaned[:max_length].rstrip()


def normalize_headers(raw_headers: Sequence[str], *, max_length: int = 255) -> list[str]:
    """
    Sanitise headers, name blank ones positionally and suffix duplicates.

    Duplicates are compared case-insensitively because mappings resolve
    source columns case-insensitively: ``["Id", "id"]`` becomes
    ``["Id", "id_2"]``.
    """

    headers: list[str] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_headers, start=1):
        name = sanitize_column_name(raw, max_length=max_length) or f"{_UNNAMED_PREFIX}_{index}"
        candidate = name
        suffix = 2
        while candidate.casefold() in seen:
            tail = f"_{suffix}"
            candidate = name[: max_length - len(tail)] + tail
            suffix += 1
        seen.add(candidate.casefold())
        headers.append(candidate)
    return headers


def record_to_document(headers: Sequence[str], record: Sequence[str]) -> dict[str, str | None]:
    """
    Build a header-keyed document. Missing and blank cells become None;
    cells beyond the header width are dropped.
    """

    document: dict[str, str | None] = {}
    for index, header in enumerate(headers):
        value = record[index] if index < len(record) else None
        document[header] = value if value is not None and value.strip() else None
    return document


class CSVDocumentReader:
    """
    Context manager yielding a CSV upload as header-keyed documents.

    The binary stream is rewound on entry and detached (not closed) on exit,
    so the same upload can be read twice: once to sniff, once to load.
    """

    def __init__(self, stream: BinaryIO, *, max_column_name_length: int = 255) -> None:
        self._stream = stream
        self._max_column_name_length = max_column_name_length
        self._text: io.TextIOWrapper | None = None
        self._reader: Iterator[list[str]] | None = None
        self.headers: list[str] = []

    def __enter__(self) -> "CSVDocumentReader":
        self._stream.seek(0)
        self._text = io.TextIOWrapper(self._stream, encoding="utf-8-sig", newline="")
        self._reader = csv.reader(self._text)
        try:
            raw_headers = self._next_record()
            if raw_headers is None or not any(cell.strip() for cell in raw_headers):
                raise InputValidationError("CSV header row is missing.")
        except Exception:
            self.__exit__(None, None, None)
            raise
        self.headers = normalize_headers(raw_headers, max_length=self._max_column_name_length)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._text is not None:
            self._text.detach()
            self._text = None
        self._reader = None

    def documents(self) -> Iterator[dict[str, str | None]]:
        """Yield one document per non-blank data row."""

        while True:
            record = self._next_record()
            if record is None:
                return
            if not any(cell.strip() for cell in record):
                continue
            yield record_to_document(self.headers, record)

    def _next_record(self) -> list[str] | None:
        if self._reader is None:
            raise RuntimeError("CSVDocumentReader must be used as a context manager.")
        try:
            return next(self._reader)
        except StopIteration:
            return None
        except UnicodeDecodeError as exc:
            raise InputValidationError("CSV file must be UTF-8 encoded.") from exc
        except csv.Error as exc:
            raise InputValidationError(f"Malformed CSV content: {exc}") from exc
