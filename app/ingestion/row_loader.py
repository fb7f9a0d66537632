"""
app/ingestion/row_loader.py

Chunked persistence of row documents for one batch.

Each chunk is a single INSERT and therefore atomic. The loader never commits:
it runs inside the caller's upload transaction, so any failure or
cancellation leaves no rows behind once the caller rolls back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol

from app.errors import IngestionCancelledError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


class CancellationSignal(Protocol):
    def is_set(self) -> bool:
        ...


class RowSink(Protocol):
    def insert_rows(self, batch_id: int, documents: list[dict[str, Any]]) -> int:
        ...


class BulkRowLoader:
    def __init__(self, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._chunk_size = max(1, chunk_size)

    def load(
        self,
        sink: RowSink,
        batch_id: int,
        documents: Iterable[dict[str, Any]],
        *,
        cancel: CancellationSignal | None = None,
    ) -> int:
        """
        Persist ``documents`` in fixed-size chunks and return the row count.

        Raises IngestionCancelledError when ``cancel`` is set between chunks.
        """

        inserted = 0
        chunk: list[dict[str, Any]] = []
        for document in documents:
            chunk.append(document)
            if len(chunk) >= self._chunk_size:
                inserted += self._flush(sink, batch_id, chunk, cancel)
                chunk = []

        if chunk:
            inserted += self._flush(sink, batch_id, chunk, cancel)

        logger.info("Loaded %d rows into batch_id=%s", inserted, batch_id)
        return inserted

    def _flush(
        self,
        sink: RowSink,
        batch_id: int,
        chunk: list[dict[str, Any]],
        cancel: CancellationSignal | None,
    ) -> int:
        if cancel is not None and cancel.is_set():
            raise IngestionCancelledError(f"Row loading cancelled for batch_id={batch_id}.")
        return sink.insert_rows(batch_id, chunk)
