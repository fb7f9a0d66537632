"""
app/ingestion/column_sniffer.py

Best-effort per-column type inference over a sample of each column's
non-empty values. The inferred type is advisory metadata shown to the user
while mapping; it never restricts which system field a column may take.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import BinaryIO

from app.ingestion.csv_reader import CSVDocumentReader
from db.repositories.types import ColumnDescriptor
from metrics.catalog import ColumnDataType
from metrics.values import parse_datetime, parse_decimal

DEFAULT_SAMPLE_LIMIT = 20


@dataclass(frozen=True)
class SniffResult:
    columns: tuple[ColumnDescriptor, ...]
    total_rows: int


def infer_data_type(samples: Sequence[str]) -> ColumnDataType:
    """
    Precedence: all numbers → number; else all dates → date; else any value
    containing ``@`` → email; else text. No samples → text.
    """

    if not samples:
        return ColumnDataType.TEXT
    if all(parse_decimal(sample) is not None for sample in samples):
        return ColumnDataType.NUMBER
    if all(parse_datetime(sample) is not None for sample in samples):
        return ColumnDataType.DATE
    if any("@" in sample for sample in samples):
        return ColumnDataType.EMAIL
    return ColumnDataType.TEXT


class ColumnSniffer:
    def __init__(self, *, sample_limit: int = DEFAULT_SAMPLE_LIMIT) -> None:
        self._sample_limit = max(1, sample_limit)

    def sniff(
        self,
        headers: Sequence[str],
        documents: Iterable[Mapping[str, str | None]],
    ) -> SniffResult:
        """
        Collect up to ``sample_limit`` non-empty values per column and count
        every row. The whole stream is consumed so the row count matches
        what the loader will insert.
        """

        samples: dict[str, list[str]] = {header: [] for header in headers}
        pending = set(headers)
        total_rows = 0

        for document in documents:
            total_rows += 1
            if not pending:
                continue
            for header in list(pending):
                value = document.get(header)
                if value is None or not str(value).strip():
                    continue
                column_samples = samples[header]
                column_samples.append(str(value).strip())
                if len(column_samples) >= self._sample_limit:
                    pending.discard(header)

        columns = tuple(
            ColumnDescriptor(
                source_name=header,
                data_type=infer_data_type(samples[header]).value,
                sample_value=samples[header][0] if samples[header] else None,
            )
            for header in headers
        )
        return SniffResult(columns=columns, total_rows=total_rows)

    def sniff_stream(self, stream: BinaryIO, *, max_column_name_length: int = 255) -> SniffResult:
        with CSVDocumentReader(stream, max_column_name_length=max_column_name_length) as reader:
            return self.sniff(reader.headers, reader.documents())
