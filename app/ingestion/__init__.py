"""
app/ingestion package marker.
"""

from app.ingestion.column_sniffer import ColumnSniffer, SniffResult, infer_data_type
from app.ingestion.csv_reader import CSVDocumentReader, normalize_headers
from app.ingestion.row_loader import BulkRowLoader, CancellationSignal

__all__ = [
    "BulkRowLoader",
    "CSVDocumentReader",
    "CancellationSignal",
    "ColumnSniffer",
    "SniffResult",
    "infer_data_type",
    "normalize_headers",
]
