"""
CSV record sink with optional remote replication.
"""

import csv
import io
from pathlib import Path
from typing import Iterable, List, Optional

from classifieds_crawler.data.models import ExtractedRecord
from classifieds_crawler.utils.errors import ReplicationError, SinkError, handle_error
from classifieds_crawler.utils.logging import get_business_logger


class CsvRecordSink:
    """
    Appends extracted records to a local CSV file.

    The header row is written once, when the file is created or empty. Rows
    appended since the last successful replication are kept in memory and
    pushed by ``replicate()``.
    """

    def __init__(self, path: str, replicator=None):
        """
        Initialize sink.

        Args:
            path: Output CSV path
            replicator: Object with ``sync(new_content, header)``, or None
        """
        self.path = Path(path)
        self.replicator = replicator
        self.logger = get_business_logger('sink')
        self.records_written = 0
        self.records_lost = 0
        self.replication_failures = 0
        self._pending: List[List[str]] = []

    @property
    def columns(self) -> List[str]:
        return ExtractedRecord.field_names()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def append(self, records: Iterable[ExtractedRecord]) -> bool:
        """
        Append records to the CSV file.

        Returns:
            True if every record was written; False if storage was unwritable,
            in which case the records are counted as lost
        """
        rows = [record.to_row() for record in records if record is not None]
        if not rows:
            return True

        try:
            self._write_rows(rows)
        except SinkError as e:
            self.records_lost += len(rows)
            handle_error(e, self.logger, {"lost_records": len(rows)}, reraise=False)
            return False

        self.records_written += len(rows)
        self._pending.extend(rows)
        self.logger.info(f"Saved {len(rows)} record(s) to {self.path}")
        return True

    def _write_rows(self, rows: List[List[str]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            with open(self.path, 'a', newline='', encoding='utf-8') as f:
                writer = csv.writer(f, lineterminator='\n')
                if write_header:
                    writer.writerow(self.columns)
                writer.writerows(rows)
        except OSError as e:
            raise SinkError(f"Failed to write records: {e}", {"path": str(self.path)})

    def replicate(self) -> bool:
        """
        Push pending rows to the remote copy.

        Returns:
            True when nothing was pending or the push succeeded. On failure the
            rows stay pending for the next call.
        """
        if self.replicator is None or not self._pending:
            return True

        try:
            self.replicator.sync(self._to_csv(self._pending), self._to_csv([self.columns]))
        except ReplicationError as e:
            self.replication_failures += 1
            handle_error(e, self.logger, {"pending_records": len(self._pending)}, reraise=False)
            return False

        self.logger.info(f"Replicated {len(self._pending)} record(s)")
        self._pending.clear()
        return True

    def count_rows(self) -> Optional[int]:
        """Number of data rows in the output file, or None if it does not exist."""
        if not self.path.exists():
            return None
        with open(self.path, 'r', newline='', encoding='utf-8') as f:
            return max(sum(1 for _ in csv.reader(f)) - 1, 0)

    @staticmethod
    def _to_csv(rows: List[List[str]]) -> str:
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator='\n').writerows(rows)
        return buffer.getvalue()
