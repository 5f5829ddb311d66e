"""
Extracted record model, CSV sink and remote replication.
"""

from .models import ExtractedRecord, MISSING
from .sink import CsvRecordSink
from .replication import GitHubReplicator

__all__ = [
    'ExtractedRecord',
    'MISSING',
    'CsvRecordSink',
    'GitHubReplicator'
]
