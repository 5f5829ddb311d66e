"""
Crawl control: orchestration, retry, politeness delay, dedup and checkpoints.
"""

from .checkpoint import CheckpointStore, CrawlBounds, CrawlPosition, INITIAL_POSITION
from .dedup import VisitedSet, canonicalize
from .delay import DelayPolicy
from .orchestrator import CrawlOrchestrator, CrawlSummary, WorkUnit
from .retry import RetryProtocol, RetryOutcome, UnitState

__all__ = [
    'CheckpointStore',
    'CrawlBounds',
    'CrawlPosition',
    'INITIAL_POSITION',
    'VisitedSet',
    'canonicalize',
    'DelayPolicy',
    'CrawlOrchestrator',
    'CrawlSummary',
    'WorkUnit',
    'RetryProtocol',
    'RetryOutcome',
    'UnitState'
]
