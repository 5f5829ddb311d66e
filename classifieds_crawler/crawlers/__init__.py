"""
Page rendering, listing parsing and isolated worker processes.
"""

from .base import (
    PageRenderer, ListingParser, RenderedPage, WorkerTask, WorkerResult,
    TASK_CATALOG, TASK_LISTING
)
from .parser import ClassifiedListingParser, extract_child_addresses
from .renderer import PlaywrightRenderer
from .worker import WorkerExecutor, run_task, kill_descendants

__all__ = [
    'PageRenderer',
    'ListingParser',
    'RenderedPage',
    'WorkerTask',
    'WorkerResult',
    'TASK_CATALOG',
    'TASK_LISTING',
    'ClassifiedListingParser',
    'extract_child_addresses',
    'PlaywrightRenderer',
    'WorkerExecutor',
    'run_task',
    'kill_descendants'
]
