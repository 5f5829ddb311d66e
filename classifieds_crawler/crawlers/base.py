"""
Abstract base classes and interfaces for the crawler's collaborators.

The orchestrator only talks to a page renderer and a listing parser through
these interfaces; the concrete Playwright renderer and the default listing
parser live next to this module.
"""

from abc import ABC, abstractmethod
from typing import List, Any, Optional, Dict
from dataclasses import dataclass, field

from config import RendererConfig, ParserConfig
from classifieds_crawler.data.models import ExtractedRecord


TASK_CATALOG = "catalog"
TASK_LISTING = "listing"


@dataclass
class RenderedPage:
    """Fully rendered document returned by a page renderer."""
    address: str
    final_url: str
    html: str
    status: Optional[int] = None


@dataclass
class WorkerTask:
    """
    One unit of work shipped to an isolated worker process.

    Everything here must be picklable: the worker may be started with the
    ``spawn`` method and rebuilds its renderer and parser from these settings.
    """
    kind: str
    address: str
    renderer: RendererConfig = field(default_factory=RendererConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    link_selector: Optional[str] = None
    log_level: str = "INFO"


@dataclass
class WorkerResult:
    """Outcome of one isolated worker invocation."""
    success: bool
    payload: Any = None
    error: Optional[str] = None
    exit_code: Optional[int] = None
    timed_out: bool = False


class PageRenderer(ABC):
    """Renders a page in a browser engine and returns its document."""

    @abstractmethod
    def render(self, address: str, ready_selector: Optional[str] = None,
               require_ready: bool = False) -> RenderedPage:
        """
        Navigate to ``address`` and wait until it is ready.

        Args:
            address: Page address
            ready_selector: CSS selector whose presence marks the page as ready
            require_ready: When True a selector wait timeout is a failure;
                otherwise the document is returned as-is

        Returns:
            Rendered page

        Raises:
            RenderError: On navigation failure, required wait timeout or a
                blocked response
        """
        pass

    def close(self) -> None:
        """Release browser resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ListingParser(ABC):
    """Extracts a record from a rendered listing document."""

    @abstractmethod
    def parse(self, html: str, address: str) -> Optional[ExtractedRecord]:
        """
        Parse one listing.

        Returns:
            The extracted record, or None when a mandatory field is missing
        """
        pass


def record_from_payload(payload: Optional[Dict[str, Any]]) -> Optional[ExtractedRecord]:
    """Rebuild a record shipped back from a worker as a plain dict."""
    if not payload:
        return None
    return ExtractedRecord.from_dict(payload)


def addresses_from_payload(payload: Any) -> List[str]:
    """Child addresses shipped back from a catalog worker."""
    if not payload:
        return []
    return [str(address) for address in payload]
