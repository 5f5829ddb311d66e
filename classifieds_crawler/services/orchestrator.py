"""
Crawl orchestration.

Drives the region -> filter -> page iteration, runs every catalog page and
every listing through an isolated worker under the retry protocol, forwards
records to the sink and keeps the checkpoint one step ahead of the work:
after each catalog page the *next* position is saved, then the politeness
delay runs. An interrupt saves the current position as its last action.
"""

import signal
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config import SystemConfig
from classifieds_crawler.crawlers.base import (
    WorkerTask, TASK_CATALOG, TASK_LISTING, addresses_from_payload, record_from_payload
)
from classifieds_crawler.data.models import ExtractedRecord
from classifieds_crawler.services.checkpoint import (
    CheckpointStore, CrawlBounds, CrawlPosition, INITIAL_POSITION
)
from classifieds_crawler.services.dedup import VisitedSet
from classifieds_crawler.services.delay import DelayPolicy
from classifieds_crawler.services.retry import RetryProtocol, RetryOutcome
from classifieds_crawler.utils.errors import CrawlInterrupted
from classifieds_crawler.utils.logging import get_business_logger


@dataclass(frozen=True)
class WorkUnit:
    """One catalog page to crawl."""
    position: CrawlPosition
    region: str
    address: str


@dataclass
class CrawlSummary:
    """Counters reported at the end of a run."""
    start_position: CrawlPosition = INITIAL_POSITION
    units_total: int = 0
    units_succeeded: int = 0
    units_exhausted: int = 0
    listings_seen: int = 0
    duplicates_skipped: int = 0
    listings_failed: int = 0
    records_written: int = 0
    records_discarded: int = 0
    records_lost: int = 0
    replication_failures: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    interrupted: bool = False

    @property
    def units_processed(self) -> int:
        return self.units_succeeded + self.units_exhausted

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['start_position'] = self.start_position.to_dict()
        data['started_at'] = self.started_at.isoformat()
        data['completed_at'] = self.completed_at.isoformat() if self.completed_at else None
        data['units_processed'] = self.units_processed
        data['duration_seconds'] = round(self.duration_seconds, 1)
        return data


class CrawlOrchestrator:
    """Sequential, resumable crawl over the configured catalog space."""

    def __init__(self,
                 config: SystemConfig,
                 executor,
                 checkpoint_store: CheckpointStore,
                 sink,
                 delay_policy: Optional[DelayPolicy] = None,
                 dedup: Optional[VisitedSet] = None,
                 handle_signals: bool = True):
        """
        Initialize orchestrator.

        Args:
            config: System configuration
            executor: Worker executor (``execute``/``abort``)
            checkpoint_store: Durable crawl position
            sink: Record sink (``append``/``replicate``)
            delay_policy: Politeness delay; built from config when omitted
            dedup: Visited listing set; a fresh one per run when omitted
            handle_signals: Install SIGINT/SIGTERM handlers while running
        """
        self.config = config
        self.executor = executor
        self.checkpoint_store = checkpoint_store
        self.sink = sink
        self.delay_policy = delay_policy or DelayPolicy.from_config(config.crawler)
        self.dedup = dedup if dedup is not None else VisitedSet()
        self.handle_signals = handle_signals

        self.bounds = CrawlBounds.from_config(config.crawler)
        self.retry = RetryProtocol(executor, self.delay_policy, config.crawler.max_attempts)
        self.position = INITIAL_POSITION
        self.summary: Optional[CrawlSummary] = None
        self.logger = get_business_logger('orchestrator')

        self._stopping = False
        self._previous_handlers: Dict[int, Any] = {}

    def build_unit(self, position: CrawlPosition) -> WorkUnit:
        """Catalog work unit for ``position``."""
        region = self.config.crawler.regions[position.region_index]
        address = self.config.crawler.catalog_url_template.format(
            region=region,
            filter=position.filter_value,
            page=position.page
        )
        return WorkUnit(position=position, region=region, address=address)

    def iter_units(self, start: CrawlPosition = INITIAL_POSITION) -> Iterator[WorkUnit]:
        """Work units from ``start`` to the end of the crawl space, in order."""
        position = start
        while position is not None:
            yield self.build_unit(position)
            position = self.bounds.advance(position)

    def resume_position(self) -> CrawlPosition:
        """Position the next run starts at."""
        return self.checkpoint_store.load() or INITIAL_POSITION

    def run(self) -> CrawlSummary:
        """
        Crawl from the checkpointed position to the end of the crawl space.

        Returns:
            Run summary

        Raises:
            CrawlInterrupted: After the checkpoint has been saved on interrupt
            CheckpointError: If progress cannot be persisted
        """
        self.position = self.resume_position()
        self._stopping = False
        summary = CrawlSummary(
            start_position=self.position,
            units_total=self.bounds.total_units - self.bounds.ordinal(self.position)
        )
        self.summary = summary

        if self.position != INITIAL_POSITION:
            self.logger.info(f"Resuming crawl at {self.position}")
        else:
            self.logger.info(f"Starting crawl of {summary.units_total} catalog pages")

        self._install_signal_handlers()
        try:
            while True:
                self._process_unit(self.build_unit(self.position), summary)

                next_position = self.bounds.advance(self.position)
                if next_position is None:
                    self.position = INITIAL_POSITION
                    self.checkpoint_store.reset()
                    break

                self.position = next_position
                self.checkpoint_store.save(next_position)
                self.delay_policy.wait()

        except CrawlInterrupted as e:
            self._stopping = True
            summary.interrupted = True
            summary.completed_at = datetime.now()
            self.logger.warning(f"Interrupted by signal {e.signum}, saving position {self.position}")
            self.executor.abort()
            self.checkpoint_store.save(self.position)
            raise

        finally:
            self._restore_signal_handlers()
            summary.replication_failures = getattr(self.sink, 'replication_failures', 0)

        summary.completed_at = datetime.now()
        self.logger.info(
            f"Crawl complete: {summary.units_succeeded} pages ok, {summary.units_exhausted} exhausted, "
            f"{summary.records_written} records written in {summary.duration_seconds:.0f}s"
        )
        return summary

    def _process_unit(self, unit: WorkUnit, summary: CrawlSummary) -> None:
        """Fetch one catalog page and extract its listings."""
        crawler = self.config.crawler
        self.logger.info(f"Scraping {unit.position} {unit.address}")

        task = WorkerTask(
            kind=TASK_CATALOG,
            address=unit.address,
            renderer=self.config.renderer,
            parser=self.config.parser,
            link_selector=crawler.listing_link_selector,
            log_level=self.config.log_level
        )
        outcome = self.retry.run(task, timeout=crawler.worker_timeout)

        if not outcome.succeeded:
            summary.units_exhausted += 1
            self.logger.error(
                f"Skipping {unit.position} after {outcome.attempts} failed attempts: "
                f"{outcome.errors[-1] if outcome.errors else 'unknown error'}"
            )
            return

        summary.units_succeeded += 1
        addresses = addresses_from_payload(outcome.payload)
        self.logger.info(f"Found {len(addresses)} listings on {unit.address}")
        self._extract_listings(addresses, summary)

    def _extract_listings(self, addresses: List[str], summary: CrawlSummary) -> None:
        appended = False
        fetched = 0

        for address in addresses:
            summary.listings_seen += 1
            if not self.dedup.add(address):
                summary.duplicates_skipped += 1
                self.logger.debug(f"Already visited: {address}")
                continue

            # Consecutive listing fetches are spaced like catalog pages
            if fetched:
                self.delay_policy.wait()
            fetched += 1

            outcome, record = self.extract_listing(address)
            if not outcome.succeeded:
                summary.listings_failed += 1
                continue
            if record is None:
                summary.records_discarded += 1
                continue

            if self.sink.append([record]):
                summary.records_written += 1
                appended = True
            else:
                summary.records_lost += 1

        if appended:
            self.sink.replicate()

    def extract_listing(self, address: str) -> Tuple[RetryOutcome, Optional[ExtractedRecord]]:
        """Run one listing through an isolated worker under the retry protocol."""
        crawler = self.config.crawler
        task = WorkerTask(
            kind=TASK_LISTING,
            address=address,
            renderer=self.config.renderer,
            parser=self.config.parser,
            log_level=self.config.log_level
        )
        outcome = self.retry.run(task, timeout=crawler.listing_timeout,
                                 max_attempts=crawler.listing_max_attempts)
        record = record_from_payload(outcome.payload) if outcome.succeeded else None

        if outcome.succeeded and record is None:
            self.logger.info(f"No data scraped from {address}")
        return outcome, record

    def _handle_signal(self, signum, frame) -> None:
        if self._stopping:
            self.logger.warning(f"Signal {signum} received while shutting down, ignoring")
            return
        self._stopping = True
        raise CrawlInterrupted(signum)

    def _install_signal_handlers(self) -> None:
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
