"""
Property-based tests for crawl orchestration and resumption.

**Feature: classifieds-crawler, Property 1: Exactly-once visitation and safe resumption**
**Validates: hierarchical iteration, checkpoint-ahead protocol, interrupt handling**
"""

import os
import signal
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from hypothesis import given, strategies as st, settings

# Add project root to path
import sys
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import SystemConfig, CrawlerConfig
from classifieds_crawler.crawlers.base import WorkerResult, TASK_CATALOG, TASK_LISTING
from classifieds_crawler.data.models import ExtractedRecord
from classifieds_crawler.data.sink import CsvRecordSink
from classifieds_crawler.services.checkpoint import (
    CheckpointStore, CrawlBounds, CrawlPosition, INITIAL_POSITION
)
from classifieds_crawler.services.delay import DelayPolicy
from classifieds_crawler.services.orchestrator import CrawlOrchestrator
from classifieds_crawler.utils.errors import CheckpointError, CrawlInterrupted


ALWAYS = 10 ** 6


class ScriptedExecutor:
    """Stands in for the worker executor; answers from fixed scripts."""

    def __init__(self,
                 catalog: Optional[Dict[str, List[str]]] = None,
                 listings: Optional[Dict[str, Optional[dict]]] = None,
                 failures: Optional[Dict[str, int]] = None):
        self.catalog = catalog or {}
        self.listings = listings or {}
        self.failures = dict(failures or {})
        self.calls = []
        self.aborted = 0

    def execute(self, task, timeout=None):
        self.calls.append((task.kind, task.address))
        remaining = self.failures.get(task.address, 0)
        if remaining:
            self.failures[task.address] = remaining - 1
            return WorkerResult(success=False, error="navigation timeout", exit_code=1)
        if task.kind == TASK_CATALOG:
            return WorkerResult(success=True, payload=self.catalog.get(task.address, []), exit_code=0)
        return WorkerResult(success=True, payload=self.listings.get(task.address), exit_code=0)

    def abort(self):
        self.aborted += 1

    def catalog_calls(self) -> List[str]:
        return [address for kind, address in self.calls if kind == TASK_CATALOG]

    def listing_calls(self) -> List[str]:
        return [address for kind, address in self.calls if kind == TASK_LISTING]


class RecordingCheckpointStore(CheckpointStore):
    """Checkpoint store that also remembers every saved position."""

    def __init__(self, path, bounds=None):
        super().__init__(path, bounds)
        self.saved: List[CrawlPosition] = []

    def save(self, position):
        super().save(position)
        self.saved.append(position)


class FailingCheckpointStore(CheckpointStore):
    def save(self, position):
        raise CheckpointError("disk full")


def make_config(directory: str, regions=1, max_filter=2, max_page=1,
                max_attempts=5, listing_max_attempts=3) -> SystemConfig:
    config = SystemConfig(
        crawler=CrawlerConfig(
            catalog_url_template="https://example.test/{region}?filter={filter}&page={page}",
            regions=[f"region{i}" for i in range(regions)],
            max_filter=max_filter,
            max_page=max_page,
            min_delay=0.0,
            max_delay=0.0,
            max_attempts=max_attempts,
            listing_max_attempts=listing_max_attempts,
        ),
        log_file=None
    )
    config.storage.checkpoint_path = str(Path(directory) / "state.json")
    config.storage.output_path = str(Path(directory) / "data.csv")
    return config


def catalog_address(region: int, filter_value: int, page: int) -> str:
    return f"https://example.test/region{region}?filter={filter_value}&page={page}"


def valid_record(address: str) -> dict:
    return ExtractedRecord(title="Corolla", price="2500000", phone="+923001234567", url=address).to_dict()


def build(config: SystemConfig, executor, sleep=lambda seconds: None, store_cls=RecordingCheckpointStore,
          sink=None, handle_signals=False):
    store = store_cls(config.storage.checkpoint_path, CrawlBounds.from_config(config.crawler))
    sink = sink or CsvRecordSink(config.storage.output_path)
    orchestrator = CrawlOrchestrator(
        config, executor, store, sink,
        delay_policy=DelayPolicy(0.0, 0.0, sleep=sleep),
        handle_signals=handle_signals
    )
    return orchestrator, store, sink


class TestEndToEndScenarios:
    """Full runs against a scripted executor."""

    def test_two_listings_are_stored_and_checkpoint_resets(self, tmp_path):
        """
        **Feature: classifieds-crawler, Property 1: Exactly-once visitation and safe resumption**

        One region, two filter values, one page: both listings of the first
        catalog page are stored, the checkpoint moves to the second filter
        mid-run and is reset once the crawl finishes.
        """
        config = make_config(str(tmp_path), regions=1, max_filter=2, max_page=1)
        listings = ["https://example.test/item/1", "https://example.test/item/2"]
        executor = ScriptedExecutor(
            catalog={catalog_address(0, 1, 1): listings},
            listings={address: valid_record(address) for address in listings}
        )
        orchestrator, store, sink = build(config, executor)

        summary = orchestrator.run()

        assert sink.records_written == 2
        assert summary.records_written == 2
        assert sink.count_rows() == 2
        assert store.saved == [CrawlPosition(0, 2, 1), INITIAL_POSITION]
        assert store.load() == INITIAL_POSITION
        assert not summary.interrupted

    def test_listing_fetches_are_spaced_by_delay(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=1, max_page=1)
        listings = ["https://example.test/item/1", "https://example.test/item/1",
                    "https://example.test/item/2", "https://example.test/item/3"]
        executor = ScriptedExecutor(
            catalog={catalog_address(0, 1, 1): listings},
            listings={address: valid_record(address) for address in listings}
        )
        waits = []

        def recording_sleep(seconds):
            waits.append(len(executor.listing_calls()))

        orchestrator, _, _ = build(config, executor, sleep=recording_sleep)
        orchestrator.run()

        # One wait before each listing after the first; duplicates are not fetched
        assert waits == [1, 2]
        assert executor.listing_calls() == listings[1:]

    def test_exhausted_catalog_page_is_skipped(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=2, max_page=1, max_attempts=5)
        failing = catalog_address(0, 1, 1)
        executor = ScriptedExecutor(failures={failing: ALWAYS})
        orchestrator, store, sink = build(config, executor)

        summary = orchestrator.run()

        assert executor.catalog_calls().count(failing) == 5
        assert summary.units_exhausted == 1
        assert summary.units_succeeded == 1
        assert store.saved[0] == CrawlPosition(0, 2, 1)
        assert catalog_address(0, 2, 1) in executor.catalog_calls()

    def test_listing_without_phone_stores_nothing(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=1, max_page=1)
        listing = "https://example.test/item/no-phone"
        executor = ScriptedExecutor(
            catalog={catalog_address(0, 1, 1): [listing]},
            listings={listing: None}
        )
        orchestrator, store, sink = build(config, executor)

        summary = orchestrator.run()

        assert summary.records_discarded == 1
        assert summary.records_written == 0
        assert sink.count_rows() is None
        assert executor.listing_calls() == [listing]

    def test_interrupt_during_wait_saves_position_before_wait(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=2, max_page=2)
        executor = ScriptedExecutor()

        def interrupted_sleep(seconds):
            raise CrawlInterrupted(signal.SIGINT)

        orchestrator, store, sink = build(config, executor, sleep=interrupted_sleep)

        with pytest.raises(CrawlInterrupted):
            orchestrator.run()

        # The position saved before the wait is the one saved on interrupt
        assert store.saved == [CrawlPosition(0, 1, 2), CrawlPosition(0, 1, 2)]
        assert store.load() == CrawlPosition(0, 1, 2)
        assert orchestrator.summary.interrupted

        resumed, _, _ = build(config, ScriptedExecutor())
        assert resumed.resume_position() == CrawlPosition(0, 1, 2)


class TestInterruptHandling:
    """Interrupts save the current position as the last action."""

    def test_real_signal_during_wait_is_converted(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=1, max_page=3)
        previous = signal.getsignal(signal.SIGINT)

        def signalling_sleep(seconds):
            os.kill(os.getpid(), signal.SIGINT)

        orchestrator, store, _ = build(config, ScriptedExecutor(), sleep=signalling_sleep,
                                       handle_signals=True)

        with pytest.raises(CrawlInterrupted) as exc_info:
            orchestrator.run()

        assert exc_info.value.signum == signal.SIGINT
        assert store.load() == CrawlPosition(0, 1, 2)
        assert signal.getsignal(signal.SIGINT) == previous

    def test_second_signal_during_shutdown_is_ignored(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=1, max_page=3)

        class SignallingAbortExecutor(ScriptedExecutor):
            def abort(self):
                super().abort()
                os.kill(os.getpid(), signal.SIGTERM)

        def signalling_sleep(seconds):
            os.kill(os.getpid(), signal.SIGINT)

        executor = SignallingAbortExecutor()
        orchestrator, store, _ = build(config, executor, sleep=signalling_sleep, handle_signals=True)

        with pytest.raises(CrawlInterrupted):
            orchestrator.run()

        assert executor.aborted == 1
        assert store.saved[-1] == CrawlPosition(0, 1, 2)

    def test_interrupt_during_fetch_saves_in_progress_triple(self, tmp_path):
        config = make_config(str(tmp_path), regions=2, max_filter=1, max_page=1)

        class InterruptingExecutor(ScriptedExecutor):
            def execute(self, task, timeout=None):
                if task.address == catalog_address(1, 1, 1):
                    raise CrawlInterrupted(signal.SIGTERM)
                return super().execute(task, timeout)

        executor = InterruptingExecutor()
        orchestrator, store, _ = build(config, executor)

        with pytest.raises(CrawlInterrupted):
            orchestrator.run()

        assert executor.aborted == 1
        assert store.load() == CrawlPosition(1, 1, 1)

    def test_checkpoint_failure_is_fatal(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=2, max_page=1)
        orchestrator, _, _ = build(config, ScriptedExecutor(), store_cls=FailingCheckpointStore)

        with pytest.raises(CheckpointError):
            orchestrator.run()


class TestOrchestrationProperties:
    """Properties over arbitrary crawl spaces."""

    @given(
        regions=st.integers(min_value=1, max_value=3),
        max_filter=st.integers(min_value=1, max_value=3),
        max_page=st.integers(min_value=1, max_value=3),
        data=st.data()
    )
    @settings(max_examples=20, deadline=None)
    def test_resume_visits_remaining_units_in_order(self, regions, max_filter, max_page, data):
        """
        **Feature: classifieds-crawler, Property 1: Exactly-once visitation and safe resumption**

        Starting from any recorded position, the crawl fetches exactly the
        catalog pages from that position to the end, in nested order, and the
        saved checkpoints increase strictly until the final reset.
        """
        start = CrawlPosition(
            data.draw(st.integers(min_value=0, max_value=regions - 1)),
            data.draw(st.integers(min_value=1, max_value=max_filter)),
            data.draw(st.integers(min_value=1, max_value=max_page))
        )

        with tempfile.TemporaryDirectory() as directory:
            config = make_config(directory, regions, max_filter, max_page)
            executor = ScriptedExecutor()
            orchestrator, store, _ = build(config, executor)
            store.save(start)
            store.saved.clear()

            orchestrator.run()

            expected = [unit.address for unit in orchestrator.iter_units(start)]
            assert executor.catalog_calls() == expected

            progress = store.saved[:-1]
            assert all(a < b for a, b in zip(progress, progress[1:]))
            assert all(position > start for position in progress)
            assert store.saved[-1] == INITIAL_POSITION

    @given(
        pages=st.lists(
            st.lists(st.integers(min_value=1, max_value=6), max_size=5),
            min_size=1, max_size=4
        )
    )
    @settings(max_examples=20, deadline=None)
    def test_each_listing_is_extracted_once_per_run(self, pages):
        """
        **Feature: classifieds-crawler, Property 2: Listing deduplication**

        Listings repeated across catalog pages are extracted exactly once.
        """
        with tempfile.TemporaryDirectory() as directory:
            config = make_config(directory, regions=1, max_filter=1, max_page=len(pages))
            catalog = {
                catalog_address(0, 1, page): [f"https://example.test/item/{n}#gallery" for n in items]
                for page, items in enumerate(pages, start=1)
            }
            executor = ScriptedExecutor(catalog=catalog)
            orchestrator, _, _ = build(config, executor)

            summary = orchestrator.run()

            unique = {n for items in pages for n in items}
            listing_calls = executor.listing_calls()
            assert len(listing_calls) == len(set(listing_calls)) == len(unique)
            assert summary.listings_seen == sum(len(items) for items in pages)
            assert summary.duplicates_skipped == summary.listings_seen - len(unique)

    @given(failures=st.integers(min_value=0, max_value=4))
    @settings(max_examples=10, deadline=None)
    def test_listing_retries_are_bounded(self, failures):
        with tempfile.TemporaryDirectory() as directory:
            config = make_config(directory, regions=1, max_filter=1, max_page=1,
                                 listing_max_attempts=3)
            listing = "https://example.test/item/flaky"
            executor = ScriptedExecutor(
                catalog={catalog_address(0, 1, 1): [listing]},
                listings={listing: valid_record(listing)},
                failures={listing: failures}
            )
            orchestrator, _, sink = build(config, executor)

            summary = orchestrator.run()

            assert executor.listing_calls().count(listing) == min(failures + 1, 3)
            assert summary.records_written == (1 if failures < 3 else 0)
            assert summary.listings_failed == (0 if failures < 3 else 1)


class TestSinkInteraction:

    def test_unwritable_sink_counts_lost_records_and_continues(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=2, max_page=1)
        listing = "https://example.test/item/1"
        executor = ScriptedExecutor(
            catalog={catalog_address(0, 1, 1): [listing]},
            listings={listing: valid_record(listing)}
        )

        class UnwritableSink:
            replication_failures = 0

            def __init__(self):
                self.replicated = 0

            def append(self, records):
                return False

            def replicate(self):
                self.replicated += 1
                return True

        sink = UnwritableSink()
        orchestrator, store, _ = build(config, executor, sink=sink)

        summary = orchestrator.run()

        assert summary.records_lost == 1
        assert summary.units_succeeded == 2
        assert sink.replicated == 0
        assert store.load() == INITIAL_POSITION

    def test_replication_runs_once_per_catalog_page_with_records(self, tmp_path):
        config = make_config(str(tmp_path), regions=1, max_filter=1, max_page=2)
        first = ["https://example.test/item/1", "https://example.test/item/2"]
        executor = ScriptedExecutor(
            catalog={catalog_address(0, 1, 1): first},
            listings={address: valid_record(address) for address in first}
        )

        class Replicator:
            def __init__(self):
                self.calls = []

            def sync(self, new_content, header):
                self.calls.append(new_content)

        replicator = Replicator()
        sink = CsvRecordSink(config.storage.output_path, replicator)
        orchestrator, _, _ = build(config, executor, sink=sink)

        orchestrator.run()

        assert len(replicator.calls) == 1
        assert replicator.calls[0].count("\n") == 2
