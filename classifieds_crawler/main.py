"""
Main application entry point for the classifieds crawler.
"""

import sys
import argparse
import json
from typing import Optional, Dict, Any

from classifieds_crawler.crawlers.worker import WorkerExecutor
from classifieds_crawler.data.replication import GitHubReplicator
from classifieds_crawler.data.sink import CsvRecordSink
from classifieds_crawler.services.checkpoint import CheckpointStore, CrawlBounds, INITIAL_POSITION
from classifieds_crawler.services.orchestrator import CrawlOrchestrator
from classifieds_crawler.utils.errors import ClassifiedsCrawlerError, CrawlInterrupted
from classifieds_crawler.utils.logging import get_logger, get_structured_logger, setup_logging
from config import ConfigManager, SystemConfig


logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


class ClassifiedsCrawlerApp:
    """Wires configuration, storage, worker executor and orchestrator together."""

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None):
        """
        Initialize the application.

        Args:
            config_path: Optional path to configuration file
            log_level: Overrides the configured log level
        """
        self.config_path = config_path
        self.log_level_override = log_level
        self.config_manager: Optional[ConfigManager] = None
        self.config: Optional[SystemConfig] = None

        self.checkpoint_store: Optional[CheckpointStore] = None
        self.sink: Optional[CsvRecordSink] = None
        self.executor: Optional[WorkerExecutor] = None
        self.orchestrator: Optional[CrawlOrchestrator] = None

    def initialize(self) -> None:
        """Load configuration and build components. Raises ConfigurationError."""
        self.config_manager = ConfigManager(self.config_path or "config.json")
        self.config = self.config_manager.load_config()
        if self.log_level_override:
            self.config.log_level = self.log_level_override

        setup_logging(self.config.log_level, self.config.log_file, self.config.log_retention_days)

        crawler = self.config.crawler
        self.checkpoint_store = CheckpointStore(
            self.config.storage.checkpoint_path,
            CrawlBounds.from_config(crawler)
        )

        replicator = GitHubReplicator(self.config.replication) if self.config.replication.enabled else None
        self.sink = CsvRecordSink(self.config.storage.output_path, replicator)

        self.executor = WorkerExecutor(
            timeout=crawler.worker_timeout,
            start_method=crawler.start_method,
            log_level=self.config.log_level
        )
        self.orchestrator = CrawlOrchestrator(
            self.config, self.executor, self.checkpoint_store, self.sink
        )
        logger.info("Application components initialized")

    def crawl(self) -> Dict[str, Any]:
        """Run the full crawl and return its summary."""
        summary = self.orchestrator.run().to_dict()
        get_structured_logger("classifieds_crawler.summary").info("crawl_summary", **summary)
        return summary

    def dry_run(self) -> Dict[str, Any]:
        """Catalog addresses the next crawl would visit, without fetching."""
        start = self.orchestrator.resume_position()
        units = list(self.orchestrator.iter_units(start))
        return {
            "start_position": start.to_dict(),
            "units": len(units),
            "addresses": [unit.address for unit in units]
        }

    def extract(self, address: str) -> Dict[str, Any]:
        """Extract a single listing in an isolated worker and store it."""
        outcome, record = self.orchestrator.extract_listing(address)
        written = bool(record) and self.sink.append([record])
        if written:
            self.sink.replicate()
        return {
            "address": address,
            "success": outcome.succeeded and written,
            "attempts": outcome.attempts,
            "record": record.to_dict() if record else None,
            "errors": outcome.errors
        }

    def get_status(self) -> Dict[str, Any]:
        """Checkpoint position, next catalog address and output file stats."""
        position = self.checkpoint_store.load()
        effective = position or INITIAL_POSITION
        bounds = self.orchestrator.bounds

        return {
            "checkpoint": {
                "path": str(self.checkpoint_store.path),
                "position": position.to_dict() if position else None,
                "next_address": self.orchestrator.build_unit(effective).address,
                "progress": f"{bounds.ordinal(effective)}/{bounds.total_units}"
            },
            "output": {
                "path": str(self.sink.path),
                "rows": self.sink.count_rows()
            },
            "replication": {
                "enabled": self.config.replication.enabled,
                "repo": self.config.replication.repo
            }
        }

    def reset(self) -> Dict[str, Any]:
        """Reset the checkpoint so the next crawl starts from the beginning."""
        self.checkpoint_store.reset()
        return {"checkpoint": INITIAL_POSITION.to_dict()}


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command-line interface parser."""
    parser = argparse.ArgumentParser(
        description='Classifieds Crawler - resumable catalog and listing crawler',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Crawl from the last checkpoint
  %(prog)s --config custom.json     # Use custom configuration file
  %(prog)s --status                 # Show checkpoint and output status
  %(prog)s --reset                  # Start the next crawl from scratch
  %(prog)s --extract URL            # Extract a single listing
  %(prog)s --crawl --dry-run        # List catalog pages without fetching
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Path to configuration file (default: config.json)'
    )

    operation_group = parser.add_mutually_exclusive_group()

    operation_group.add_argument(
        '--crawl',
        action='store_true',
        help='Run the crawl (default mode)'
    )

    operation_group.add_argument(
        '--status',
        action='store_true',
        help='Show checkpoint and output status and exit'
    )

    operation_group.add_argument(
        '--reset',
        action='store_true',
        help='Reset the checkpoint to the initial position and exit'
    )

    operation_group.add_argument(
        '--extract',
        type=str,
        metavar='URL',
        help='Extract one listing page in an isolated worker and exit'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        choices=['json', 'text'],
        default='text',
        help='Output format for status and results (default: text)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override log level from configuration'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output (equivalent to --log-level DEBUG)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List the catalog pages a crawl would visit without fetching them'
    )

    return parser


def format_output(data: Any, format_type: str) -> str:
    """Format output data according to specified format."""
    if format_type == 'json':
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)

    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.append(f"{key}:")
                for sub_key, sub_value in value.items():
                    lines.append(f"  {sub_key}: {sub_value}")
            elif isinstance(value, list):
                lines.append(f"{key}:")
                lines.extend(f"  {item}" for item in value)
            else:
                lines.append(f"{key}: {value}")
        return '\n'.join(lines)
    elif isinstance(data, list):
        return '\n'.join(map(str, data))
    return str(data)


def handle_operations(app: ClassifiedsCrawlerApp, args: argparse.Namespace) -> int:
    """Run the requested operation and return its exit code."""
    if args.status:
        print(format_output(app.get_status(), args.output))
        return EXIT_OK

    if args.reset:
        print(format_output(app.reset(), args.output))
        return EXIT_OK

    if args.extract:
        result = app.extract(args.extract)
        print(format_output(result, args.output))
        return EXIT_OK if result["success"] else EXIT_ERROR

    if args.dry_run:
        print(format_output(app.dry_run(), args.output))
        return EXIT_OK

    summary = app.crawl()
    print(format_output(summary, args.output))
    return EXIT_OK


def main(argv=None) -> int:
    """Main entry point with command-line interface."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)

    log_level = 'DEBUG' if args.verbose else args.log_level

    try:
        app = ClassifiedsCrawlerApp(config_path=args.config, log_level=log_level)
        app.initialize()
        return handle_operations(app, args)

    except CrawlInterrupted as e:
        logger.warning(f"Stopped by signal {e.signum}, progress saved")
        return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        logger.warning("Received keyboard interrupt")
        return EXIT_INTERRUPTED
    except ClassifiedsCrawlerError as e:
        logger.error(f"Application error: {e}")
        print(format_output({'error': str(e)}, args.output))
        return EXIT_ERROR
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        print(format_output({'error': str(e)}, args.output))
        return EXIT_ERROR


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
