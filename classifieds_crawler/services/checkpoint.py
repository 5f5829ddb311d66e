"""
Crawl position and its durable checkpoint.

The checkpoint is a small JSON document::

    {"version": 1, "region_index": 0, "filter_value": 1, "page": 1,
     "updated_at": "2024-01-01T00:00:00"}

It is rewritten atomically (temp file, fsync, rename) so that a kill at any
moment leaves either the previous or the new checkpoint on disk.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

from jsonschema import validate, ValidationError

from classifieds_crawler.utils.errors import CheckpointError
from classifieds_crawler.utils.logging import get_business_logger


CHECKPOINT_VERSION = 1

CHECKPOINT_SCHEMA = {
    "type": "object",
    "properties": {
        "version": {"type": "integer"},
        "region_index": {"type": "integer", "minimum": 0},
        "filter_value": {"type": "integer", "minimum": 1},
        "page": {"type": "integer", "minimum": 1},
        "updated_at": {"type": "string"}
    },
    "required": ["version", "region_index", "filter_value", "page"]
}


@dataclass(frozen=True, order=True)
class CrawlPosition:
    """Position in the region -> filter -> page hierarchy, ordered lexicographically."""
    region_index: int = 0
    filter_value: int = 1
    page: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "region_index": self.region_index,
            "filter_value": self.filter_value,
            "page": self.page
        }

    def __str__(self) -> str:
        return f"({self.region_index}, {self.filter_value}, {self.page})"


INITIAL_POSITION = CrawlPosition(0, 1, 1)


@dataclass(frozen=True)
class CrawlBounds:
    """Extent of the crawl space."""
    region_count: int
    max_filter: int
    max_page: int

    @classmethod
    def from_config(cls, crawler_config) -> "CrawlBounds":
        return cls(len(crawler_config.regions), crawler_config.max_filter, crawler_config.max_page)

    @property
    def total_units(self) -> int:
        return self.region_count * self.max_filter * self.max_page

    def contains(self, position: CrawlPosition) -> bool:
        return (0 <= position.region_index < self.region_count
                and 1 <= position.filter_value <= self.max_filter
                and 1 <= position.page <= self.max_page)

    def advance(self, position: CrawlPosition) -> Optional[CrawlPosition]:
        """Next position in iteration order, or None after the last one."""
        if position.page < self.max_page:
            return CrawlPosition(position.region_index, position.filter_value, position.page + 1)
        if position.filter_value < self.max_filter:
            return CrawlPosition(position.region_index, position.filter_value + 1, 1)
        if position.region_index + 1 < self.region_count:
            return CrawlPosition(position.region_index + 1, 1, 1)
        return None

    def ordinal(self, position: CrawlPosition) -> int:
        """Zero-based index of ``position`` in iteration order."""
        return ((position.region_index * self.max_filter + (position.filter_value - 1))
                * self.max_page + (position.page - 1))


class CheckpointStore:
    """Loads and atomically saves the crawl checkpoint file."""

    def __init__(self, path: str, bounds: Optional[CrawlBounds] = None):
        """
        Initialize checkpoint store.

        Args:
            path: Checkpoint file path
            bounds: When given, checkpoints outside these bounds load as absent
        """
        self.path = Path(path)
        self.bounds = bounds
        self.logger = get_business_logger('checkpoint')

    def load(self) -> Optional[CrawlPosition]:
        """
        Read the checkpoint.

        Returns:
            The recorded position, or None when the file is missing, corrupt,
            of another version or out of bounds
        """
        if not self.path.exists():
            self.logger.info(f"No checkpoint at {self.path}, starting fresh")
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            validate(instance=data, schema=CHECKPOINT_SCHEMA)
        except (OSError, ValueError, ValidationError) as e:
            self.logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            return None

        if data["version"] != CHECKPOINT_VERSION:
            self.logger.warning(
                f"Ignoring checkpoint version {data['version']} (expected {CHECKPOINT_VERSION})"
            )
            return None

        position = CrawlPosition(data["region_index"], data["filter_value"], data["page"])
        if self.bounds is not None and not self.bounds.contains(position):
            self.logger.warning(f"Ignoring checkpoint {position}: outside crawl bounds")
            return None

        self.logger.info(f"Loaded checkpoint {position}")
        return position

    def save(self, position: CrawlPosition) -> None:
        """
        Atomically persist ``position``.

        Raises:
            CheckpointError: If the checkpoint cannot be written
        """
        data: Dict[str, Any] = {"version": CHECKPOINT_VERSION, **position.to_dict(),
                                "updated_at": datetime.now().isoformat()}
        temp_file = self.path.with_name(self.path.name + '.tmp')

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.path)
        except OSError as e:
            self.logger.error(f"Failed to save checkpoint {position}: {e}")
            try:
                temp_file.unlink()
            except OSError:
                pass
            raise CheckpointError(f"Failed to save checkpoint: {e}", {"path": str(self.path)})

        self.logger.debug(f"Checkpoint saved: {position}")

    def reset(self) -> None:
        """Record the initial position so the next run starts from scratch."""
        self.save(INITIAL_POSITION)
        self.logger.info("Checkpoint reset to initial position")

    def clear(self) -> None:
        """Delete the checkpoint file."""
        try:
            self.path.unlink()
            self.logger.info(f"Checkpoint {self.path} removed")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CheckpointError(f"Failed to remove checkpoint: {e}", {"path": str(self.path)})
