"""
Configuration management for the classifieds crawler.
"""

import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path
import json
import logging
from jsonschema import validate, ValidationError

from classifieds_crawler.utils.errors import ConfigurationError


DEFAULT_REGIONS = [
    'punjab_g2003006',
    'islamabad-capital-territory_g2003003',
    'khyber-pakhtunkhwa_g2003005',
]

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


@dataclass
class CrawlerConfig:
    """Crawl space, politeness and retry settings."""
    catalog_url_template: str = (
        "https://www.olx.com.pk/{region}/vehicles_c5"
        "?page={page}&sorting=desc-creation&filter=body_type_eq_{filter}"
    )
    regions: List[str] = field(default_factory=lambda: list(DEFAULT_REGIONS))
    max_filter: int = 11
    max_page: int = 3
    listing_link_selector: str = 'a[data-testid="listing-ad-link"]'
    min_delay: float = 5.0
    max_delay: float = 8.0
    max_attempts: int = 5
    listing_max_attempts: int = 3
    worker_timeout: float = 120.0  # seconds, catalog page worker
    listing_timeout: float = 90.0  # seconds, listing worker
    start_method: str = "spawn"


@dataclass
class RendererConfig:
    """Headless browser settings."""
    headless: bool = True
    browser_type: str = "chromium"
    navigation_timeout_ms: int = 60000
    selector_timeout_ms: int = 20000
    wait_until: str = "networkidle"
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1366
    viewport_height: int = 768
    stealth: bool = True
    block_markers: List[str] = field(default_factory=lambda: [
        'access denied', 'too many requests', 'unusual traffic from your computer'
    ])


@dataclass
class ParserConfig:
    """Listing field extraction settings."""
    phone_pattern: str = r'\+?92\d{9,10}'
    attribute_label: str = "Body Type"
    mandatory_fields: List[str] = field(default_factory=lambda: ["phone"])
    state_marker: str = "window.__PRELOADED_STATE__"


@dataclass
class StorageConfig:
    """Local persistence paths."""
    output_path: str = "data/data.csv"
    checkpoint_path: str = "data/state.json"


@dataclass
class ReplicationConfig:
    """Remote copy of the output file in a GitHub repository."""
    enabled: bool = False
    token: Optional[str] = None
    repo: Optional[str] = None
    branch: str = "main"
    file_path: str = "data/data.csv"
    api_url: str = "https://api.github.com"
    commit_message: str = "Appended new data to CSV file"
    timeout: float = 30.0


@dataclass
class SystemConfig:
    """Main system configuration."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/crawler.log"
    log_retention_days: int = 7


# Configuration schema for validation
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "crawler": {
            "type": "object",
            "properties": {
                "catalog_url_template": {"type": "string", "minLength": 1},
                "regions": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                    "minItems": 1
                },
                "max_filter": {"type": "integer", "minimum": 1},
                "max_page": {"type": "integer", "minimum": 1},
                "listing_link_selector": {"type": "string", "minLength": 1},
                "min_delay": {"type": "number", "minimum": 0},
                "max_delay": {"type": "number", "minimum": 0},
                "max_attempts": {"type": "integer", "minimum": 1, "maximum": 50},
                "listing_max_attempts": {"type": "integer", "minimum": 1, "maximum": 50},
                "worker_timeout": {"type": "number", "exclusiveMinimum": 0},
                "listing_timeout": {"type": "number", "exclusiveMinimum": 0},
                "start_method": {"type": "string", "enum": ["spawn", "fork", "forkserver"]}
            },
            "additionalProperties": False
        },
        "renderer": {
            "type": "object",
            "properties": {
                "headless": {"type": "boolean"},
                "browser_type": {"type": "string", "enum": ["chromium", "firefox", "webkit"]},
                "navigation_timeout_ms": {"type": "integer", "minimum": 1000},
                "selector_timeout_ms": {"type": "integer", "minimum": 0},
                "wait_until": {
                    "type": "string",
                    "enum": ["load", "domcontentloaded", "networkidle", "commit"]
                },
                "user_agent": {"type": "string", "minLength": 10},
                "viewport_width": {"type": "integer", "minimum": 320},
                "viewport_height": {"type": "integer", "minimum": 240},
                "stealth": {"type": "boolean"},
                "block_markers": {"type": "array", "items": {"type": "string", "minLength": 1}}
            },
            "additionalProperties": False
        },
        "parser": {
            "type": "object",
            "properties": {
                "phone_pattern": {"type": "string", "minLength": 1},
                "attribute_label": {"type": "string", "minLength": 1},
                "mandatory_fields": {
                    "type": "array",
                    "items": {
                        "type": "string",
                        "enum": ["title", "attribute", "price", "location", "contact_name", "phone"]
                    }
                },
                "state_marker": {"type": "string", "minLength": 1}
            },
            "additionalProperties": False
        },
        "storage": {
            "type": "object",
            "properties": {
                "output_path": {"type": "string", "minLength": 1},
                "checkpoint_path": {"type": "string", "minLength": 1}
            },
            "additionalProperties": False
        },
        "replication": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "token": {"type": ["string", "null"]},
                "repo": {"type": ["string", "null"], "pattern": "^[^/\\s]+/[^/\\s]+$"},
                "branch": {"type": "string", "minLength": 1},
                "file_path": {"type": "string", "minLength": 1},
                "api_url": {"type": "string", "minLength": 1},
                "commit_message": {"type": "string", "minLength": 1},
                "timeout": {"type": "number", "exclusiveMinimum": 0}
            },
            "additionalProperties": False
        },
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "log_file": {"type": ["string", "null"]},
        "log_retention_days": {"type": "integer", "minimum": 1, "maximum": 365}
    },
    "additionalProperties": False
}


class ConfigManager:
    """Configuration manager with schema validation and environment overrides."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Optional[SystemConfig] = None

    def validate_config(self, config_data: Dict[str, Any]) -> None:
        """Validate configuration data against schema."""
        try:
            validate(instance=config_data, schema=CONFIG_SCHEMA)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed: {e.message}",
                {"path": "/".join(str(p) for p in e.absolute_path)}
            )

    def load_config(self) -> SystemConfig:
        """Load configuration from file (if present), then apply environment overrides."""
        self._load_dotenv()

        if self.config_path.exists():
            self._config = self._load_from_file()
            logging.info(f"Configuration loaded and validated from {self.config_path}")
        else:
            self._config = SystemConfig()
            logging.info("No configuration file found, using defaults and environment")

        self._override_with_env_vars(self._config)
        self.check_consistency(self._config)
        return self._config

    def _load_from_file(self) -> SystemConfig:
        """Load configuration from JSON file with validation."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read configuration file {self.config_path}: {e}"
            )

        self.validate_config(config_data)
        return self._dict_to_config(config_data)

    def _load_dotenv(self) -> None:
        """Load KEY=VALUE lines from a local .env file into the environment."""
        env_file = Path('.env')
        if not env_file.exists():
            return
        try:
            with open(env_file, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        os.environ.setdefault(key.strip(), value.strip())
            logging.info("Loaded environment variables from .env file")
        except OSError as e:
            logging.warning(f"Failed to load .env file: {e}")

    def _override_with_env_vars(self, config: SystemConfig) -> None:
        """Override configuration with environment variables."""
        token = os.getenv("FILE_TOKEN") or os.getenv("GITHUB_TOKEN")
        if token:
            config.replication.token = token

        if os.getenv("CRAWLER_REPLICATION_REPO"):
            config.replication.repo = os.getenv("CRAWLER_REPLICATION_REPO")

        if os.getenv("CRAWLER_LOG_LEVEL"):
            config.log_level = os.getenv("CRAWLER_LOG_LEVEL").upper()

        if os.getenv("CRAWLER_OUTPUT_PATH"):
            config.storage.output_path = os.getenv("CRAWLER_OUTPUT_PATH")

        if os.getenv("CRAWLER_CHECKPOINT_PATH"):
            config.storage.checkpoint_path = os.getenv("CRAWLER_CHECKPOINT_PATH")

    def check_consistency(self, config: SystemConfig) -> None:
        """Cross-field checks that the schema cannot express."""
        crawler = config.crawler
        if crawler.min_delay > crawler.max_delay:
            raise ConfigurationError(
                "crawler.min_delay must not exceed crawler.max_delay",
                {"min_delay": crawler.min_delay, "max_delay": crawler.max_delay}
            )
        if not crawler.regions:
            raise ConfigurationError("crawler.regions must list at least one region")
        for placeholder in ("{region}", "{filter}", "{page}"):
            if placeholder not in crawler.catalog_url_template:
                raise ConfigurationError(
                    f"crawler.catalog_url_template is missing the {placeholder} placeholder"
                )
        if config.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level: {config.log_level}")
        if config.replication.enabled and not (config.replication.token and config.replication.repo):
            raise ConfigurationError(
                "Replication is enabled but replication.token or replication.repo is missing"
            )

    def _dict_to_config(self, data: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        config = SystemConfig()

        if "crawler" in data:
            config.crawler = CrawlerConfig(**data["crawler"])

        if "renderer" in data:
            config.renderer = RendererConfig(**data["renderer"])

        if "parser" in data:
            config.parser = ParserConfig(**data["parser"])

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "replication" in data:
            config.replication = ReplicationConfig(**data["replication"])

        config.log_level = data.get("log_level", config.log_level)
        config.log_file = data.get("log_file", config.log_file)
        config.log_retention_days = data.get("log_retention_days", config.log_retention_days)

        return config

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as dictionary (token redacted)."""
        if not self._config:
            return {}

        replication = asdict(self._config.replication)
        if replication.get("token"):
            replication["token"] = "***"

        return {
            "crawler": asdict(self._config.crawler),
            "renderer": asdict(self._config.renderer),
            "parser": asdict(self._config.parser),
            "storage": asdict(self._config.storage),
            "replication": replication,
            "log_level": self._config.log_level,
            "log_file": self._config.log_file,
            "log_retention_days": self._config.log_retention_days
        }


def get_config(config_path: Optional[str] = None) -> SystemConfig:
    """Load the system configuration from ``config_path`` (default: config.json)."""
    return ConfigManager(config_path or "config.json").load_config()
