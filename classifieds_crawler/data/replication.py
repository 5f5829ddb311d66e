"""
Replication of the output file to a GitHub repository through the contents API.
"""

import base64
from typing import Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import ReplicationConfig
from classifieds_crawler.utils.errors import ReplicationError
from classifieds_crawler.utils.logging import get_business_logger


class GitHubReplicator:
    """Appends rows to a file held in a GitHub repository."""

    def __init__(self, config: ReplicationConfig, session: Optional[requests.Session] = None):
        """
        Initialize replicator.

        Args:
            config: Replication settings (token, repo, branch, file path)
            session: Pre-built HTTP session (tests); a retrying one is created otherwise
        """
        self.config = config
        self.session = session or self._create_session()
        self.logger = get_business_logger('replication')

    def _create_session(self) -> requests.Session:
        """Create requests session with retry configuration."""
        session = requests.Session()

        # Only idempotent reads are retried at transport level
        retry_strategy = Retry(
            total=3,
            backoff_factor=1.0,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    @property
    def contents_url(self) -> str:
        api_url = self.config.api_url.rstrip('/')
        return f"{api_url}/repos/{self.config.repo}/contents/{self.config.file_path.lstrip('/')}"

    @property
    def headers(self):
        return {
            "Authorization": f"token {self.config.token}",
            "Accept": "application/vnd.github+json"
        }

    def fetch(self) -> Tuple[str, Optional[str]]:
        """
        Fetch the remote file.

        Returns:
            (content, sha); ("", None) when the file does not exist yet

        Raises:
            ReplicationError: On any failure other than 404
        """
        try:
            response = self.session.get(
                self.contents_url,
                headers=self.headers,
                params={"ref": self.config.branch},
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            raise ReplicationError(f"Failed to retrieve remote file: {e}", {"url": self.contents_url})

        if response.status_code == 404:
            return "", None
        if response.status_code != 200:
            raise ReplicationError(
                f"Failed to retrieve remote file: HTTP {response.status_code}",
                {"url": self.contents_url, "status": response.status_code}
            )

        data = response.json()
        sha = data.get("sha")
        # Files over 1 MB come back without inline content
        if data.get("encoding") == "none" or (sha and not data.get("content")):
            return self._fetch_raw(), sha

        try:
            content = base64.b64decode(data.get("content", "")).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise ReplicationError(f"Remote file is not valid UTF-8 text: {e}", {"url": self.contents_url})
        return content, sha

    def _fetch_raw(self) -> str:
        """Fetch the remote file body through the raw media type."""
        headers = dict(self.headers, Accept="application/vnd.github.raw")
        try:
            response = self.session.get(
                self.contents_url,
                headers=headers,
                params={"ref": self.config.branch},
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            raise ReplicationError(f"Failed to retrieve remote file body: {e}", {"url": self.contents_url})

        if response.status_code != 200:
            raise ReplicationError(
                f"Failed to retrieve remote file body: HTTP {response.status_code}",
                {"url": self.contents_url, "status": response.status_code}
            )

        response.encoding = "utf-8"
        return response.text

    @staticmethod
    def merge(remote: str, new_content: str, header: str) -> str:
        """Append ``new_content`` to ``remote``, starting with ``header`` if remote is empty."""
        if not remote:
            return header + new_content
        if not remote.endswith("\n"):
            remote += "\n"
        return remote + new_content

    def sync(self, new_content: str, header: str) -> None:
        """
        Append ``new_content`` rows to the remote file.

        Raises:
            ReplicationError: When the remote cannot be read or the update is rejected
        """
        if not new_content:
            return

        remote, sha = self.fetch()
        payload = {
            "message": self.config.commit_message,
            "content": base64.b64encode(self.merge(remote, new_content, header).encode("utf-8")).decode("ascii"),
            "branch": self.config.branch
        }
        if sha:
            payload["sha"] = sha

        try:
            response = self.session.put(
                self.contents_url,
                headers=self.headers,
                json=payload,
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            raise ReplicationError(f"Failed to update remote file: {e}", {"url": self.contents_url})

        if response.status_code == 409:
            raise ReplicationError(
                "Remote file changed concurrently",
                {"url": self.contents_url, "status": 409}
            )
        if response.status_code not in (200, 201):
            raise ReplicationError(
                f"Failed to update remote file: HTTP {response.status_code}",
                {"url": self.contents_url, "status": response.status_code}
            )

        html_url = (response.json().get("content") or {}).get("html_url", self.contents_url)
        self.logger.info(f"Remote file updated: {html_url}")
