"""
Default listing parser and catalog link discovery.

Listing pages embed their data in a JSON state blob assigned inside a
``<script>`` tag; the fields are pulled out of that blob with regular
expressions, and the category attribute is read from the rendered details
section.
"""

import re
from typing import List, Optional
from urllib.parse import urljoin, urldefrag

from bs4 import BeautifulSoup

from config import ParserConfig
from classifieds_crawler.crawlers.base import ListingParser
from classifieds_crawler.data.models import ExtractedRecord, MISSING
from classifieds_crawler.utils.logging import get_business_logger


logger = get_business_logger('parser')


TITLE_PATTERN = re.compile(r'"title":"(.*?)"')
NAME_PATTERN = re.compile(r'"contactInfo":.*?"name":"(.*?)"')
PRICE_PATTERN = re.compile(r'"formattedValue":"(\d{1,3}(?:,\d{3})+|\d+)"')
LOCATION_PATTERN = re.compile(r'"location\.lvl2":.*?"name":"(.*?)"')


def extract_child_addresses(html: str, base_url: str, selector: str) -> List[str]:
    """
    Collect absolute listing addresses matched by ``selector``.

    Duplicates are dropped, document order is kept. A page where the
    selector matches nothing yields an empty list.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    addresses = []
    seen = set()
    for anchor in soup.select(selector):
        href = anchor.get("href")
        if not href:
            continue
        address, _ = urldefrag(urljoin(base_url, href.strip()))
        if address not in seen:
            seen.add(address)
            addresses.append(address)
    return addresses


class ClassifiedListingParser(ListingParser):
    """Parser for listing pages carrying a preloaded state script."""

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.phone_pattern = re.compile(r'"phoneNumber":"(' + self.config.phone_pattern + r')"')

    def parse(self, html: str, address: str) -> Optional[ExtractedRecord]:
        soup = BeautifulSoup(html or "", "html.parser")

        script = self._find_state_script(soup)
        if not script:
            logger.warning(f"State script not found for {address}")
            return None

        record = ExtractedRecord(
            title=self._search(TITLE_PATTERN, script),
            attribute=self._find_attribute(soup),
            price=self._search(PRICE_PATTERN, script).replace(",", ""),
            location=self._search(LOCATION_PATTERN, script),
            contact_name=self._search(NAME_PATTERN, script),
            phone=self._search(self.phone_pattern, script),
            url=address,
        )

        missing = record.missing_fields(self.config.mandatory_fields)
        if missing:
            logger.info(f"Discarding {address}: missing {', '.join(missing)}")
            return None

        return record

    def _find_state_script(self, soup: BeautifulSoup) -> Optional[str]:
        # Usual position first, then any script carrying the marker, then the last one
        wrapper = soup.select_one("#body-wrapper + script")
        if wrapper and wrapper.string:
            return wrapper.string

        scripts = soup.find_all("script")
        for tag in scripts:
            if tag.string and self.config.state_marker in tag.string:
                return tag.string

        if scripts and scripts[-1].string:
            return scripts[-1].string
        return None

    def _find_attribute(self, soup: BeautifulSoup) -> str:
        details = soup.select('[aria-label="Details"] div')
        for block in details:
            spans = block.find_all("span")
            if len(spans) >= 2 and spans[0].get_text(strip=True) == self.config.attribute_label:
                return spans[1].get_text(strip=True) or MISSING
        return MISSING

    @staticmethod
    def _search(pattern, text: str) -> str:
        match = pattern.search(text)
        return match.group(1) if match else MISSING
