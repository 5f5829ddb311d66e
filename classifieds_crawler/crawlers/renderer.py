#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Playwright-based page renderer.

One renderer owns one browser instance. It is created inside an isolated
worker process and closed when the worker's unit of work ends, whatever the
outcome.
"""

from typing import Optional, List

from playwright.sync_api import sync_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
from playwright_stealth import stealth_sync

from config import RendererConfig
from classifieds_crawler.crawlers.base import PageRenderer, RenderedPage
from classifieds_crawler.utils.errors import RenderError
from classifieds_crawler.utils.logging import get_business_logger


logger = get_business_logger('renderer')

BLOCKING_STATUS_CODES = (403, 429, 503)


class PlaywrightRenderer(PageRenderer):
    """Renders pages with a headless Playwright browser."""

    def __init__(self, config: Optional[RendererConfig] = None):
        self.config = config or RendererConfig()
        self.playwright = None
        self.browser = None
        self.context = None

    def _init_browser(self) -> None:
        """Start Playwright and open a browser context."""
        try:
            if not self.playwright:
                self.playwright = sync_playwright().start()

            if not self.browser:
                browser_args = [
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-blink-features=AutomationControlled',
                    '--disable-dev-shm-usage',
                ]

                if self.config.browser_type == 'chromium':
                    self.browser = self.playwright.chromium.launch(
                        headless=self.config.headless,
                        args=browser_args
                    )
                elif self.config.browser_type == 'firefox':
                    self.browser = self.playwright.firefox.launch(headless=self.config.headless)
                else:
                    self.browser = self.playwright.webkit.launch(headless=self.config.headless)

            if not self.context:
                self.context = self.browser.new_context(
                    user_agent=self.config.user_agent,
                    viewport={
                        'width': self.config.viewport_width,
                        'height': self.config.viewport_height
                    },
                )
                self.context.set_default_timeout(self.config.navigation_timeout_ms)

            logger.debug("Playwright browser initialized")

        except PlaywrightError as e:
            raise RenderError(
                "Failed to initialize Playwright browser",
                {"error": str(e), "browser_type": self.config.browser_type}
            )

    def render(self, address: str, ready_selector: Optional[str] = None,
               require_ready: bool = False) -> RenderedPage:
        self._init_browser()
        page = self.context.new_page()

        try:
            if self.config.stealth:
                stealth_sync(page)

            try:
                response = page.goto(
                    address,
                    wait_until=self.config.wait_until,
                    timeout=self.config.navigation_timeout_ms
                )
            except PlaywrightError as e:
                raise RenderError(f"Navigation failed for {address}", {"error": str(e)})

            status = response.status if response else None
            if status in BLOCKING_STATUS_CODES:
                raise RenderError(f"Blocked response for {address}", {"status": status})

            if ready_selector:
                try:
                    page.wait_for_selector(ready_selector, timeout=self.config.selector_timeout_ms)
                except PlaywrightTimeoutError as e:
                    if require_ready:
                        raise RenderError(
                            f"Timed out waiting for {ready_selector} on {address}",
                            {"error": str(e)}
                        )
                    logger.info(f"No element matched {ready_selector} on {address}")

            html = page.content()
            marker = self._find_block_marker(html, self.config.block_markers)
            if marker:
                raise RenderError(f"Blocked page for {address}", {"marker": marker})

            return RenderedPage(address=address, final_url=page.url, html=html, status=status)

        finally:
            try:
                page.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing page for {address}: {e}")

    @staticmethod
    def _find_block_marker(html: str, markers: List[str]) -> Optional[str]:
        text = html.lower()
        for marker in markers:
            if marker.lower() in text:
                return marker
        return None

    def close(self) -> None:
        """Close context, browser and the Playwright driver."""
        try:
            if self.context:
                self.context.close()
            if self.browser:
                self.browser.close()
        except PlaywrightError as e:
            logger.warning(f"Error while closing browser: {e}")
        finally:
            if self.playwright:
                self.playwright.stop()
        self.context = None
        self.browser = None
        self.playwright = None
