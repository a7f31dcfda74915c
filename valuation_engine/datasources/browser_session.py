"""Long-lived headless Chromium shared by browser-backed sources.

The browser process is started lazily and reused across calls; every call
gets its own context and page, which are always closed on the way out.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from ..common.stealth import StealthPolicy

logger = logging.getLogger(__name__)


class BrowserSession:
    """Owns one Playwright instance and one Chromium browser.

    Playwright's sync API is bound to the thread that started it, so calls
    through ``new_page()`` are serialised with a lock.

    Usage:
        with BrowserSession(policy) as session:
            with session.new_page() as page:
                page.goto("https://example.com")
    """

    def __init__(
        self,
        policy: StealthPolicy | None = None,
        headless: bool = True,
    ) -> None:
        self.policy = policy or StealthPolicy()
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._lock = threading.RLock()

    # --- Lifecycle ---

    def start(self) -> None:
        """Launch Chromium with hardened flags (no-op if already running)."""
        with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return

            from playwright.sync_api import sync_playwright

            if self._playwright is None:
                self._playwright = sync_playwright().start()

            logger.info("Launching headless browser (headless=%s)", self.headless)
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=self.policy.launch_args,
            )

    def close(self) -> None:
        """Close the browser and stop Playwright."""
        with self._lock:
            if self._browser is not None:
                try:
                    self._browser.close()
                except Exception:
                    logger.debug("Browser close failed", exc_info=True)
                self._browser = None
            if self._playwright is not None:
                try:
                    self._playwright.stop()
                except Exception:
                    logger.debug("Playwright stop failed", exc_info=True)
                self._playwright = None
            logger.info("Browser closed")

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @contextmanager
    def new_page(self) -> Iterator:
        """Yield a fresh page in a fresh stealth context.

        Context and page are torn down on success, error or cancellation.
        """
        with self._lock:
            self.start()
            context = None
            page = None
            try:
                context = self._browser.new_context(**self.policy.context_options())
                page = context.new_page()
                page.add_init_script(self.policy.init_script)
                for pattern in self.policy.blocked_url_patterns:
                    page.route(pattern, lambda route: route.abort())
                yield page
            finally:
                if page is not None:
                    try:
                        page.close()
                    except Exception:
                        logger.debug("Page close failed", exc_info=True)
                if context is not None:
                    try:
                        context.close()
                    except Exception:
                        logger.debug("Context close failed", exc_info=True)

    def __enter__(self) -> BrowserSession:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
