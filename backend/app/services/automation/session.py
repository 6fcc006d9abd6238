"""
Automation Session

The minimal browser surface handlers are written against:
navigate, content, screenshot, fill-by-candidates, click-by-candidates.

PlaywrightSession is the production implementation (sync API, one page per
job). Every step is bounded by the configured step timeout.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout
from playwright.sync_api import sync_playwright

from ...config import EngineSettings, get_settings
from ...errors import AutomationError

logger = logging.getLogger(__name__)


class AutomationSession(ABC):
    """One browser page for one job."""

    @abstractmethod
    def navigate(self, url: str) -> None:
        """Load `url` and wait for the network to settle. Raises AutomationError."""

    @abstractmethod
    def content(self) -> str:
        ...

    @abstractmethod
    def screenshot(self) -> bytes:
        ...

    @abstractmethod
    def current_url(self) -> Optional[str]:
        ...

    @abstractmethod
    def fill_first(self, selectors: List[str], value: str) -> Optional[str]:
        """Fill the first visible match. Returns the selector used, or None."""

    @abstractmethod
    def click_first(self, selectors: List[str]) -> Optional[str]:
        """Click the first visible match. Returns the selector used, or None."""

    def wait_idle(self) -> None:
        """Best-effort wait for network idle after a submit."""

    def visible_text(self, selector: str = "body") -> str:
        return ""


class PlaywrightSession(AutomationSession):

    def __init__(self, page, step_timeout_ms: int = 30_000, idle_timeout_ms: int = 10_000):
        self.page = page
        self.step_timeout_ms = step_timeout_ms
        self.idle_timeout_ms = idle_timeout_ms
        self.page.set_default_timeout(step_timeout_ms)

    def navigate(self, url: str) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.step_timeout_ms)
        except PlaywrightTimeout as e:
            raise AutomationError(f"navigation timeout: {url}", code="navigation_timeout") from e
        except PlaywrightError as e:
            raise AutomationError(f"navigation failed: {e}", code="navigation_failed") from e
        self.wait_idle()

    def wait_idle(self) -> None:
        try:
            self.page.wait_for_load_state("networkidle", timeout=self.idle_timeout_ms)
        except PlaywrightTimeout:
            # long-polling pages never go idle; content is usable anyway
            logger.debug("networkidle not reached, continuing")

    def content(self) -> str:
        return self.page.content()

    def screenshot(self) -> bytes:
        try:
            return self.page.screenshot(full_page=True, timeout=self.step_timeout_ms)
        except PlaywrightError as e:
            logger.warning(f"Screenshot failed: {e}")
            return b""

    def current_url(self) -> Optional[str]:
        return self.page.url

    def visible_text(self, selector: str = "body") -> str:
        try:
            return self.page.inner_text(selector, timeout=self.step_timeout_ms)
        except PlaywrightError:
            return ""

    def fill_first(self, selectors: List[str], value: str) -> Optional[str]:
        for selector in selectors:
            locator = self.page.locator(selector).first
            try:
                if locator.count() and locator.is_visible():
                    locator.fill(value, timeout=self.step_timeout_ms)
                    return selector
            except PlaywrightError:
                continue
        return None

    def click_first(self, selectors: List[str]) -> Optional[str]:
        for selector in selectors:
            locator = self.page.locator(selector).first
            try:
                if locator.count() and locator.is_visible():
                    locator.click(timeout=self.step_timeout_ms)
                    return selector
            except PlaywrightError:
                continue
        return None


@contextmanager
def open_session(settings: Optional[EngineSettings] = None, headless: bool = True) -> Iterator[PlaywrightSession]:
    """Chromium page wrapped in a PlaywrightSession; closed on exit."""
    settings = settings or get_settings()
    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=headless)
        try:
            context = browser.new_context()
            page = context.new_page()
            yield PlaywrightSession(
                page,
                step_timeout_ms=settings.webform_step_timeout_ms,
                idle_timeout_ms=settings.webform_idle_timeout_ms,
            )
        finally:
            browser.close()
