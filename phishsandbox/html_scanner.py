# html_scanner.py
"""
HTML scanner: render a page in headless Chromium and return its final markup.

Security interstitials (browser "deceptive site ahead" pages, hosting
provider warnings) are recognised by their wording and clicked through where
possible, so the extracted features describe the destination page rather
than the warning in front of it.

Primary function:
    fetch_rendered_html(url: str, timeout_ms: int) -> FetchResult

Every fetch walks the same states:

    LAUNCHING -> NAVIGATING -> INTERSTITIAL_CHECK -> SETTLED -> CLOSED
                                   |        ^
                                   v        |
                             BYPASS_ATTEMPT -> NAVIGATING

and ends in CLOSED on every path, FAILED included.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Callable, ContextManager, Iterator, Optional, Sequence, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from . import config
from .errors import FetchError, FetchTimeout, NavigationError

logger = logging.getLogger("html_scanner")

# Present as a regular desktop Chrome, not HeadlessChrome
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]
VIEWPORT = {"width": 1280, "height": 720}

INTERSTITIAL_MARKERS = ("warning", "deceptive site", "phishing", "suspicious", "unsafe")

# Bypass strategy 1: clickable elements by visible text
CLICKABLE_SELECTORS = ("button", "a", 'input[type="submit"]', '[role="button"]')
BYPASS_WORDS = ("continue", "visit", "proceed", "details")
# Bypass strategy 2: id / class hints
BYPASS_ATTRIBUTE_SELECTORS = (
    '[id*="continue" i]',
    '[id*="proceed" i]',
    '[id*="visit" i]',
    '[class*="continue" i]',
    '[class*="proceed" i]',
    '[class*="visit" i]',
)
# Bypass strategy 3: last resort
FALLBACK_LINK_SELECTOR = "a[href]"


class FetchState(str, Enum):
    LAUNCHING = "launching"
    NAVIGATING = "navigating"
    INTERSTITIAL_CHECK = "interstitial_check"
    BYPASS_ATTEMPT = "bypass_attempt"
    SETTLED = "settled"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class FetchResult:
    final_markup: str
    final_url: str
    bypassed: bool
    interstitial_detected: bool = False


@contextmanager
def browser_session(headless: Optional[bool] = None) -> Iterator[Any]:
    """Fresh, isolated Chromium page; the browser is closed on every exit path."""
    if headless is None:
        headless = config.BROWSER_HEADLESS
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        try:
            context = browser.new_context(
                user_agent=USER_AGENT,
                ignore_https_errors=True,
                viewport=VIEWPORT,
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            yield context.new_page()
        finally:
            browser.close()


def is_interstitial(markup: str) -> bool:
    lower = (markup or "").lower()
    return any(marker in lower for marker in INTERSTITIAL_MARKERS)


def _element_text(element) -> str:
    text = element.inner_text() or element.get_attribute("value") or ""
    return text.lower()


def find_by_text(page):
    """First visible button / link / submit whose text suggests going on."""
    for selector in CLICKABLE_SELECTORS:
        for element in page.query_selector_all(selector):
            try:
                if not element.is_visible():
                    continue
                text = _element_text(element)
            except PlaywrightError:
                # detached while we were scanning
                continue
            if any(word in text for word in BYPASS_WORDS):
                return element
    return None


def find_by_attribute(page):
    for selector in BYPASS_ATTRIBUTE_SELECTORS:
        element = page.query_selector(selector)
        if element is not None:
            return element
    return None


def find_first_link(page):
    return page.query_selector(FALLBACK_LINK_SELECTOR)


BYPASS_STRATEGIES: Tuple[Tuple[str, Callable[[Any], Any]], ...] = (
    ("button_text", find_by_text),
    ("id_or_class", find_by_attribute),
    ("first_link", find_first_link),
)


def _accept_dialog(dialog) -> None:
    logger.info("Dialog detected (%s): %s", dialog.type, dialog.message)
    try:
        dialog.accept()
    except PlaywrightError as e:
        logger.debug("Dialog accept failed: %s", e)


class _FetchRun:
    """Per-call state holder so one ContentFetcher can serve many threads."""

    def __init__(self, url: str):
        self.url = url
        self.state = FetchState.LAUNCHING

    def enter(self, state: FetchState) -> None:
        logger.debug("%s: %s -> %s", self.url, self.state.value, state.value)
        self.state = state


class ContentFetcher:
    """Drives one browser session per fetch() call.

    `session_factory` returns a context manager yielding a page; tests pass
    a fake one. No retries happen here: a failed fetch raises FetchError
    (FetchTimeout / NavigationError) after the session is closed. Errors that
    are not Playwright's own are wrapped in a plain FetchError.
    """

    def __init__(
        self,
        timeout_ms: int,
        session_factory: Callable[[], ContextManager[Any]] = browser_session,
        post_click_wait_ms: int = config.POST_CLICK_WAIT_MS,
        max_bypass_rounds: int = 1,
        strategies: Sequence[Tuple[str, Callable[[Any], Any]]] = BYPASS_STRATEGIES,
    ):
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self.timeout_ms = int(timeout_ms)
        self.post_click_wait_ms = int(post_click_wait_ms)
        self.max_bypass_rounds = int(max_bypass_rounds)
        self.strategies = tuple(strategies)
        self._session_factory = session_factory

    def fetch(self, url: str) -> FetchResult:
        run = _FetchRun(url)
        try:
            with self._session_factory() as page:
                result = self._drive(page, run)
        except PlaywrightTimeoutError as e:
            failed_in = run.state
            run.enter(FetchState.FAILED)
            logger.warning("Timed out fetching %s while %s: %s", url, failed_in.value, e)
            raise FetchTimeout(url, e, failed_in.value) from e
        except PlaywrightError as e:
            failed_in = run.state
            run.enter(FetchState.FAILED)
            logger.warning("Fetching %s failed while %s: %s", url, failed_in.value, e)
            if failed_in is FetchState.LAUNCHING:
                raise FetchError(url, e, failed_in.value) from e
            raise NavigationError(url, e, failed_in.value) from e
        except Exception as e:
            failed_in = run.state
            run.enter(FetchState.FAILED)
            logger.exception("Unexpected error fetching %s while %s", url, failed_in.value)
            raise FetchError(url, e, failed_in.value) from e
        finally:
            run.enter(FetchState.CLOSED)
        return result

    def _drive(self, page, run: _FetchRun) -> FetchResult:
        page.on("dialog", _accept_dialog)
        page.set_default_timeout(self.timeout_ms)

        run.enter(FetchState.NAVIGATING)
        page.goto(run.url, wait_until="networkidle", timeout=self.timeout_ms)

        interstitial = False
        bypassed = False
        rounds = 0
        while True:
            run.enter(FetchState.INTERSTITIAL_CHECK)
            if not is_interstitial(page.content()):
                break
            interstitial = True
            if rounds >= self.max_bypass_rounds:
                if not bypassed:
                    logger.info("Warning page detected at %s, bypass disabled", run.url)
                break
            logger.info("Warning page detected at %s, attempting to bypass", run.url)
            run.enter(FetchState.BYPASS_ATTEMPT)
            rounds += 1
            if not self._attempt_bypass(page, run):
                logger.info("No bypass target on %s; continuing with current markup", run.url)
                break
            bypassed = True

        run.enter(FetchState.SETTLED)
        return FetchResult(
            final_markup=page.content(),
            final_url=page.url,
            bypassed=bypassed,
            interstitial_detected=interstitial,
        )

    def _attempt_bypass(self, page, run: _FetchRun) -> bool:
        for name, strategy in self.strategies:
            try:
                element = strategy(page)
            except PlaywrightError as e:
                logger.debug("Bypass strategy %s failed on %s: %s", name, run.url, e)
                continue
            if element is None:
                continue
            if self._click_and_wait(page, element, run):
                logger.info("Bypassed warning page at %s via %s", run.url, name)
                return True
        return False

    def _click_and_wait(self, page, element, run: _FetchRun) -> bool:
        wait_ms = min(self.post_click_wait_ms, self.timeout_ms)
        clicked = False
        try:
            with page.expect_navigation(wait_until="networkidle", timeout=wait_ms):
                element.click(timeout=wait_ms)
                clicked = True
                run.enter(FetchState.NAVIGATING)
        except PlaywrightError as e:
            if not clicked:
                logger.debug("Click on bypass target failed at %s: %s", run.url, e)
                return False
            # the click may not navigate at all; that is fine
            logger.debug("No navigation after bypass click at %s: %s", run.url, e)
        return True


def fetch_rendered_html(url: str, timeout_ms: int,
                        session_factory: Callable[[], ContextManager[Any]] = browser_session) -> FetchResult:
    return ContentFetcher(timeout_ms, session_factory=session_factory).fetch(url)
