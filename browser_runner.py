"""Browser-side sample collection driven by Playwright."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from result_tree import (
    PAGE_METRIC_FIELDS,
    Browser,
    CacheState,
    JsState,
    RawSample,
    ResultTree,
)

# Constants
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000
DEFAULT_CHROME_CHANNEL = "chrome"

# Playwright browser type attribute for each browser
BROWSER_TYPES = {
    Browser.CHROME: "chromium",
    Browser.FIREFOX: "firefox",
}

# Reads navigation and paint timing entries of the current document
TIMING_SCRIPT = """
() => {
    const nav = performance.getEntriesByType('navigation')[0] || {};
    const paint = Object.fromEntries(
        performance.getEntriesByType('paint').map((e) => [e.name, e.startTime])
    );
    return {
        fcp: paint['first-contentful-paint'] ?? null,
        dom_interactive: nav.domInteractive ?? null,
        dom_content_loaded: nav.domContentLoadedEventEnd ?? null,
        load: nav.loadEventEnd ?? null,
    };
}
"""


def sample_from_timings(
    timings: Optional[Dict[str, Any]], browser_start_time: Optional[float] = None
) -> RawSample:
    """Build a :class:`RawSample` from the object returned by ``TIMING_SCRIPT``.

    Missing or non-numeric entries become ``None``.
    """
    timings = timings or {}
    values = {}
    for name in PAGE_METRIC_FIELDS:
        value = timings.get(name)
        if value is not None and (
            isinstance(value, bool) or not isinstance(value, (int, float))
        ):
            logging.warning(f"Ignoring non-numeric {name} timing: {value!r}")
            value = None
        values[name] = value
    return RawSample(browser_start_time=browser_start_time, **values)


class BrowserRunner:
    """Load every configured URL cold then warm, for each browser and JS state.

    Each iteration launches a fresh browser, so the first visit of a URL in an
    iteration is a cold load and the reload right after it is a warm load.
    """

    def __init__(
        self,
        urls: Sequence[str],
        iterations: int,
        headless: bool = False,
        chrome_channel: Optional[str] = DEFAULT_CHROME_CHANNEL,
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    ) -> None:
        self.urls = list(urls)
        self.iterations = iterations
        self.headless = headless
        self.chrome_channel = chrome_channel
        self.navigation_timeout_ms = navigation_timeout_ms

    def collect(self) -> ResultTree:
        """Run the full sweep and return the frozen result tree."""
        with sync_playwright() as playwright:
            return self.collect_with(playwright)

    def collect_with(self, playwright: Any) -> ResultTree:
        """Run the sweep using an already started Playwright instance."""
        tree = ResultTree(self.urls)
        for browser in Browser:
            for js_state in JsState:
                for iteration in range(1, self.iterations + 1):
                    logging.info(
                        f"{browser.value} - {js_state.value} - iteration {iteration}"
                    )
                    self._run_iteration(playwright, browser, js_state, tree)

        tree.freeze()
        tree.check_complete(self.iterations)
        return tree

    def _launch_options(self, browser: Browser) -> Dict[str, Any]:
        options: Dict[str, Any] = {"headless": self.headless}
        if browser is Browser.CHROME and self.chrome_channel:
            options["channel"] = self.chrome_channel
        return options

    @contextmanager
    def _browser_context(self, playwright: Any, browser: Browser):
        """Launch ``browser`` and yield ``(instance, launch_time_ms)``."""
        browser_type = getattr(playwright, BROWSER_TYPES[browser])
        launch_start = time.time()
        try:
            instance = browser_type.launch(**self._launch_options(browser))
        except PlaywrightError as e:
            logging.error(f"Failed to launch {browser.value}: {e}")
            raise RuntimeError(f"Failed to launch {browser.value}") from e
        launch_time = int((time.time() - launch_start) * 1000)
        logging.debug(f"{browser.value} launched in {launch_time} ms")

        try:
            yield instance, launch_time
        finally:
            try:
                instance.close()
            except PlaywrightError as e:
                logging.warning(f"Error closing {browser.value}: {e}")

    def _run_iteration(
        self, playwright: Any, browser: Browser, js_state: JsState, tree: ResultTree
    ) -> None:
        with self._browser_context(playwright, browser) as (instance, launch_time):
            context = instance.new_context(java_script_enabled=js_state.enabled)
            context.set_default_navigation_timeout(self.navigation_timeout_ms)
            page = context.new_page()

            for url in self.urls:
                logging.info(f"  {url} (cold)")
                cold = self._measure(page, url, CacheState.COLD, launch_time)
                tree.record(browser, js_state, url, CacheState.COLD, cold)

                logging.info(f"  {url} (warm)")
                warm = self._measure(page, url, CacheState.WARM)
                tree.record(browser, js_state, url, CacheState.WARM, warm)

    def _measure(
        self,
        page: Any,
        url: str,
        cache_state: CacheState,
        browser_start_time: Optional[float] = None,
    ) -> RawSample:
        """Navigate (cold) or reload (warm) and read the timing entries.

        A failed navigation yields a sample with no page timings; it stays in
        the tree so every scenario keeps one sample per iteration.
        """
        try:
            if cache_state is CacheState.COLD:
                page.goto(url, wait_until="load")
            else:
                page.reload(wait_until="load")
            timings = page.evaluate(TIMING_SCRIPT)
        except PlaywrightError as e:
            logging.warning(f"Failed {cache_state.value} load of {url}: {e}")
            timings = None

        sample = sample_from_timings(timings, browser_start_time)
        if sample.failed:
            logging.warning(f"No page timings recorded for {url} ({cache_state.value})")
        else:
            logging.debug(f"Timings for {url} ({cache_state.value}): {sample}")
        return sample
