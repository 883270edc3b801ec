import pytest

from result_tree import Browser, CacheState, JsState, RawSample, ResultTree

URL_A = "https://example.com/"
URL_B = "https://example.org/"


def build_tree(urls, fill):
    """Build a frozen tree; ``fill(browser, js_state, url, cache_state)`` returns samples."""
    tree = ResultTree(urls)
    for browser in Browser:
        for js_state in JsState:
            for url in urls:
                for cache_state in CacheState:
                    for sample in fill(browser, js_state, url, cache_state):
                        tree.record(browser, js_state, url, cache_state, sample)
    tree.freeze()
    return tree


@pytest.fixture
def uniform_tree():
    """Every leaf holds two samples with fcp 100/200 and load 1000/2000."""

    def fill(browser, js_state, url, cache_state):
        start = 500 if cache_state is CacheState.COLD else None
        return [
            RawSample(
                fcp=100, dom_interactive=300, dom_content_loaded=400, load=1000,
                browser_start_time=start,
            ),
            RawSample(
                fcp=200, dom_interactive=500, dom_content_loaded=600, load=2000,
                browser_start_time=start,
            ),
        ]

    return build_tree([URL_A, URL_B], fill)
