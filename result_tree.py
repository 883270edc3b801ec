"""Typed result tree for page-load benchmark runs."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

# Field order used for serialization and reporting
METRIC_FIELDS = (
    "browser_start_time",
    "fcp",
    "dom_interactive",
    "dom_content_loaded",
    "load",
)
PAGE_METRIC_FIELDS = METRIC_FIELDS[1:]


class ResultShapeError(ValueError):
    """Raised when a result tree is missing keys or holds malformed values."""


class Browser(Enum):
    CHROME = "Chrome"
    FIREFOX = "Firefox"


class JsState(Enum):
    JS_ON = "JS_on"
    JS_OFF = "JS_off"

    @property
    def enabled(self) -> bool:
        return self is JsState.JS_ON


class CacheState(Enum):
    COLD = "cold"
    WARM = "warm"


def _parse_number(value: Any, path: str) -> Optional[float]:
    """Return ``value`` as a number, keeping ``None`` as "no data"."""
    if value is None:
        return None
    # bool is an int subclass but never a valid timing
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ResultShapeError(f"{path}: expected a number or null, got {value!r}")
    return value


@dataclass(frozen=True)
class RawSample:
    """Timings for one trial of one scenario, in milliseconds.

    ``browser_start_time`` is only recorded for cold loads. Any other field is
    ``None`` when the browser did not expose the matching timing entry.
    """

    fcp: Optional[float] = None
    dom_interactive: Optional[float] = None
    dom_content_loaded: Optional[float] = None
    load: Optional[float] = None
    browser_start_time: Optional[float] = None

    @property
    def failed(self) -> bool:
        """True when the trial produced no page timing at all."""
        return all(getattr(self, name) is None for name in PAGE_METRIC_FIELDS)

    def to_dict(self) -> Dict[str, Optional[float]]:
        data = {}
        if self.browser_start_time is not None:
            data["browser_start_time"] = self.browser_start_time
        for name in PAGE_METRIC_FIELDS:
            data[name] = getattr(self, name)
        return data

    @classmethod
    def from_dict(cls, data: Any, path: str = "sample") -> "RawSample":
        if not isinstance(data, Mapping):
            raise ResultShapeError(f"{path}: expected an object, got {data!r}")
        unknown = set(data) - set(METRIC_FIELDS)
        if unknown:
            raise ResultShapeError(
                f"{path}: unknown metric field(s): {', '.join(sorted(unknown))}"
            )
        return cls(
            **{
                name: _parse_number(data.get(name), f"{path}.{name}")
                for name in METRIC_FIELDS
            }
        )


# (browser, js_state, url, cache_state, samples)
Leaf = Tuple[Browser, JsState, str, CacheState, Tuple[RawSample, ...]]


class ResultTree:
    """Raw samples nested by browser, JS state, URL and cache state.

    Every level is seeded at construction, so each leaf exists from the start
    and collection only appends samples. Call :meth:`freeze` once collection
    has finished; a frozen tree rejects further samples.
    """

    def __init__(self, urls: Sequence[str]) -> None:
        urls = tuple(urls)
        if len(set(urls)) != len(urls):
            raise ResultShapeError(f"Duplicate URLs in result tree: {list(urls)}")
        self._urls = urls
        self._frozen = False
        self._leaves: Dict[
            Browser, Dict[JsState, Dict[str, Dict[CacheState, List[RawSample]]]]
        ] = {
            browser: {
                js_state: {
                    url: {cache_state: [] for cache_state in CacheState}
                    for url in urls
                }
                for js_state in JsState
            }
            for browser in Browser
        }

    @property
    def urls(self) -> Tuple[str, ...]:
        return self._urls

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def iterations(self) -> int:
        """Longest leaf length, i.e. the number of trials collected so far."""
        return max((len(leaf[4]) for leaf in self.iter_leaves()), default=0)

    def freeze(self) -> None:
        self._frozen = True

    def _leaf(
        self, browser: Browser, js_state: JsState, url: str, cache_state: CacheState
    ) -> List[RawSample]:
        try:
            return self._leaves[browser][js_state][url][cache_state]
        except KeyError:
            raise ResultShapeError(
                f"No result leaf for {getattr(browser, 'value', browser)} / "
                f"{getattr(js_state, 'value', js_state)} / {url} / "
                f"{getattr(cache_state, 'value', cache_state)}"
            ) from None

    def record(
        self,
        browser: Browser,
        js_state: JsState,
        url: str,
        cache_state: CacheState,
        sample: RawSample,
    ) -> None:
        """Append ``sample`` to its leaf in trial order."""
        if self._frozen:
            raise RuntimeError("Cannot record samples into a frozen result tree")
        self._leaf(browser, js_state, url, cache_state).append(sample)

    def samples(
        self, browser: Browser, js_state: JsState, url: str, cache_state: CacheState
    ) -> Tuple[RawSample, ...]:
        return tuple(self._leaf(browser, js_state, url, cache_state))

    def iter_leaves(self) -> Iterator[Leaf]:
        for browser in Browser:
            for js_state in JsState:
                for url in self._urls:
                    for cache_state in CacheState:
                        yield (
                            browser,
                            js_state,
                            url,
                            cache_state,
                            self.samples(browser, js_state, url, cache_state),
                        )

    def check_complete(self, iterations: int) -> None:
        """Ensure every leaf holds exactly ``iterations`` samples."""
        for browser, js_state, url, cache_state, samples in self.iter_leaves():
            if len(samples) != iterations:
                raise ResultShapeError(
                    f"{browser.value} / {js_state.value} / {url} / "
                    f"{cache_state.value} has {len(samples)} samples, "
                    f"expected {iterations}"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            browser.value: {
                js_state.value: {
                    url: {
                        cache_state.value: [
                            sample.to_dict()
                            for sample in self.samples(
                                browser, js_state, url, cache_state
                            )
                        ]
                        for cache_state in CacheState
                    }
                    for url in self._urls
                }
                for js_state in JsState
            }
            for browser in Browser
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ResultTree":
        """Build a frozen tree from its JSON form, failing on any missing key."""
        if not isinstance(data, Mapping):
            raise ResultShapeError("Result tree must be an object keyed by browser")
        _check_keys(data, [b.value for b in Browser], "results")

        # The first JS bucket of the first browser defines the URL set
        first = data[Browser.CHROME.value]
        first_path = f"results.{Browser.CHROME.value}"
        if not isinstance(first, Mapping):
            raise ResultShapeError(f"{first_path} must be an object keyed by JS state")
        _check_keys(first, [j.value for j in JsState], first_path)
        sites = first[JsState.JS_ON.value]
        if not isinstance(sites, Mapping):
            raise ResultShapeError(
                f"{first_path}.{JsState.JS_ON.value} must be an object keyed by URL"
            )
        tree = cls(list(sites))

        for browser in Browser:
            js_buckets = data[browser.value]
            path = f"results.{browser.value}"
            if not isinstance(js_buckets, Mapping):
                raise ResultShapeError(f"{path} must be an object keyed by JS state")
            _check_keys(js_buckets, [j.value for j in JsState], path)

            for js_state in JsState:
                sites = js_buckets[js_state.value]
                js_path = f"{path}.{js_state.value}"
                if not isinstance(sites, Mapping):
                    raise ResultShapeError(f"{js_path} must be an object keyed by URL")
                _check_keys(sites, tree.urls, js_path)

                for url in tree.urls:
                    cache_buckets = sites[url]
                    url_path = f"{js_path}[{url}]"
                    if not isinstance(cache_buckets, Mapping):
                        raise ResultShapeError(
                            f"{url_path} must be an object keyed by cache state"
                        )
                    _check_keys(cache_buckets, [c.value for c in CacheState], url_path)

                    for cache_state in CacheState:
                        raw_samples = cache_buckets[cache_state.value]
                        leaf_path = f"{url_path}.{cache_state.value}"
                        if not isinstance(raw_samples, list):
                            raise ResultShapeError(f"{leaf_path} must be a list")
                        for i, raw in enumerate(raw_samples):
                            sample = RawSample.from_dict(raw, f"{leaf_path}[{i}]")
                            if (
                                cache_state is CacheState.WARM
                                and sample.browser_start_time is not None
                            ):
                                raise ResultShapeError(
                                    f"{leaf_path}[{i}]: browser_start_time is only "
                                    "recorded for cold loads"
                                )
                            tree.record(browser, js_state, url, cache_state, sample)

        # Every leaf must hold one sample per trial
        tree.check_complete(tree.iterations)
        tree.freeze()
        return tree


def _check_keys(data: Mapping, expected: Sequence[str], path: str) -> None:
    missing = [key for key in expected if key not in data]
    if missing:
        raise ResultShapeError(f"{path} is missing key(s): {', '.join(missing)}")
    unknown = [key for key in data if key not in expected]
    if unknown:
        raise ResultShapeError(f"{path} has unexpected key(s): {', '.join(unknown)}")


def write_results(path: Path, tree: ResultTree) -> None:
    """Write ``tree`` to ``path`` as JSON, replacing the file atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_file = path.with_suffix(".tmp")
    try:
        with temp_file.open("w", encoding="utf-8") as f:
            json.dump(tree.to_dict(), f, indent=2, ensure_ascii=False)
        temp_file.replace(path)
        logging.info(f"Raw data written to {path}")
    except Exception as e:
        logging.error(f"Error writing results to {path}: {e}")
        if temp_file.exists():
            temp_file.unlink()
        raise


def load_results(path: Path) -> ResultTree:
    """Load a results file written by :func:`write_results`."""
    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)
    tree = ResultTree.from_dict(data)
    logging.info(
        f"Loaded {len(tree.urls)} URL(s) x {tree.iterations} iteration(s) from {path}"
    )
    return tree
