"""Aggregation of raw page-load samples into averages, pooled stats and deltas."""

import re
import statistics
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from result_tree import (
    METRIC_FIELDS,
    Browser,
    CacheState,
    JsState,
    RawSample,
    ResultShapeError,
    ResultTree,
)

# Pools reported per browser, with their serialized names
POOL_NAMES = {
    "overall": "overall",
    "js_on": "jsOn",
    "js_off": "jsOff",
    "cold": "cold",
    "warm": "warm",
}


def mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean of ``values``, or ``None`` for an empty sequence.

    ``None`` means "no data". Callers must drop missing values before calling,
    e.g. with :func:`defined_values`.
    """
    if not values:
        return None
    return statistics.mean(values)


def defined_values(values: Iterable[Optional[float]]) -> List[float]:
    """Return ``values`` without the ``None`` entries."""
    return [v for v in values if v is not None]


def difference(a: Optional[float], b: Optional[float]) -> Optional[float]:
    """Return ``b - a``, or ``None`` when either side has no data."""
    if a is None or b is None:
        return None
    return b - a


def percentage_change(old: Optional[float], new: Optional[float]) -> Optional[float]:
    """Change from ``old`` to ``new`` as a percentage of ``old``."""
    diff = difference(old, new)
    if diff is None or old == 0:
        return None
    return (diff / old) * 100.0


# ---------- Scenario averages ------------------------------------------------


class ScenarioKey(NamedTuple):
    browser: Browser
    js_state: JsState
    url: str


@dataclass(frozen=True)
class ScenarioAverage:
    """Per-field means for one (browser, JS state, URL, cache state) leaf."""

    browser_start_time: Optional[float]
    fcp: Optional[float]
    dom_interactive: Optional[float]
    dom_content_loaded: Optional[float]
    load: Optional[float]
    sample_count: int
    failed_trials: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def average_samples(samples: Sequence[RawSample]) -> ScenarioAverage:
    """Average each metric over the samples where that metric is present."""
    averages = {
        name: mean(defined_values(getattr(s, name) for s in samples))
        for name in METRIC_FIELDS
    }
    return ScenarioAverage(
        **averages,
        sample_count=len(samples),
        failed_trials=sum(1 for s in samples if s.failed),
    )


def compute_scenario_averages(
    tree: ResultTree,
) -> Dict[ScenarioKey, Dict[CacheState, ScenarioAverage]]:
    """Average every leaf of ``tree``, keyed by scenario then cache state."""
    averages: Dict[ScenarioKey, Dict[CacheState, ScenarioAverage]] = {}
    for browser, js_state, url, cache_state, samples in tree.iter_leaves():
        key = ScenarioKey(browser, js_state, url)
        averages.setdefault(key, {})[cache_state] = average_samples(samples)
    return averages


def display_url(url: str) -> str:
    """Return ``url`` without its scheme and trailing slash."""
    url = re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", url)
    return url[:-1] if url.endswith("/") else url


def scenario_label(key: ScenarioKey) -> str:
    return f"{key.browser.value} {key.js_state.value} {display_url(key.url)}"


# ---------- Cumulative statistics --------------------------------------------


@dataclass(frozen=True)
class PoolMean:
    fcp: Optional[float]
    load: Optional[float]

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"fcp": self.fcp, "load": self.load}


@dataclass(frozen=True)
class CumulativeStats:
    """Pooled FCP and load means for one browser.

    Each pool flattens the matching samples across every URL before taking the
    mean, so URLs with more defined samples weigh more.
    """

    overall: PoolMean
    js_on: PoolMean
    js_off: PoolMean
    cold: PoolMean
    warm: PoolMean

    def to_dict(self) -> Dict[str, Dict[str, Optional[float]]]:
        return {
            serialized: getattr(self, attr).to_dict()
            for attr, serialized in POOL_NAMES.items()
        }


def _pools_for(js_state: JsState, cache_state: CacheState) -> Sequence[str]:
    js_pool = "js_on" if js_state is JsState.JS_ON else "js_off"
    return ("overall", js_pool, cache_state.value)


def compute_cumulative_stats(tree: ResultTree) -> Dict[Browser, CumulativeStats]:
    """Pool samples per browser into overall, JS and cache-state groups."""
    stats = {}
    for browser in Browser:
        fcps: Dict[str, List[float]] = {pool: [] for pool in POOL_NAMES}
        loads: Dict[str, List[float]] = {pool: [] for pool in POOL_NAMES}

        for js_state in JsState:
            for url in tree.urls:
                for cache_state in CacheState:
                    samples = tree.samples(browser, js_state, url, cache_state)
                    fcp_values = defined_values(s.fcp for s in samples)
                    load_values = defined_values(s.load for s in samples)
                    for pool in _pools_for(js_state, cache_state):
                        fcps[pool].extend(fcp_values)
                        loads[pool].extend(load_values)

        stats[browser] = CumulativeStats(
            **{
                pool: PoolMean(fcp=mean(fcps[pool]), load=mean(loads[pool]))
                for pool in POOL_NAMES
            }
        )
    return stats


# ---------- Deltas -----------------------------------------------------------


@dataclass(frozen=True)
class MetricDelta:
    """Signed ``b - a`` differences; ``None`` means insufficient data."""

    fcp: Optional[float]
    load: Optional[float]

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"fcp": self.fcp, "load": self.load}


@dataclass(frozen=True)
class Deltas:
    """The three reported comparisons.

    ``js_off``: JS off minus JS on, per browser (positive = slower without JS).
    ``warm_cache``: warm minus cold, per browser (negative is expected).
    ``firefox_vs_chrome``: Firefox overall minus Chrome overall.
    """

    js_off: Dict[Browser, MetricDelta]
    warm_cache: Dict[Browser, MetricDelta]
    firefox_vs_chrome: MetricDelta

    def to_dict(self) -> Dict[str, object]:
        return {
            "jsOff": {b.value: d.to_dict() for b, d in self.js_off.items()},
            "warmCache": {b.value: d.to_dict() for b, d in self.warm_cache.items()},
            "firefoxVsChrome": self.firefox_vs_chrome.to_dict(),
        }


def compare_pools(a: PoolMean, b: PoolMean) -> MetricDelta:
    return MetricDelta(fcp=difference(a.fcp, b.fcp), load=difference(a.load, b.load))


def compute_deltas(cumulative_stats: Mapping[Browser, CumulativeStats]) -> Deltas:
    """Compute the JS, cache and browser comparisons from pooled stats."""
    missing = [b.value for b in Browser if b not in cumulative_stats]
    if missing:
        raise ResultShapeError(
            f"Cumulative stats missing browser(s): {', '.join(missing)}"
        )

    return Deltas(
        js_off={
            browser: compare_pools(stats.js_on, stats.js_off)
            for browser, stats in _ordered(cumulative_stats)
        },
        warm_cache={
            browser: compare_pools(stats.cold, stats.warm)
            for browser, stats in _ordered(cumulative_stats)
        },
        firefox_vs_chrome=compare_pools(
            cumulative_stats[Browser.CHROME].overall,
            cumulative_stats[Browser.FIREFOX].overall,
        ),
    )


def _ordered(cumulative_stats: Mapping[Browser, CumulativeStats]):
    return [(browser, cumulative_stats[browser]) for browser in Browser]


def find_cache_anomalies(deltas: Deltas) -> List[str]:
    """Describe every warm-cache delta where the warm load was slower."""
    anomalies = []
    for browser, delta in deltas.warm_cache.items():
        for metric in ("fcp", "load"):
            value = getattr(delta, metric)
            if value is not None and value > 0:
                anomalies.append(
                    f"{browser.value}: warm-cache {metric} is {value:.1f} ms "
                    "slower than cold"
                )
    return anomalies
