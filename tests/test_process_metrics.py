import random

import pytest

from conftest import URL_A, URL_B, build_tree
from process_metrics import (
    CumulativeStats,
    PoolMean,
    ScenarioKey,
    compare_pools,
    compute_cumulative_stats,
    compute_deltas,
    compute_scenario_averages,
    defined_values,
    difference,
    display_url,
    find_cache_anomalies,
    mean,
    percentage_change,
    scenario_label,
)
from result_tree import (
    Browser,
    CacheState,
    JsState,
    RawSample,
    ResultShapeError,
    ResultTree,
)


# ---------- mean -------------------------------------------------------------


def test_mean_of_empty_sequence_is_undefined():
    assert mean([]) is None


@pytest.mark.parametrize("value", [0, 1, 12.5, -3, 1e9])
def test_mean_of_single_value_is_that_value(value):
    assert mean([value]) == value


@pytest.mark.parametrize(
    "values",
    [[1, 2, 3], [0.1, 0.2, 0.7], [5, 5, 5, 5], [1e-3, 1e6, 42.0], [-10, 10]],
)
def test_mean_lies_between_min_and_max(values):
    assert min(values) <= mean(values) <= max(values)


def test_defined_values_drops_only_none():
    assert defined_values([0, None, 3, None]) == [0, 3]


# ---------- scenario averages ------------------------------------------------


def _single_scenario_tree(cold, warm):
    def fill(browser, js_state, url, cache_state):
        if (browser, js_state) != (Browser.CHROME, JsState.JS_ON):
            return []
        return cold if cache_state is CacheState.COLD else warm

    return build_tree([URL_A], fill)


def test_scenario_average_excludes_null_samples():
    tree = _single_scenario_tree(
        cold=[RawSample(fcp=v, browser_start_time=10) for v in (100, 200, None, 300)],
        warm=[RawSample(fcp=50), RawSample(fcp=60)],
    )
    averages = compute_scenario_averages(tree)
    scenario = averages[ScenarioKey(Browser.CHROME, JsState.JS_ON, URL_A)]

    assert scenario[CacheState.COLD].fcp == 200
    assert scenario[CacheState.COLD].sample_count == 4
    assert scenario[CacheState.COLD].failed_trials == 1
    assert scenario[CacheState.COLD].browser_start_time == 10
    assert scenario[CacheState.WARM].fcp == 55
    assert scenario[CacheState.WARM].browser_start_time is None


def test_scenario_average_with_no_samples_is_undefined():
    tree = _single_scenario_tree(cold=[], warm=[])
    averages = compute_scenario_averages(tree)
    empty = averages[ScenarioKey(Browser.FIREFOX, JsState.JS_OFF, URL_A)]
    assert empty[CacheState.COLD].fcp is None
    assert empty[CacheState.COLD].load is None
    assert empty[CacheState.COLD].sample_count == 0


def test_scenario_average_is_independent_of_trial_order():
    samples = [
        RawSample(fcp=f, load=l, dom_interactive=d)
        for f, l, d in [(1, 10, None), (2, None, 7), (None, 30, 8), (4, 40, 9)]
    ]
    shuffled = list(samples)
    random.Random(3).shuffle(shuffled)

    original = compute_scenario_averages(_single_scenario_tree(samples, samples))
    permuted = compute_scenario_averages(_single_scenario_tree(shuffled, shuffled))
    assert original == permuted


def test_scenario_averages_cover_every_scenario_in_order(uniform_tree):
    averages = compute_scenario_averages(uniform_tree)
    keys = list(averages)
    assert len(keys) == len(Browser) * len(JsState) * 2
    assert keys[0] == ScenarioKey(Browser.CHROME, JsState.JS_ON, URL_A)
    assert keys[-1] == ScenarioKey(Browser.FIREFOX, JsState.JS_OFF, URL_B)
    assert averages[keys[0]][CacheState.COLD].load == 1500


def test_display_url_strips_scheme_and_trailing_slash():
    assert display_url("https://github.com/") == "github.com"
    assert display_url("http://example.com/docs/") == "example.com/docs"
    assert display_url("example.com") == "example.com"


def test_scenario_label():
    key = ScenarioKey(Browser.FIREFOX, JsState.JS_OFF, "https://developer.mozilla.org/")
    assert scenario_label(key) == "Firefox JS_off developer.mozilla.org"


# ---------- cumulative stats -------------------------------------------------


def test_cumulative_cold_pools_samples_across_urls():
    def fill(browser, js_state, url, cache_state):
        if browser is not Browser.CHROME or cache_state is not CacheState.COLD:
            return []
        if js_state is JsState.JS_OFF:
            return []
        values = (100, 200, 300) if url == URL_A else (400, 500)
        return [RawSample(fcp=v, browser_start_time=1) for v in values]

    stats = compute_cumulative_stats(build_tree([URL_A, URL_B], fill))
    # mean of the pool, not (200 + 450) / 2
    assert stats[Browser.CHROME].cold.fcp == 300
    assert stats[Browser.CHROME].warm.fcp is None
    assert stats[Browser.CHROME].js_off.fcp is None


def test_cumulative_overall_is_mean_of_union_of_cache_pools():
    cold = [RawSample(fcp=v, load=v * 10) for v in (100, 200, 300)]
    warm = [RawSample(fcp=600, load=None)]

    def fill(browser, js_state, url, cache_state):
        return cold if cache_state is CacheState.COLD else warm

    stats = compute_cumulative_stats(build_tree([URL_A], fill))[Browser.FIREFOX]

    assert stats.overall.fcp == mean([100, 200, 300, 600] * 2)
    assert stats.overall.fcp != mean([stats.cold.fcp, stats.warm.fcp])
    assert stats.overall.load == 2000
    assert stats.warm.load is None


def test_cumulative_js_pools_split_by_js_state():
    def fill(browser, js_state, url, cache_state):
        fcp = 100 if js_state is JsState.JS_ON else 300
        return [RawSample(fcp=fcp, load=fcp * 2)]

    stats = compute_cumulative_stats(build_tree([URL_A, URL_B], fill))
    for browser in Browser:
        assert stats[browser].js_on == PoolMean(fcp=100, load=200)
        assert stats[browser].js_off == PoolMean(fcp=300, load=600)
        assert stats[browser].overall == PoolMean(fcp=200, load=400)


def test_cumulative_stats_with_no_urls_are_undefined():
    tree = ResultTree([])
    tree.freeze()
    stats = compute_cumulative_stats(tree)
    for browser in Browser:
        assert stats[browser].overall == PoolMean(fcp=None, load=None)


def test_cumulative_stats_serialized_pool_names(uniform_tree):
    data = compute_cumulative_stats(uniform_tree)[Browser.CHROME].to_dict()
    assert list(data) == ["overall", "jsOn", "jsOff", "cold", "warm"]
    assert data["jsOn"] == {"fcp": 150, "load": 1500}


# ---------- deltas -----------------------------------------------------------


def _stats(overall=None, js_on=None, js_off=None, cold=None, warm=None):
    undefined = PoolMean(fcp=None, load=None)
    return CumulativeStats(
        overall=overall or undefined,
        js_on=js_on or undefined,
        js_off=js_off or undefined,
        cold=cold or undefined,
        warm=warm or undefined,
    )


def test_difference_propagates_undefined():
    assert difference(1000, None) is None
    assert difference(None, 5) is None
    assert difference(100, 250) == 150


def test_firefox_vs_chrome_delta_is_firefox_minus_chrome():
    deltas = compute_deltas(
        {
            Browser.CHROME: _stats(overall=PoolMean(fcp=500, load=2000)),
            Browser.FIREFOX: _stats(overall=PoolMean(fcp=600, load=1500)),
        }
    )
    assert deltas.firefox_vs_chrome.fcp == 100
    assert deltas.firefox_vs_chrome.load == -500


def test_compare_pools_is_antisymmetric():
    a = PoolMean(fcp=512.5, load=1800)
    b = PoolMean(fcp=430, load=2100.25)
    forward = compare_pools(a, b)
    backward = compare_pools(b, a)
    assert forward.fcp == -backward.fcp
    assert forward.load == -backward.load


def test_js_off_and_warm_cache_deltas():
    chrome = _stats(
        js_on=PoolMean(fcp=400, load=1000),
        js_off=PoolMean(fcp=300, load=1200),
        cold=PoolMean(fcp=1000, load=3000),
        warm=PoolMean(fcp=None, load=2500),
    )
    deltas = compute_deltas({Browser.CHROME: chrome, Browser.FIREFOX: _stats()})

    assert deltas.js_off[Browser.CHROME].fcp == -100
    assert deltas.js_off[Browser.CHROME].load == 200
    # no warm FCP samples: insufficient data, not -1000 or 0
    assert deltas.warm_cache[Browser.CHROME].fcp is None
    assert deltas.warm_cache[Browser.CHROME].load == -500
    assert deltas.js_off[Browser.FIREFOX].fcp is None
    assert deltas.firefox_vs_chrome.fcp is None


def test_compute_deltas_requires_both_browsers():
    with pytest.raises(ResultShapeError, match="Firefox"):
        compute_deltas({Browser.CHROME: _stats()})


def test_deltas_serialization(uniform_tree):
    data = compute_deltas(compute_cumulative_stats(uniform_tree)).to_dict()
    assert set(data) == {"jsOff", "warmCache", "firefoxVsChrome"}
    assert data["jsOff"]["Chrome"] == {"fcp": 0, "load": 0}
    assert data["firefoxVsChrome"] == {"fcp": 0, "load": 0}


def test_find_cache_anomalies_flags_slower_warm_loads():
    deltas = compute_deltas(
        {
            Browser.CHROME: _stats(
                cold=PoolMean(fcp=500, load=900), warm=PoolMean(fcp=700, load=800)
            ),
            Browser.FIREFOX: _stats(
                cold=PoolMean(fcp=500, load=None), warm=PoolMean(fcp=400, load=100)
            ),
        }
    )
    anomalies = find_cache_anomalies(deltas)
    assert anomalies == ["Chrome: warm-cache fcp is 200.0 ms slower than cold"]


def test_find_cache_anomalies_keeps_sub_millisecond_deltas():
    deltas = compute_deltas(
        {
            Browser.CHROME: _stats(
                cold=PoolMean(fcp=500, load=900), warm=PoolMean(fcp=500.3, load=900)
            ),
            Browser.FIREFOX: _stats(
                cold=PoolMean(fcp=500, load=900), warm=PoolMean(fcp=400, load=800)
            ),
        }
    )
    assert find_cache_anomalies(deltas) == [
        "Chrome: warm-cache fcp is 0.3 ms slower than cold"
    ]


def test_percentage_change():
    assert percentage_change(200, 150) == -25.0
    assert percentage_change(0, 150) is None
    assert percentage_change(None, 150) is None
