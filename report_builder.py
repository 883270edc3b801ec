"""HTML dashboard and Markdown summary for page-load benchmark results."""

import base64
import html
import io
import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np

from process_metrics import (
    CumulativeStats,
    Deltas,
    MetricDelta,
    ScenarioAverage,
    ScenarioKey,
    find_cache_anomalies,
    percentage_change,
    scenario_label,
)
from result_tree import METRIC_FIELDS, Browser, CacheState, ResultTree

INSUFFICIENT_DATA = "insufficient data"

METRIC_COLORS = {
    "browser_start_time": "#e74c3c",
    "fcp": "#3498db",
    "dom_interactive": "#f39c12",
    "dom_content_loaded": "#2ecc71",
    "load": "#9b59b6",
}

STYLE = """
body{font-family:system-ui,Arial,sans-serif;margin:2rem;background:#f5f7fa;color:#111}
img{max-width:100%;margin-bottom:30px}
.chart-section{margin-bottom:60px}
.stats-table{width:100%;border-collapse:collapse;margin:20px 0}
.stats-table th, .stats-table td{padding:10px;text-align:left;border:1px solid #ddd}
.stats-table th{background:#f0f0f0;font-weight:600}
.positive{color:#28a745}
.negative{color:#dc3545}
.missing{color:#7f8c8d;font-style:italic}
h1{color:#2c3e50;margin-bottom:30px}
h2{color:#34495e;margin-top:40px;margin-bottom:20px}
"""


def format_ms(value: Optional[float]) -> str:
    """Format a millisecond value; undefined values are never shown as 0."""
    return INSUFFICIENT_DATA if value is None else f"{value:.0f}"


def _figure_to_data_uri(fig) -> str:
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=100, bbox_inches="tight")
    plt.close(fig)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class ReportBuilder:
    """Render aggregated benchmark data.

    Inputs are only read. Undefined (``None``) values are left out of the
    charts and shown as "insufficient data" in tables.
    """

    def __init__(
        self,
        tree: ResultTree,
        scenario_averages: Mapping[ScenarioKey, Mapping[CacheState, ScenarioAverage]],
        cumulative_stats: Mapping[Browser, CumulativeStats],
        deltas: Deltas,
    ) -> None:
        self.tree = tree
        self.scenario_averages = scenario_averages
        self.cumulative_stats = cumulative_stats
        self.deltas = deltas

    # ---------- Data contract ----------------------------------------------

    def report_data(self) -> Dict[str, object]:
        """JSON-ready copy of everything the report shows."""
        return {
            "iterations": self.tree.iterations,
            "scenarioAverages": {
                cache_state.value: [
                    {
                        "label": scenario_label(key),
                        "browser": key.browser.value,
                        "jsState": key.js_state.value,
                        "url": key.url,
                        **by_cache[cache_state].to_dict(),
                    }
                    for key, by_cache in self.scenario_averages.items()
                ]
                for cache_state in CacheState
            },
            "cumulativeStats": {
                browser.value: stats.to_dict()
                for browser, stats in self.cumulative_stats.items()
            },
            "deltas": self.deltas.to_dict(),
        }

    # ---------- Charts ------------------------------------------------------

    def _all_metrics_chart(self, cache_state: CacheState) -> str:
        keys = list(self.scenario_averages)
        labels = [scenario_label(key) for key in keys]
        y = np.arange(len(keys))
        height = 0.8 / len(METRIC_FIELDS)

        fig, ax = plt.subplots(figsize=(12, max(4, 0.6 * len(keys) + 2)))
        for idx, metric in enumerate(METRIC_FIELDS):
            positions, values = [], []
            for pos, key in zip(y, keys):
                value = getattr(self.scenario_averages[key][cache_state], metric)
                if value is not None:
                    positions.append(pos + (idx - 2) * height)
                    values.append(value)
            ax.barh(
                positions,
                values,
                height,
                label=metric.replace("_", " ").upper(),
                color=METRIC_COLORS[metric],
            )

        ax.set_yticks(y)
        ax.set_yticklabels(labels)
        ax.invert_yaxis()
        ax.set_xlabel("Time (ms)")
        ax.set_title(f"{cache_state.value.capitalize()} Cache - All Metrics")
        ax.legend()
        ax.grid(True, axis="x", alpha=0.3)
        return _figure_to_data_uri(fig)

    def _pool_chart(self, title: str, bars: Sequence[tuple]) -> str:
        """Grouped FCP / load bar chart; ``bars`` holds ``(label, PoolMean)``."""
        x = np.arange(len(bars))
        width = 0.35

        fig, ax = plt.subplots(figsize=(10, 5))
        for offset, metric, label, color in (
            (-width / 2, "fcp", "Average FCP (ms)", METRIC_COLORS["fcp"]),
            (width / 2, "load", "Average Load Time (ms)", METRIC_COLORS["load"]),
        ):
            positions, values = [], []
            for pos, (_, pool) in zip(x, bars):
                value = getattr(pool, metric)
                if value is not None:
                    positions.append(pos + offset)
                    values.append(value)
            drawn = ax.bar(positions, values, width, label=label, color=color)
            ax.bar_label(drawn, fmt="%.0f", fontsize=9)

        ax.set_xticks(x)
        ax.set_xticklabels([label for label, _ in bars])
        ax.set_ylabel("Time (ms)")
        ax.set_title(title)
        ax.legend()
        ax.grid(True, axis="y", alpha=0.3)
        return _figure_to_data_uri(fig)

    def _browser_chart(self) -> str:
        return self._pool_chart(
            "Browser Overall Performance Comparison",
            [
                (f"{b.value} Overall", stats.overall)
                for b, stats in self.cumulative_stats.items()
            ],
        )

    def _js_chart(self) -> str:
        bars = []
        for b, stats in self.cumulative_stats.items():
            bars.append((f"{b.value} JS On", stats.js_on))
            bars.append((f"{b.value} JS Off", stats.js_off))
        return self._pool_chart("JavaScript Impact Analysis", bars)

    def _cache_chart(self) -> str:
        bars = []
        for b, stats in self.cumulative_stats.items():
            bars.append((f"{b.value} Cold", stats.cold))
            bars.append((f"{b.value} Warm", stats.warm))
        return self._pool_chart("Cache Performance Impact", bars)

    # ---------- HTML --------------------------------------------------------

    @staticmethod
    def _delta_cell(value: Optional[float]) -> str:
        if value is None:
            css = "missing"
        elif value < 0:
            css = "positive"
        elif value > 0:
            css = "negative"
        else:
            css = ""
        return f'<td class="{css}">{format_ms(value)}</td>'

    def _delta_rows(self) -> List[str]:
        browsers = list(Browser)
        rows = []
        for title, per_browser in (
            ("JS Off vs JS On", self.deltas.js_off),
            ("Warm vs Cold Cache", self.deltas.warm_cache),
        ):
            cells = [self._delta_cell(per_browser[b].fcp) for b in browsers]
            cells += [self._delta_cell(per_browser[b].load) for b in browsers]
            rows.append(f"<tr><td>{title}</td>{''.join(cells)}</tr>")

        ffx = self.deltas.firefox_vs_chrome
        rows.append(
            "<tr><td>Firefox vs Chrome</td>"
            f"{self._delta_cell(ffx.fcp)}<td>-</td>"
            f"{self._delta_cell(ffx.load)}<td>-</td></tr>"
        )
        return rows

    def _failed_trials_rows(self) -> List[str]:
        rows = []
        for key, by_cache in self.scenario_averages.items():
            for cache_state, average in by_cache.items():
                if average.failed_trials:
                    rows.append(
                        f"<tr><td>{html.escape(scenario_label(key))}</td>"
                        f"<td>{cache_state.value}</td>"
                        f"<td>{average.failed_trials} / {average.sample_count}</td></tr>"
                    )
        return rows

    def build_html(self) -> str:
        """Return a self-contained HTML page with inline charts and data."""
        browsers = list(Browser)
        header_cells = "".join(
            f"<th>{b.value} FCP Delta (ms)</th>" for b in browsers
        ) + "".join(f"<th>{b.value} Load Delta (ms)</th>" for b in browsers)

        charts = [
            ("All Metrics Comparison - Cold Cache", self._all_metrics_chart(CacheState.COLD)),
            ("All Metrics Comparison - Warm Cache", self._all_metrics_chart(CacheState.WARM)),
            ("Browser Overall Performance Comparison", self._browser_chart()),
            ("JavaScript Impact Analysis", self._js_chart()),
            ("Cache Performance Impact", self._cache_chart()),
        ]
        chart_sections = "\n".join(
            f'<div class="chart-section"><h2>{title}</h2>'
            f'<img alt="{title}" src="{uri}"></div>'
            for title, uri in charts
        )

        anomalies = find_cache_anomalies(self.deltas)
        anomaly_section = ""
        if anomalies:
            items = "".join(f"<li>{html.escape(a)}</li>" for a in anomalies)
            anomaly_section = (
                '<div class="chart-section"><h2>Cache Anomalies</h2>'
                f"<ul>{items}</ul></div>"
            )

        failed_rows = self._failed_trials_rows()
        failed_section = ""
        if failed_rows:
            failed_section = (
                '<div class="chart-section"><h2>Failed Trials</h2>'
                '<table class="stats-table"><thead><tr><th>Scenario</th>'
                "<th>Cache</th><th>Failed / Total</th></tr></thead>"
                f"<tbody>{''.join(failed_rows)}</tbody></table></div>"
            )

        delta_rows = "\n".join(self._delta_rows())
        # "</" would end the script element early
        data_json = json.dumps(self.report_data()).replace("</", "<\\/")

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Browser Performance Test - Comprehensive Results</title>
<style>{STYLE}</style>
</head>
<body>
<h1>Browser Performance Test Results ({self.tree.iterations} iterations)</h1>
{chart_sections}
<div class="chart-section">
<h2>Performance Deltas</h2>
<table class="stats-table">
<thead><tr><th>Comparison</th>{header_cells}</tr></thead>
<tbody>
{delta_rows}
</tbody>
</table>
</div>
{anomaly_section}
{failed_section}
<script type="application/json" id="benchmark-data">{data_json}</script>
</body>
</html>
"""

    # ---------- Markdown summary -------------------------------------------

    def build_summary(self) -> str:
        """Markdown summary of pooled stats and deltas."""
        lines = [
            f"# Browser Performance Summary ({self.tree.iterations} iterations)",
            "",
            "**Cumulative Statistics:**",
            "",
            "| Browser | Pool | FCP (ms) | Load (ms) |",
            "| --- | --- | --- | --- |",
        ]
        for browser, stats in self.cumulative_stats.items():
            for pool, pool_mean in stats.to_dict().items():
                lines.append(
                    f"| {browser.value} | {pool} | {format_ms(pool_mean['fcp'])} | "
                    f"{format_ms(pool_mean['load'])} |"
                )

        lines.extend(
            [
                "",
                "**Deltas:**",
                "",
                "| Comparison | Browser | Metric | Baseline | New | Diff | % Change |",
                "| --- | --- | --- | --- | --- | --- | --- |",
            ]
        )
        for browser, stats in self.cumulative_stats.items():
            lines.extend(
                self._summary_rows(
                    "JS Off vs JS On", browser.value, stats.js_on, stats.js_off,
                    self.deltas.js_off[browser],
                )
            )
            lines.extend(
                self._summary_rows(
                    "Warm vs Cold Cache", browser.value, stats.cold, stats.warm,
                    self.deltas.warm_cache[browser],
                )
            )
        lines.extend(
            self._summary_rows(
                "Firefox vs Chrome",
                "-",
                self.cumulative_stats[Browser.CHROME].overall,
                self.cumulative_stats[Browser.FIREFOX].overall,
                self.deltas.firefox_vs_chrome,
            )
        )

        anomalies = find_cache_anomalies(self.deltas)
        if anomalies:
            lines.extend(["", "**Cache Anomalies:**", ""])
            lines.extend(f"- {a}" for a in anomalies)

        return "\n".join(lines) + "\n"

    @staticmethod
    def _summary_rows(
        comparison: str, browser: str, baseline, new, delta: MetricDelta
    ) -> List[str]:
        rows = []
        for metric in ("fcp", "load"):
            old_value = getattr(baseline, metric)
            new_value = getattr(new, metric)
            change = percentage_change(old_value, new_value)
            change_text = INSUFFICIENT_DATA if change is None else f"{change:+.1f}%"
            rows.append(
                f"| {comparison} | {browser} | {metric} | {format_ms(old_value)} | "
                f"{format_ms(new_value)} | {format_ms(getattr(delta, metric))} | "
                f"{change_text} |"
            )
        return rows


def write_report(path: Path, text: str) -> None:
    """Write a rendered report, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        f.write(text)
    logging.info(f"Report written to {path}")
