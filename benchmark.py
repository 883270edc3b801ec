#!/usr/bin/env python3
"""Command-line interface to run browser page-load benchmarks."""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

from browser_runner import (
    DEFAULT_CHROME_CHANNEL,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    BrowserRunner,
)
from process_metrics import (
    compute_cumulative_stats,
    compute_deltas,
    compute_scenario_averages,
    find_cache_anomalies,
)
from report_builder import ReportBuilder, write_report
from result_tree import ResultShapeError, ResultTree, load_results, write_results

# ---------- Constants --------------------------------------------------------
DEFAULT_CONFIG_PATH = "./configs/benchmark-config.json"
REQUIRED_KEYS = ["urls"]

OPTIONAL_CONF_KEYS = {
    "iterations": 5,
    "headless": False,
    "output_json": "performance_results.json",
    "output_html": "results_chart.html",
    "output_summary": "results_summary.md",
    "log_file": "benchmark.log",
    "chrome_channel": DEFAULT_CHROME_CHANNEL,
    "navigation_timeout_ms": DEFAULT_NAVIGATION_TIMEOUT_MS,
}


@dataclass(frozen=True)
class BenchmarkConfig:
    """Validated benchmark settings."""

    urls: Tuple[str, ...]
    iterations: int = OPTIONAL_CONF_KEYS["iterations"]
    headless: bool = OPTIONAL_CONF_KEYS["headless"]
    output_json: Path = Path(OPTIONAL_CONF_KEYS["output_json"])
    output_html: Path = Path(OPTIONAL_CONF_KEYS["output_html"])
    output_summary: Path = Path(OPTIONAL_CONF_KEYS["output_summary"])
    log_file: Path = Path(OPTIONAL_CONF_KEYS["log_file"])
    chrome_channel: Optional[str] = OPTIONAL_CONF_KEYS["chrome_channel"]
    navigation_timeout_ms: int = OPTIONAL_CONF_KEYS["navigation_timeout_ms"]


# ---------- CLI --------------------------------------------------------------
def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Browser Page-Load Benchmarking Tool", allow_abbrev=False
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to the benchmark configuration JSON file.",
    )
    parser.add_argument(
        "--report-only",
        type=Path,
        default=None,
        metavar="RESULTS_JSON",
        help="Skip collection and rebuild the report from an existing results file.",
    )
    parser.add_argument(
        "--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"]
    )

    args, unknown = parser.parse_known_args(argv)
    if unknown:
        parser.error(f"Unrecognized arguments: {' '.join(unknown)}")
    return args


# ---------- Helpers ----------------------------------------------------------


def parse_bool(value) -> bool:
    """Return ``value`` converted to ``bool``.

    Accepts booleans directly or common string representations like
    ``"yes"``/``"no"``, "1"/"0" and ``"true"``/``"false"``.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("yes", "true", "1")
    return bool(value)


def validate_config(cfg: dict) -> None:
    """Ensure all required keys exist and have valid values in ``cfg``."""
    if not isinstance(cfg, dict):
        raise ValueError("Configuration must be a JSON object")

    for k in REQUIRED_KEYS:
        if k not in cfg:
            raise ValueError(f"Missing required config key: {k}")

    unknown = sorted(set(cfg) - set(REQUIRED_KEYS) - set(OPTIONAL_CONF_KEYS))
    if unknown:
        raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")

    urls = cfg["urls"]
    if (
        not isinstance(urls, list)
        or not urls
        or not all(isinstance(u, str) and u.strip() for u in urls)
    ):
        raise ValueError("'urls' must be a non-empty list of non-empty strings")
    for url in urls:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"'urls' entry is not an http(s) URL: {url}")
    if len(set(urls)) != len(urls):
        raise ValueError("'urls' must not contain duplicates")

    if "iterations" in cfg:
        iterations = cfg["iterations"]
        if (
            not isinstance(iterations, int)
            or isinstance(iterations, bool)
            or iterations <= 0
        ):
            raise ValueError("'iterations' must be a positive integer")

    if "navigation_timeout_ms" in cfg:
        timeout = cfg["navigation_timeout_ms"]
        if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
            raise ValueError("'navigation_timeout_ms' must be a positive integer")

    for k in ("output_json", "output_html", "output_summary", "log_file"):
        if k in cfg and (not isinstance(cfg[k], str) or not cfg[k].strip()):
            raise ValueError(f"'{k}' must be a non-empty path string")

    if "headless" in cfg:
        headless = cfg["headless"]
        if not isinstance(headless, bool) and not (
            isinstance(headless, str)
            and headless.lower() in ("yes", "no", "true", "false", "1", "0")
        ):
            raise ValueError(
                "'headless' must be a boolean or one of yes/no/true/false/1/0"
            )

    if "chrome_channel" in cfg and cfg["chrome_channel"] is not None:
        if not isinstance(cfg["chrome_channel"], str):
            raise ValueError("'chrome_channel' must be a string or null")


def config_from_dict(cfg: dict) -> BenchmarkConfig:
    """Validate ``cfg`` and fill in defaults for missing optional keys."""
    validate_config(cfg)
    merged = {**OPTIONAL_CONF_KEYS, **cfg}
    return BenchmarkConfig(
        urls=tuple(merged["urls"]),
        iterations=merged["iterations"],
        headless=parse_bool(merged["headless"]),
        output_json=Path(merged["output_json"]),
        output_html=Path(merged["output_html"]),
        output_summary=Path(merged["output_summary"]),
        log_file=Path(merged["log_file"]),
        chrome_channel=merged["chrome_channel"] or None,
        navigation_timeout_ms=merged["navigation_timeout_ms"],
    )


def load_config(path: str) -> BenchmarkConfig:
    """Load benchmark configuration from a JSON file."""
    with open(path, "r") as fp:
        cfg = json.load(fp)
    return config_from_dict(cfg)


def init_logging(log_path: Path, level: str = "INFO") -> None:
    """Set up logging to both file and stdout."""
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="w"),
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


def build_reports(tree: ResultTree, cfg: BenchmarkConfig) -> None:
    """Aggregate ``tree`` and write the HTML report and Markdown summary."""
    scenario_averages = compute_scenario_averages(tree)
    cumulative_stats = compute_cumulative_stats(tree)
    deltas = compute_deltas(cumulative_stats)

    for anomaly in find_cache_anomalies(deltas):
        logging.warning(f"Cache anomaly: {anomaly}")

    builder = ReportBuilder(tree, scenario_averages, cumulative_stats, deltas)
    write_report(cfg.output_html, builder.build_html())
    write_report(cfg.output_summary, builder.build_summary())


def run_benchmark(cfg: BenchmarkConfig) -> ResultTree:
    """Collect samples for every scenario and write the raw results."""
    logging.info(f"Loaded config: {cfg}")
    logging.info(
        f"=== Starting benchmark: {len(cfg.urls)} URL(s), "
        f"{cfg.iterations} iteration(s), headless={cfg.headless} ==="
    )

    runner = BrowserRunner(
        urls=cfg.urls,
        iterations=cfg.iterations,
        headless=cfg.headless,
        chrome_channel=cfg.chrome_channel,
        navigation_timeout_ms=cfg.navigation_timeout_ms,
    )
    tree = runner.collect()
    write_results(cfg.output_json, tree)
    return tree


# ---------- Entry point ------------------------------------------------------
def main(argv=None) -> None:
    """Entry point for the benchmark CLI."""
    args = parse_args(argv)

    try:
        cfg = load_config(args.config)
    except FileNotFoundError:
        print(f"ERROR: Config file '{args.config}' not found")
        sys.exit(1)
    except (json.JSONDecodeError, ValueError) as e:
        print(f"ERROR: Invalid config '{args.config}': {e}")
        sys.exit(1)

    try:
        init_logging(cfg.log_file, args.log_level)
    except OSError as e:
        print(f"ERROR: Cannot open log file '{cfg.log_file}': {e}")
        sys.exit(1)

    try:
        if args.report_only:
            tree = load_results(args.report_only)
        else:
            tree = run_benchmark(cfg)
        build_reports(tree, cfg)
    except FileNotFoundError as e:
        logging.error(f"File not found: {e.filename}")
        sys.exit(1)
    except (json.JSONDecodeError, ResultShapeError) as e:
        logging.error(f"Malformed results data: {e}")
        sys.exit(1)
    except OSError as e:
        logging.error(f"I/O error: {e}")
        sys.exit(1)
    except RuntimeError as e:
        logging.error(str(e))
        sys.exit(1)

    logging.info("Finished!")


if __name__ == "__main__":
    main()
