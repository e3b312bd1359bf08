#!/usr/bin/env python3
"""
Robust Strategy Lab - Demo Runner

This script demonstrates the complete validation pipeline:
    Phase 1: Bar preparation (CSV file or a seeded synthetic series)
    Phase 2: Baseline backtest with default parameters
    Phase 3: Grid search with walk-forward validation
    Phase 4: Full-history re-run and Monte Carlo projection of the winner
             (plus an out-of-sample backtest with --holdout)

EXECUTION
    python run_demo.py
    python run_demo.py --csv data/eurusd_1h.csv --bucket fixed_bars --grid intraday
    python run_demo.py --csv data/eurusd_daily.csv --grid daily --max-dd 45
    python run_demo.py --holdout 0.25 --objective target_monthly --target-monthly 5

OUTPUT ARTIFACTS
    outputs/
        search_result.json      Winner, walk-forward folds, Monte Carlo

Version: 1.0.0
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from strategy_lab.backtest_engine import BacktestEngine, format_backtest_report
from strategy_lab.config import (
    HOLDOUT_FRACTION,
    VERSION,
    BucketMode,
    EngineSettings,
    MonteCarloSettings,
    ReturnConvention,
    ScoreObjective,
    SearchConstraints,
    StrategyParameters,
    WalkForwardSettings,
    get_grid_preset,
)
from strategy_lab.data_loader import BarSummary, load_bars_csv, prepare_bars
from strategy_lab.parameter_search import ParameterSearch, SearchOutcome, SearchResult


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_GRID: str = "multi"
DEFAULT_SYNTHETIC_BARS: int = 1500
OUTPUT_DIR = Path("outputs")


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║              ROBUST STRATEGY LAB                                              ║
║                                                                               ║
║              Backtest · Walk-Forward · Grid Search · Monte Carlo              ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''


def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def indent(text: str, prefix: str = "  ") -> str:
    return "\n".join(prefix + line for line in text.splitlines())


# =============================================================================
# PHASE 1: BARS
# =============================================================================

def generate_demo_bars(n: int, seed: int) -> pd.DataFrame:
    """
    Seeded daily random walk with slow regime drift, close-only.

    Stands in for a real price file so the demo runs offline.
    """
    rng = np.random.default_rng(seed)
    drift = 0.0008 * np.sin(np.linspace(0, 6 * np.pi, n))
    log_returns = drift + rng.normal(0.0, 0.006, n)
    close = 1.10 * np.exp(np.cumsum(log_returns))
    times = pd.date_range("2024-01-01", periods=n, freq="D", tz="UTC")
    return pd.DataFrame({"time": times, "close": close})


def run_phase1(
    csv_path: Optional[str],
    synthetic_bars: int,
    seed: int,
    logger: logging.Logger,
) -> Tuple[pd.DataFrame, BarSummary]:
    """Load and prepare the bars."""
    print_section_header("PHASE 1: BAR PREPARATION")

    if csv_path:
        bars, summary = load_bars_csv(csv_path)
    else:
        logger.info(f"No --csv given, generating {synthetic_bars} synthetic bars (seed {seed})")
        bars, summary = prepare_bars(generate_demo_bars(synthetic_bars, seed), source="synthetic")

    print(f"  Source:        {summary.source}")
    print(f"  Bars:          {summary.rows_out:,} ({summary.rows_in:,} rows read)")
    print(f"  Dropped:       {summary.dropped_invalid} invalid, {summary.dropped_duplicates} duplicate")
    print(f"  Range:         {summary.start} to {summary.end}")
    print(f"  Close hash:    {summary.data_hash}")
    return bars, summary


# =============================================================================
# PHASE 2: BASELINE
# =============================================================================

def run_phase2(bars: pd.DataFrame, settings: EngineSettings, logger: logging.Logger) -> None:
    """Backtest the default parameters as a reference point."""
    print_section_header("PHASE 2: BASELINE BACKTEST")
    params = StrategyParameters()
    logger.info(f"Baseline: {params.rule.value} fast={params.fast_window} slow={params.slow_window}")
    result = BacktestEngine(settings).run(bars, params)
    print(indent(format_backtest_report(result)))


# =============================================================================
# PHASE 3-4: SEARCH
# =============================================================================

def run_phase3(
    bars: pd.DataFrame,
    args: argparse.Namespace,
    settings: EngineSettings,
    logger: logging.Logger,
) -> SearchResult:
    """Grid search, full-history re-run and Monte Carlo projection."""
    print_section_header("PHASE 3: ROBUST PARAMETER SEARCH")

    constraints = SearchConstraints(
        max_worst_drawdown_pct=args.max_dd,
        min_avg_trades=args.min_trades,
        require_positive_return=args.require_positive,
        allow_fallback=args.allow_fallback,
        objective=ScoreObjective(args.objective),
        target_monthly_pct=args.target_monthly,
    )
    search = ParameterSearch(
        constraints=constraints,
        engine_settings=settings,
        walk_forward_settings=WalkForwardSettings(
            fold_count=args.folds, min_fold_bars=args.min_fold_bars
        ),
        monte_carlo_settings=MonteCarloSettings(iterations=args.mc_iterations, seed=args.seed),
        max_workers=args.workers,
        deadline_seconds=args.deadline,
        holdout_fraction=args.holdout,
    )
    logger.info(f"Grid preset: {args.grid}")
    result = search.search(bars, get_grid_preset(args.grid), seed=args.seed)

    print(f"  Outcome:       {result.outcome.value}")
    print(f"  Evaluated:     {result.candidates_evaluated}")
    print(f"  Accepted:      {result.candidates_accepted}")
    print(f"  Skipped:       {result.candidates_skipped}")
    if result.timed_out:
        print("  Deadline reached before the grid was exhausted")

    if result.outcome == SearchOutcome.NONE_FOUND:
        print("\n  No candidate met the robustness constraints.")
        return result

    print_section_header("PHASE 4: WINNER")
    for key, value in result.parameters.to_dict().items():
        print(f"  {key:<20} {value}")
    print(f"  {'score':<20} {result.score:.4f}")
    print()
    print(indent(format_backtest_report(
        result.full_history,
        walk_forward=result.walk_forward,
        monte_carlo=result.monte_carlo,
    )))
    if result.holdout is not None:
        print_section_header("OUT-OF-SAMPLE HOLDOUT", "─")
        print(indent(format_backtest_report(result.holdout)))
    return result


def write_json_report(result: SearchResult, summary: BarSummary, path: Path) -> Path:
    """Write the search result and input provenance as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "generated_at": datetime.now().isoformat(),
        "version": VERSION,
        "bars": summary.to_dict(),
        "search": result.to_dict(),
    }
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
    return path


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Robust Strategy Lab - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                                   # Synthetic daily bars
  python run_demo.py --csv eurusd_1h.csv --bucket fixed_bars
  python run_demo.py --csv eurusd_daily.csv --grid daily --max-dd 45 --allow-fallback

Grid presets:
  multi     Trend, band reversion and breakout sub-grids (default)
  daily     Long-only trend/momentum for daily closes
  intraday  Full trend/momentum grid for hourly data (large)
        """
    )
    parser.add_argument("--csv", type=str, default=None, help="Price CSV with time and close columns")
    parser.add_argument("--synthetic-bars", type=int, default=DEFAULT_SYNTHETIC_BARS,
                        help=f"Synthetic bars when no CSV is given (default: {DEFAULT_SYNTHETIC_BARS})")
    parser.add_argument("--grid", choices=["multi", "daily", "intraday"], default=DEFAULT_GRID,
                        help=f"Grid preset (default: {DEFAULT_GRID})")
    parser.add_argument("--convention", choices=[c.value for c in ReturnConvention],
                        default=ReturnConvention.ARITHMETIC.value, help="Average monthly convention")
    parser.add_argument("--bucket", choices=[b.value for b in BucketMode],
                        default=BucketMode.CALENDAR.value, help="Monthly bucketing")
    parser.add_argument("--folds", type=int, default=4, help="Walk-forward folds (default: 4)")
    parser.add_argument("--min-fold-bars", type=int, default=120,
                        help="Shortest fold that is backtested (default: 120)")
    parser.add_argument("--max-dd", type=float, default=35.0,
                        help="Worst fold drawdown allowed, percent (default: 35)")
    parser.add_argument("--min-trades", type=float, default=2.0,
                        help="Minimum average trades per fold (default: 2)")
    parser.add_argument("--require-positive", action="store_true",
                        help="Reject candidates with non-positive average monthly return")
    parser.add_argument("--allow-fallback", action="store_true",
                        help="Return the best unconstrained candidate when none passes")
    parser.add_argument("--objective", choices=[o.value for o in ScoreObjective],
                        default=ScoreObjective.PENALIZED_RETURN.value, help="Candidate ranking")
    parser.add_argument("--target-monthly", type=float, default=20.0,
                        help="Monthly return target for --objective target_monthly (default: 20)")
    parser.add_argument("--holdout", type=float, nargs="?", const=HOLDOUT_FRACTION, default=None,
                        help=f"Withhold the latest bars from the search (default fraction: {HOLDOUT_FRACTION})")
    parser.add_argument("--mc-iterations", type=int, default=500, help="Monte Carlo paths (default: 500)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for the search")
    parser.add_argument("--deadline", type=float, default=None, help="Search time budget in seconds")
    parser.add_argument("--output", type=str, default=str(OUTPUT_DIR / "search_result.json"),
                        help="JSON report path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Grid Preset:       {args.grid}")
    print(f"  Version:           {VERSION}")

    try:
        settings = EngineSettings(
            return_convention=ReturnConvention(args.convention),
            bucket_mode=BucketMode(args.bucket),
        )
        bars, summary = run_phase1(args.csv, args.synthetic_bars, args.seed, logger)
        run_phase2(bars, settings, logger)
        result = run_phase3(bars, args, settings, logger)
        path = write_json_report(result, summary, Path(args.output))
    except Exception as e:
        logger.error(f"Demo failed: {e}")
        import traceback
        traceback.print_exc()
        return 1

    print_section_header("COMPLETE")
    print(f"  JSON report:   {path}")
    print(f"  Total time:    {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
