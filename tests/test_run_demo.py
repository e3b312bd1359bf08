"""
Tests for the demo runner.
"""
import json

import pytest

import run_demo
from strategy_lab.data_loader import prepare_bars


class TestDemoRunner:
    """Test suite for the command-line demo."""

    def test_synthetic_bars_are_seeded(self):
        first = run_demo.generate_demo_bars(100, seed=3)
        second = run_demo.generate_demo_bars(100, seed=3)
        assert first.equals(second)
        bars, summary = prepare_bars(first)
        assert summary.rows_out == 100
        assert (bars["close"] > 0).all()

    def test_parser_defaults(self):
        args = run_demo.build_parser().parse_args([])
        assert args.grid == "multi"
        assert args.convention == "arithmetic"
        assert args.bucket == "calendar"
        assert not args.allow_fallback
        assert args.holdout is None
        assert args.objective == "penalized_return"

    def test_holdout_flag_uses_default_fraction(self):
        args = run_demo.build_parser().parse_args(["--holdout", "--objective", "target_monthly"])
        assert args.holdout == 0.25
        assert args.objective == "target_monthly"
        assert run_demo.build_parser().parse_args(["--holdout", "0.3"]).holdout == 0.3

    def test_parser_rejects_unknown_grid(self):
        with pytest.raises(SystemExit):
            run_demo.build_parser().parse_args(["--grid", "weekly"])

    def test_main_writes_report(self, tmp_path, capsys):
        output = tmp_path / "result.json"
        # 200 bars leave every fold below the minimum length, so no candidate is backtested
        code = run_demo.main(["--synthetic-bars", "200", "--output", str(output)])
        assert code == 0
        payload = json.loads(output.read_text())
        assert payload["search"]["outcome"] == "none_found"
        assert payload["bars"]["rows_out"] == 200
        assert "BASELINE BACKTEST" in capsys.readouterr().out

    def test_main_reports_failure(self, tmp_path):
        code = run_demo.main(["--csv", str(tmp_path / "missing.csv")])
        assert code == 1
