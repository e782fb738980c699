"""
Unit tests for main.py
"""

import json
import logging
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from campaign_experiments.core.data_types import ABTestStatus, EventType
from main import generate_events, main, parse_args, run_simulation


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestParseArgs:
    """Tests for argument parsing."""

    def test_parse_serve_command(self):
        args = parse_args(["serve", "--port", "9000"])
        assert args.command == "serve"
        assert args.port == 9000
        assert args.host is None

    def test_parse_simulate_defaults(self):
        args = parse_args(["simulate"])
        assert args.impressions == 5000
        assert args.seed == 42
        assert args.workers == 8

    def test_common_arguments(self):
        args = parse_args(["--log-level", "DEBUG", "--log-format", "text", "simulate", "--seed", "7"])
        assert args.log_level == "DEBUG"
        assert args.log_format == "text"
        assert args.seed == 7

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestSimulation:
    """Tests for the simulate command."""

    def test_generate_events_is_seeded(self):
        first = generate_events(np.random.default_rng(3), "A", 500, 0.1, 0.2, 30.0)
        second = generate_events(np.random.default_rng(3), "A", 500, 0.1, 0.2, 30.0)
        assert first == second
        assert sum(1 for _, t, _ in first if t == EventType.IMPRESSION) == 500
        assert all(v is not None and v >= 0 for _, t, v in first if t == EventType.CONVERSION)

    def test_run_simulation(self, service):
        args = parse_args(["simulate", "--impressions", "400", "--workers", "4", "--variant-ctr", "0.3"])
        completed = run_simulation(args, service)

        assert completed.status == ABTestStatus.COMPLETED
        assert [v.metrics.impressions for v in completed.variants] == [400, 400]
        assert completed.total_sample_size == 800
        assert completed.results.is_final is True
        assert completed.results.winner.variant_id == "variant-b"


class TestMain:
    """Tests for the main entry point."""

    def test_simulate_prints_json(self, capsys):
        exit_code = main(["--log-level", "WARNING", "simulate", "--impressions", "200", "--workers", "2"])
        assert exit_code == 0
        output = capsys.readouterr().out
        payload = json.loads(output[output.index("{\n"):])
        assert payload["status"] == "COMPLETED"
        assert payload["results"]["isFinal"] is True

    def test_serve_runs_uvicorn(self):
        fake_uvicorn = MagicMock()
        with patch.dict("sys.modules", {"uvicorn": fake_uvicorn}):
            exit_code = main(["--log-level", "WARNING", "serve", "--port", "9100"])
        assert exit_code == 0
        _, kwargs = fake_uvicorn.run.call_args
        assert kwargs["port"] == 9100
        assert kwargs["host"] == "0.0.0.0"

    def test_config_file_overlays_experiment_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EXPERIMENTS__RESULTS_REFRESH_EVERY", "7")
        config_path = tmp_path / "experiments.yaml"
        config_path.write_text("p_value_method: banded\nresults_refresh_every: 50\n")

        with patch("main.ABTestingService.from_settings") as from_settings, patch("main.run_simulation") as run:
            run.return_value.to_dict.return_value = {}
            assert main(["--config", str(config_path), "--log-level", "ERROR", "simulate"]) == 0

        experiments = from_settings.call_args.args[0].experiments
        assert experiments.p_value_method == "banded"
        assert experiments.results_refresh_every == 7

    def test_failure_returns_nonzero(self):
        with patch("main.run_simulation", side_effect=RuntimeError("boom")):
            assert main(["--log-level", "ERROR", "simulate"]) == 1
