"""
Unit tests for the seeder command line
"""

import json
import os
import sys
import textwrap

import pytest
import yaml

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from seeder.cli import EXIT_ABORTED, EXIT_CANCELLED, EXIT_FAILURES, EXIT_OK, build_parser, exit_code, main
from seeder.seed import SeedReport
from seeder.walker import ProductionFailure
from common.logging_setup import setup_logging
from common.types import Bounds


# Configure the root logger before caplog attaches its handler
setup_logging()


def _config(tmp_path, image_cache=True):
    path = tmp_path / "seed.yaml"
    path.write_text(textwrap.dedent(f"""
        profile: spherical-mercator
        cache:
          root: {tmp_path / 'cache'}
        seed:
          min_level: 0
          max_level: 2
          level_policy: window
        logging:
          level: WARNING
        image:
          - name: synth
            driver: synthetic
            max_level: 2
            tile_size: 32
            cache: {'true' if image_cache else 'false'}
        elevation:
          - name: flat
            driver: constant
            max_level: 2
            tile_size: 8
            cache: {'true' if image_cache else 'false'}
    """))
    return str(path)


def _report(**kw):
    return SeedReport(configured_min_level=0, configured_max_level=1, min_level=0, max_level=1, bounds=Bounds(), **kw)


class TestExitCode:
    def test_mapping(self):
        assert exit_code(_report()) == EXIT_OK
        assert exit_code(_report(aborted=True)) == EXIT_ABORTED
        assert exit_code(_report(cancelled=True)) == EXIT_CANCELLED
        failure = ProductionFailure(source="s", layer="image", key="1/0/0", error="boom")
        assert exit_code(_report(failures=[failure])) == EXIT_FAILURES


class TestParser:
    def test_overrides_default_to_none(self):
        args = build_parser().parse_args([])
        assert args.config == "config/seed.yaml"
        assert args.max_level is None and args.policy is None and args.workers is None

    def test_policy_choices(self):
        args = build_parser().parse_args(["--policy", "window", "--workers", "3"])
        assert args.policy == "window"
        assert args.workers == 3


class TestMain:
    def test_full_run_writes_cache_and_report(self, tmp_path):
        report_path = tmp_path / "out" / "report.json"
        rc = main(["--config", _config(tmp_path), "--report", str(report_path)])

        assert rc == EXIT_OK
        data = json.loads(report_path.read_text())
        assert data["ok"] is True
        assert data["materialized"] == {"synth": 21, "flat": 21}
        assert data["level_policy"] == "window"
        assert (tmp_path / "cache" / "synth" / "2" / "3" / "3.png").is_file()
        assert (tmp_path / "cache" / "flat" / "0" / "0" / "0.tif").is_file()

    def test_command_line_overrides_config(self, tmp_path):
        report_path = tmp_path / "report.json"
        rc = main([
            "--config", _config(tmp_path),
            "--max-level", "1",
            "--bounds", "1,1,2,2",
            "--bounds-srs", "EPSG:4326",
            "--workers", "2",
            "--report", str(report_path),
        ])

        assert rc == EXIT_OK
        data = json.loads(report_path.read_text())
        assert data["levels"] == [0, 1]
        # one level-1 quadrant (north-east) plus the root, per layer
        assert data["nodes_by_level"] == {"0": 1, "1": 1}
        assert data["materialized"] == {"synth": 2, "flat": 2}

    def test_no_cache_aborts(self, tmp_path):
        report_path = tmp_path / "report.json"
        rc = main(["--config", _config(tmp_path, image_cache=False), "--report", str(report_path)])

        assert rc == EXIT_ABORTED
        data = json.loads(report_path.read_text())
        assert data["aborted"] is True
        assert not (tmp_path / "cache").exists()

    def test_invalid_config_exits_2(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("image:\n  - {name: x, driver: nonsense}\n")
        assert main(["--config", str(path)]) == EXIT_ABORTED

    def test_bad_bounds_exits_2(self, tmp_path):
        assert main(["--config", _config(tmp_path), "--bounds", "1,2,3"]) == EXIT_ABORTED

    def test_zero_timeout_is_cancelled(self, tmp_path):
        assert main(["--config", _config(tmp_path), "--timeout", "0"]) == EXIT_CANCELLED


def _config_with_seed(tmp_path, **seed_values):
    path = _config(tmp_path)
    with open(path) as f:
        P = yaml.safe_load(f)
    P["seed"].update(seed_values)
    with open(path, "w") as f:
        yaml.safe_dump(P, f)
    return path


class TestInvalidSeedSection:
    """Bad values in the seed: section are reported and exit 2 before anything is cached"""

    @pytest.mark.parametrize(
        "values",
        [
            {"level_policy": "nonsense"},
            {"workers": "four"},
            {"workers": 0},
            {"timeout_s": "soon"},
            {"max_level": None},
            {"min_level": "low"},
            {"bounds": 5},
        ],
    )
    def test_exits_2_without_seeding(self, tmp_path, values):
        report_path = tmp_path / "report.json"
        rc = main(["--config", _config_with_seed(tmp_path, **values), "--report", str(report_path)])

        assert rc == EXIT_ABORTED
        assert not report_path.exists()
        assert not (tmp_path / "cache").exists()

    def test_error_is_logged(self, tmp_path, caplog, monkeypatch):
        # keep caplog's handler on the root logger
        monkeypatch.setattr("seeder.cli.setup_logging", lambda *a, **kw: None)
        caplog.set_level("ERROR", logger="seeder")
        assert main(["--config", _config_with_seed(tmp_path, level_policy="nonsense")]) == EXIT_ABORTED
        errors = [r.getMessage() for r in caplog.records if r.levelname == "ERROR"]
        assert any("unknown level policy" in m for m in errors)

    def test_seed_section_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "seed.yaml"
        path.write_text("seed: [1, 2]\n")
        assert main(["--config", str(path)]) == EXIT_ABORTED

    def test_bad_command_line_workers(self, tmp_path):
        assert main(["--config", _config(tmp_path), "--workers", "0"]) == EXIT_ABORTED
        assert not (tmp_path / "cache").exists()

    def test_yaml_workers_and_timeout_are_used(self, tmp_path):
        report_path = tmp_path / "report.json"
        rc = main(["--config", _config_with_seed(tmp_path, workers="2", timeout_s="60"), "--report", str(report_path)])
        assert rc == EXIT_OK
        assert json.loads(report_path.read_text())["materialized"] == {"synth": 21, "flat": 21}
