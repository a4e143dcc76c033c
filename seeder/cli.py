"""
Seed a map's tile caches from the command line.

Examples:
  python -m seeder.cli --config config/seed.yaml
  python -m seeder.cli --config config/seed.yaml --max-level 8 \
      --bounds -77.2,38.8,-76.9,39.0 --bounds-srs EPSG:4326 --policy window --workers 4
  python -m seeder.cli --config config/seed.yaml --report logs/seed_report.json

Exit codes: 0 ok, 1 finished with tile failures, 2 aborted/config error, 130 cancelled.
"""
from __future__ import annotations

import argparse
import json
import signal
import threading
from pathlib import Path
from typing import List, Optional

from common.geo import get_profile
from common.logging_setup import get_logger, setup_logging
from common.types import SeedConfig
from common.utils import parse_floats
from seeder.config import DEFAULT_CONFIG_PATH, build_sources, load_config, parse_bounds, seed_config, seed_options
from seeder.levels import LEVEL_POLICIES
from seeder.seed import SeedReport, seed


EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="seeder", description="Pre-populate tile caches for a map")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML map config")
    ap.add_argument("--min-level", type=int, default=None, help="Override seed.min_level")
    ap.add_argument("--max-level", type=int, default=None, help="Override seed.max_level")
    ap.add_argument("--bounds", default=None, help="minx,miny,maxx,maxy (overrides seed.bounds)")
    ap.add_argument("--bounds-srs", default=None, help="SRS of --bounds, e.g. EPSG:4326 (default: profile SRS)")
    ap.add_argument("--policy", choices=sorted(LEVEL_POLICIES), default=None, help="Level eligibility policy")
    ap.add_argument("--workers", type=int, default=None, help="Concurrent production calls")
    ap.add_argument("--timeout", type=float, default=None, help="Stop after this many seconds (partial report)")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    ap.add_argument("--report", default=None, help="Write the JSON seed report here")
    return ap


def exit_code(report: SeedReport) -> int:
    if report.aborted:
        return EXIT_ABORTED
    if report.cancelled:
        return EXIT_CANCELLED
    if report.failures:
        return EXIT_FAILURES
    return EXIT_OK


def _write_report(path: Path, report: SeedReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    log = get_logger("seeder")

    try:
        P = load_config(args.config)
        setup_logging(args.log_level or P.get("logging", {}).get("level"), force=True)

        cfg = seed_config(P)
        opts = seed_options(P)
        bounds = cfg.bounds
        if args.bounds:
            profile = get_profile(P["profile"])
            bounds = parse_bounds(parse_floats(args.bounds, 4), profile, args.bounds_srs)
        cfg = SeedConfig(
            min_level=cfg.min_level if args.min_level is None else args.min_level,
            max_level=cfg.max_level if args.max_level is None else args.max_level,
            bounds=bounds,
        )
        if args.policy is not None:
            opts["level_policy"] = args.policy
        if args.workers is not None:
            if args.workers < 1:
                raise ValueError(f"--workers must be >= 1, got {args.workers}")
            opts["workers"] = args.workers
        if args.timeout is not None:
            if args.timeout < 0:
                raise ValueError(f"--timeout must be >= 0, got {args.timeout}")
            opts["timeout_s"] = args.timeout
        sources = build_sources(P)
    except (OSError, ValueError, TypeError) as e:
        log.error("Invalid configuration: %s", e, extra={"extra": {"config": args.config}})
        return EXIT_ABORTED

    cancel = threading.Event()

    def _on_sigint(signum, frame):
        log.warning("Interrupt received; finishing in-flight tiles")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        report = seed(cfg, sources, log, cancel=cancel, **opts)
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.report:
        _write_report(Path(args.report), report)
    return exit_code(report)


if __name__ == "__main__":
    raise SystemExit(main())
