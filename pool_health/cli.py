"""Run the ingestion pipeline once or on a fixed interval.

    pool-health --once
    pool-health --interval 3600 --data-dir data
"""
import argparse
import logging
import os
import time

from . import config
from .exceptions import CursorPersistError, CycleInProgress
from .log import setup_logger
from .pipeline import build_pipeline

LOGGER = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="pool-health", description="Score liquidity pools from DefiLlama yields data.")
    p.add_argument("--once", action="store_true", help="run a single ingestion cycle and exit")
    p.add_argument("--interval", type=_positive_int, default=config.CYCLE_INTERVAL, help="seconds between cycles")
    p.add_argument("--data-dir", default=None, help="directory for the cursor, catalog and scored caches")
    p.add_argument("--batch-size", type=_positive_int, default=None)
    p.add_argument("--profile", choices=sorted(config.SCORING_PROFILES), default=None)
    p.add_argument("--log-level", default=os.environ.get("POOL_HEALTH_LOG_LEVEL", "INFO"))
    p.add_argument("--log-file", default=None)
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logger(args.log_level, args.log_file)

    overrides = {}
    if args.batch_size:
        overrides["batch_size"] = args.batch_size
    if args.profile:
        overrides["profile"] = args.profile
    pipeline = build_pipeline(os.environ, data_dir=args.data_dir, **overrides)

    while True:
        try:
            pipeline.run_cycle()
        except CycleInProgress as exc:
            LOGGER.warning("%s", exc)
        except CursorPersistError:
            LOGGER.critical("Rotation cursor not saved; the next cycle may repeat this batch")
            if args.once:
                return 1
        except Exception:
            if args.once:
                raise
            LOGGER.exception("Ingestion cycle failed; retrying in %ds", args.interval)
        if args.once:
            return 0
        time.sleep(args.interval)


if __name__ == "__main__":
    raise SystemExit(main())
