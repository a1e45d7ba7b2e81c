import argparse
import logging
import os
import sys
from typing import List, Optional

from .cache_manager import CacheManager
from .config import load_settings
from .exceptions import ConfigError
from .logging_config import configure_logging
from .sync_ranges import EXIT_FATAL, run_sync

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="range-sync",
        description="Keep firewall allow rules in sync with published address ranges",
    )
    ap.add_argument("--config", help="YAML config file (overrides APP_CONFIG_FILE)")
    ap.add_argument("--dry-run", action="store_true", help="log intended changes; modify nothing")
    ap.add_argument("--force", action="store_true", help="ignore stored state and treat every range as new")
    ap.add_argument("--log-level", help="override the configured log level")
    ap.add_argument("--workers", type=int, help="number of sources fetched in parallel")
    ap.add_argument("--list-cache", action="store_true", help="list cached source documents and exit")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.config:
        os.environ["APP_CONFIG_FILE"] = args.config

    # Configure logging early so load_settings() warnings/errors are visible.
    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    configure_logging(args.log_level or settings.log_level, settings.log_dir)

    if args.workers is not None:
        if args.workers < 1:
            logger.error("--workers must be >= 1")
            return EXIT_FATAL
        settings.fetch_workers = args.workers

    if args.list_cache:
        cache_files = CacheManager(settings.cache_dir, use_cache=True).list_cache_files()
        logger.info("Found %s cache files:", len(cache_files))
        for cf in cache_files:
            logger.info("  - %s: %s KB (modified: %s)", cf["key"], cf["size_kb"], cf["modified"])
        return 0

    return run_sync(settings, dry_run=args.dry_run, force=args.force)


if __name__ == "__main__":
    sys.exit(main())
