#!/usr/bin/env python3
"""
Collect subscription links from GitHub READMEs into a report and config.yaml.

Usage:
  python scripts/collect_subscriptions.py
  python scripts/collect_subscriptions.py --validate --max-repos 10
  python scripts/collect_subscriptions.py --no-config-update --output out/links.md
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from subcollector.core.link_aggregator import LinkAggregator
from subcollector.core.run_log import RunLogger, configure_logging
from subcollector.core.settings import load_settings
from subcollector.core.yaml_patcher import SubscriptionConfigPatcher
from subcollector.fetchers.github_repo_search import GitHubRepoSearcher
from subcollector.validators.link_validator import LinkValidator
from subcollector.workers.collector_runner import CollectorRunner

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect V2Ray/Clash subscription links.")
    parser.add_argument(
        "--validate",
        dest="validate",
        action="store_true",
        default=None,
        help="Check links for liveness before patching the config (default: VALIDATE_LINKS).",
    )
    parser.add_argument(
        "--no-validate",
        dest="validate",
        action="store_false",
        help="Skip link validation.",
    )
    parser.add_argument("--output", default=None, help="Markdown report path (default: OUTPUT_FILE).")
    parser.add_argument(
        "--config-yaml", default=None, help="YAML config to patch (default: CONFIG_YAML_PATH)."
    )
    parser.add_argument(
        "--no-config-update", action="store_true", help="Do not back up or patch the YAML config."
    )
    parser.add_argument("--max-repos", type=int, default=None, help="Repository cap for the search.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level.",
    )
    return parser.parse_args(argv)


async def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()

    overrides: dict[str, object] = {}
    if args.validate is not None:
        overrides["validate_links"] = args.validate
    if args.output:
        overrides["output_file"] = Path(args.output)
    if args.config_yaml:
        overrides["config_yaml_path"] = Path(args.config_yaml)
    if args.no_config_update:
        overrides["config_yaml_path"] = None
    if args.max_repos is not None:
        overrides["max_repositories"] = args.max_repos
    if overrides:
        settings = settings.model_copy(update=overrides)

    log_path = configure_logging(args.log_level, settings.log_dir, settings.enable_file_log)
    if log_path is not None:
        LOGGER.info("Writing log file %s", log_path)

    validator = None
    if settings.validate_links:
        validator = LinkValidator(
            timeout_seconds=settings.validation_timeout_seconds,
            concurrency=settings.validation_concurrency,
        )
    patcher = None
    if settings.config_yaml_path is not None:
        patcher = SubscriptionConfigPatcher(settings.config_yaml_path)

    runner = CollectorRunner(
        settings=settings,
        searcher=GitHubRepoSearcher(token=settings.github_token or ""),
        aggregator=LinkAggregator(),
        events=RunLogger(),
        validator=validator,
        patcher=patcher,
    )
    try:
        summary = await runner.run()
    except Exception as exc:  # noqa: BLE001
        LOGGER.error("Collection run failed: %s", exc)
        return 1

    print(json.dumps({"summary": summary}, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run()))
