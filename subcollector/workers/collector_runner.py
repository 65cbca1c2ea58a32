"""One end-to-end collection run: search, extract, aggregate, validate, patch."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any

from subcollector.analyzers.link_extractor import extract_links, is_valid_url
from subcollector.core.link_aggregator import LinkAggregator
from subcollector.core.run_log import RunLogger
from subcollector.core.settings import CollectorSettings
from subcollector.core.yaml_patcher import SubscriptionConfigPatcher
from subcollector.fetchers.github_repo_search import RepositorySearcher
from subcollector.validators.link_validator import LinkValidator

LOGGER = logging.getLogger(__name__)

SESSION_NAME = "subscription collection"


class CollectorRunner:
    """Drive the pipeline over explicitly passed collaborators.

    The aggregator is mutated only from the sequential per-repository loop;
    the validator and the patcher receive snapshots.
    """

    def __init__(
        self,
        settings: CollectorSettings,
        searcher: RepositorySearcher,
        aggregator: LinkAggregator,
        events: RunLogger,
        validator: LinkValidator | None = None,
        patcher: SubscriptionConfigPatcher | None = None,
    ) -> None:
        self.settings = settings
        self.searcher = searcher
        self.aggregator = aggregator
        self.events = events
        self.validator = validator
        self.patcher = patcher

    async def run(self) -> dict[str, Any]:
        started = time.monotonic()
        self.events.session_start(SESSION_NAME)
        self.events.info(
            "Collection started",
            keywords=self.settings.keywords,
            max_repositories=self.settings.max_repositories,
            min_stars=self.settings.min_stars,
            max_days_since_update=self.settings.max_days_since_update,
            validate_links=self.validator is not None,
        )

        try:
            summary = await self._run(started)
        except Exception as exc:
            self.events.error("Collection failed", error=repr(exc))
            raise

        self.events.success("Collection finished", **summary)
        self.events.session_end(SESSION_NAME, summary["elapsed_seconds"])
        return summary

    async def _run(self, started: float) -> dict[str, Any]:
        output_file = self.settings.output_file
        self.aggregator.load_report(output_file)

        repositories = await self.searcher.search_repositories(
            self.settings.keywords,
            self.settings.max_repositories,
            self.settings.min_stars,
            self.settings.max_days_since_update,
        )
        self.events.success(
            f"Found {len(repositories)} repositories",
            repositories=[repo.full_name for repo in repositories],
        )

        processed = skipped = failed = 0
        for index, repo in enumerate(repositories, start=1):
            LOGGER.info("[%s/%s] Processing %s", index, len(repositories), repo.full_name)
            try:
                readme = await self.searcher.get_readme(repo.full_name)
                if readme is None:
                    skipped += 1
                    continue
                self.aggregator.add_batch(extract_links(readme, repo.full_name))
                processed += 1
            except Exception as exc:  # noqa: BLE001
                failed += 1
                self.events.warning(f"Failed to process {repo.full_name}", error=str(exc))

        self.aggregator.persist(output_file)

        links = [record for record in self.aggregator.all_records() if is_valid_url(record.url)]
        invalid_links = len(self.aggregator) - len(links)
        if invalid_links:
            self.events.warning(f"Skipping {invalid_links} malformed links")

        validated_links: int | None = None
        if self.validator is not None:
            links = await self.validator.validate(links)
            validated_links = len(links)

        config_result: dict[str, Any] | None = None
        if self.patcher is not None:
            backup_path = self.patcher.backup()
            result = self.patcher.apply_links(links)
            config_result = {**asdict(result), "backup": str(backup_path)}

        stats = self.aggregator.summary()
        return {
            "repositories": len(repositories),
            "processed": processed,
            "skipped": skipped,
            "failed": failed,
            "links_total": stats["total"],
            "count_by_kind": stats["count_by_kind"],
            "invalid_links": invalid_links,
            "validated_links": validated_links,
            "output_file": str(output_file),
            "config": config_result,
            "elapsed_seconds": round(time.monotonic() - started, 2),
        }
