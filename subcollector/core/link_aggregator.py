"""URL-keyed link store with Markdown report persistence."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from subcollector.core.models import LinkRecord

LOGGER = logging.getLogger(__name__)

UNCATEGORIZED = "Other"
HISTORY_SOURCE = "history"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
REPORT_URL_RE = re.compile(r"https?://[^\s<>\"]+")


def format_timestamp(value: datetime) -> str:
    """Render a timestamp in the fixed, locale-independent report format."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def _kind_of(record: LinkRecord) -> str:
    return record.kind or UNCATEGORIZED


class LinkAggregator:
    """Deduplicated store of every link seen during one run.

    Not safe for concurrent writers: the pipeline adds batches sequentially.
    """

    def __init__(self) -> None:
        self._links: dict[str, LinkRecord] = {}

    def __len__(self) -> int:
        return len(self._links)

    def __contains__(self, url: object) -> bool:
        return url in self._links

    def add_batch(self, records: Iterable[LinkRecord]) -> None:
        """Insert unseen URLs; for known URLs only refresh ``discovered_at``."""
        for record in records:
            existing = self._links.get(record.url)
            if existing is None:
                self._links[record.url] = record
            else:
                existing.discovered_at = record.discovered_at

    def all_records(self) -> list[LinkRecord]:
        return list(self._links.values())

    def grouped_by_kind(self) -> dict[str, list[LinkRecord]]:
        """Partition records by kind, newest discovery first inside each bucket."""
        buckets: dict[str, list[LinkRecord]] = {}
        for record in self._links.values():
            buckets.setdefault(_kind_of(record), []).append(record)

        grouped: dict[str, list[LinkRecord]] = {}
        for kind in sorted(buckets, key=lambda name: (name == UNCATEGORIZED, name)):
            ordered = sorted(buckets[kind], key=lambda r: r.url)
            ordered.sort(key=lambda r: r.discovered_at, reverse=True)
            grouped[kind] = ordered
        return grouped

    def summary(self) -> dict[str, Any]:
        count_by_kind: dict[str, int] = {}
        for record in self._links.values():
            kind = _kind_of(record)
            count_by_kind[kind] = count_by_kind.get(kind, 0) + 1
        return {"total": len(self._links), "count_by_kind": count_by_kind}

    def clear(self) -> None:
        self._links.clear()

    def hydrate(self, prior_report_text: str | None, now: datetime | None = None) -> int:
        """Seed the store with every URL found in a previously written report."""
        if not prior_report_text:
            return 0
        seeded_at = now or datetime.now(timezone.utc)
        seeded = 0
        for match in REPORT_URL_RE.finditer(prior_report_text):
            url = match.group(0)
            if url in self._links:
                continue
            self._links[url] = LinkRecord(url=url, source=HISTORY_SOURCE, discovered_at=seeded_at)
            seeded += 1
        return seeded

    def load_report(self, path: Path, now: datetime | None = None) -> int:
        """Best-effort hydrate from a report file; never raises."""
        if not path.exists():
            LOGGER.info("No previous report at %s, a new one will be created", path)
            return 0
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Could not read previous report %s: %s", path, exc)
            return 0
        seeded = self.hydrate(text, now=now)
        LOGGER.info("Loaded %s historical links from %s", seeded, path)
        return seeded

    def persist(self, path: Path, now: datetime | None = None) -> Path:
        """Write the full store as a Markdown report, creating parent directories."""
        content = render_report(self, generated_at=now or datetime.now(timezone.utc))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        LOGGER.info("Saved %s links to %s", len(self), path)
        return path


def render_report(aggregator: LinkAggregator, generated_at: datetime) -> str:
    """Render the grouped Markdown report followed by a plain URL list."""
    stats = aggregator.summary()
    grouped = aggregator.grouped_by_kind()

    lines = [
        "# V2Ray/Clash Subscription Links",
        "",
        f"> Last updated: {format_timestamp(generated_at)}",
        f"> Total: {stats['total']} links",
        "",
        "## Statistics",
        "",
    ]
    for kind in grouped:
        lines.append(f"- {kind}: {stats['count_by_kind'][kind]}")
    lines.extend(["", "---", ""])

    for kind, records in grouped.items():
        lines.extend([f"## {kind}", ""])
        for record in records:
            lines.extend([f"### {record.source}", ""])
            if record.description:
                lines.extend([f"**Description:** {record.description}", ""])
            lines.extend(
                [
                    f"**Link:** {record.url}",
                    "",
                    f"*Discovered: {format_timestamp(record.discovered_at)}*",
                    "",
                    "---",
                    "",
                ]
            )

    lines.extend(["## Plain link list", "", "```"])
    lines.extend(sorted(record.url for record in aggregator.all_records()))
    lines.extend(["```", ""])
    return "\n".join(lines)
