"""Comment-preserving rewrite of the ``sub-urls`` list in a YAML config."""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from subcollector.core.models import LinkRecord

LOGGER = logging.getLogger(__name__)

PINNED_DEFAULT_URL = "https://misub.907737.xyz/allnodes"
SECTION_KEY = "sub-urls"
SECTION_MARKER = f"{SECTION_KEY}:"
ENTRY_INDENT = "  - "

RELEVANT_URL_FRAGMENTS = (
    "raw.githubusercontent.com",
    "gist.githubusercontent.com",
    "github.com",
    "/sub",
    "subscription",
)
RELEVANT_SUFFIX_RE = re.compile(r"\.(?:txt|yaml|yml|conf|json)$", re.IGNORECASE)


class ConfigStructureError(Exception):
    pass


class _SectionState(Enum):
    BEFORE_SECTION = "before"
    INSIDE_SECTION = "inside"
    AFTER_SECTION = "after"


class _LineKind(Enum):
    PASSENGER = "passenger"
    ENTRY = "entry"
    BOUNDARY = "boundary"


@dataclass(slots=True)
class PatchResult:
    existing_count: int
    added_count: int
    total_count: int
    section_found: bool
    written: bool


def is_relevant_url(url: str) -> bool:
    """Keep only URLs that look like hosted subscription feeds."""
    if any(fragment in url for fragment in RELEVANT_URL_FRAGMENTS):
        return True
    return bool(RELEVANT_SUFFIX_RE.search(url))


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _classify_section_line(line: str, marker_indent: int) -> _LineKind:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return _LineKind.PASSENGER
    indent = _indent_of(line)
    if indent > marker_indent:
        return _LineKind.ENTRY
    if indent == marker_indent and stripped.startswith("-"):
        return _LineKind.ENTRY
    return _LineKind.BOUNDARY


def _find_section(node: Any) -> Any:
    """Return the value of the first ``sub-urls`` key, searching nested mappings."""
    if isinstance(node, dict):
        if SECTION_KEY in node:
            return node[SECTION_KEY]
        children = list(node.values())
    elif isinstance(node, list):
        children = node
    else:
        return None
    for child in children:
        found = _find_section(child)
        if found is not None:
            return found
    return None


def _existing_urls(document: dict[str, Any]) -> list[str]:
    entries = _find_section(document)
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, str)]


class SubscriptionConfigPatcher:
    """Merge collected links into the ``sub-urls`` list of one config file.

    Only entry lines of the list section are replaced. Everything else,
    including comments and blank lines inside the section, is copied through.
    The pinned default URL is always written first and never deduplicated
    against the other entries.
    """

    def __init__(self, config_path: Path | str) -> None:
        self.config_path = Path(config_path)

    def _read(self) -> tuple[str, dict[str, Any]]:
        try:
            text = self.config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigStructureError(f"Cannot read config {self.config_path}: {exc}") from exc
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigStructureError(f"Config {self.config_path} is not valid YAML: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigStructureError(f"Config {self.config_path} does not contain a mapping")
        return text, document

    def apply_links(self, links: Iterable[LinkRecord | str]) -> PatchResult:
        original_text, document = self._read()

        existing = {url for url in _existing_urls(document) if url != PINNED_DEFAULT_URL}
        incoming = {
            url
            for url in (link if isinstance(link, str) else link.url for link in links)
            if url != PINNED_DEFAULT_URL and is_relevant_url(url)
        }
        merged = sorted(existing | incoming)

        patched_text, section_found = self.render(original_text, merged)
        result = PatchResult(
            existing_count=len(existing),
            added_count=len(merged) - len(existing),
            total_count=len(merged) + 1,
            section_found=section_found,
            written=False,
        )
        if not section_found:
            LOGGER.warning(
                "No '%s' section in %s; config left unchanged", SECTION_MARKER, self.config_path
            )
            return result

        self.config_path.write_text(patched_text, encoding="utf-8")
        result.written = True
        LOGGER.info(
            "Updated %s: existing=%s added=%s total=%s",
            self.config_path,
            result.existing_count,
            result.added_count,
            result.total_count,
        )
        return result

    def render(self, original_text: str, urls: Iterable[str]) -> tuple[str, bool]:
        """Rewrite the list section of ``original_text``.

        Returns the new text and whether the section marker was found. Old
        entry lines are dropped; the rewritten block is injected right before
        the first line that closes the section, or appended when the section
        runs to the end of the document.
        """
        has_trailing_newline = original_text.endswith("\n")
        body = original_text[:-1] if has_trailing_newline else original_text
        lines = body.split("\n") if body else []

        state = _SectionState.BEFORE_SECTION
        marker_indent = 0
        block: list[str] = []
        output: list[str] = []

        for line in lines:
            if state is _SectionState.BEFORE_SECTION:
                output.append(line)
                if line.strip() == SECTION_MARKER:
                    state = _SectionState.INSIDE_SECTION
                    marker_indent = _indent_of(line)
                    prefix = line[:marker_indent]
                    line_end = "\r" if line.endswith("\r") else ""
                    block = [
                        f"{prefix}{ENTRY_INDENT}{url}{line_end}"
                        for url in [PINNED_DEFAULT_URL, *urls]
                    ]
                continue

            if state is _SectionState.INSIDE_SECTION:
                kind = _classify_section_line(line, marker_indent)
                if kind is _LineKind.PASSENGER:
                    output.append(line)
                    continue
                if kind is _LineKind.ENTRY:
                    continue
                output.extend(block)
                state = _SectionState.AFTER_SECTION

            output.append(line)

        if state is _SectionState.INSIDE_SECTION:
            output.extend(block)

        text = "\n".join(output)
        if has_trailing_newline:
            text += "\n"
        return text, state is not _SectionState.BEFORE_SECTION

    def backup(self, now: datetime | None = None) -> Path:
        """Copy the config byte-for-byte to ``<name>.backup.<epoch ms>``."""
        stamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
        target = self.config_path.with_name(f"{self.config_path.name}.backup.{stamp}")
        suffix = 1
        while target.exists():
            target = self.config_path.with_name(f"{self.config_path.name}.backup.{stamp}.{suffix}")
            suffix += 1
        shutil.copy2(self.config_path, target)
        LOGGER.info("Backed up config to %s", target)
        return target
