"""Heuristic extraction of subscription links from README text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlparse

from subcollector.core.models import LinkRecord

LOGGER = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 100
ELLIPSIS = "..."

LINK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"https?://raw\.githubusercontent\.com/[^\s<>\")]+", re.IGNORECASE),
    re.compile(r"https?://github\.com/[^/\s]+/[^/\s]+/blob/[^\s<>\")]+", re.IGNORECASE),
    re.compile(r"https?://[^\s<>\"]+\.(?:yaml|yml|txt|conf|json|v2ray|clash)", re.IGNORECASE),
)
CONTEXT_URL_RE = re.compile(r"https?://\S+")
MARKUP_RE = re.compile(r"[#*`\[\]()]")


@dataclass(frozen=True)
class KindRule:
    kind: str
    keywords: tuple[str, ...]


# Evaluated in order; the first rule with a matching keyword wins.
KIND_RULES: tuple[KindRule, ...] = (
    KindRule("V2Ray", ("v2ray", "vmess", "vless", "trojan")),
    KindRule("Clash", ("clash", "clash.yaml", "clash.yml")),
    KindRule("Shadowsocks", ("shadowsocks", "ss", "ssr")),
    KindRule("Subscription", ("订阅", "subscription", "sub")),
)


def infer_kind(
    line: str,
    previous_line: str,
    rules: tuple[KindRule, ...] = KIND_RULES,
) -> str | None:
    """Classify a link from the line it sits on plus the line before it."""
    context = f"{previous_line} {line}".lower()
    for rule in rules:
        if any(keyword.lower() in context for keyword in rule.keywords):
            return rule.kind
    return None


def extract_description(line: str, previous_line: str) -> str | None:
    """Strip URLs and Markdown punctuation from the two-line context."""
    context = f"{previous_line} {line}"
    description = MARKUP_RE.sub("", CONTEXT_URL_RE.sub("", context)).strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[: MAX_DESCRIPTION_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    return description or None


def extract_links(
    text: str,
    source: str,
    now: datetime | None = None,
    kind_rules: tuple[KindRule, ...] = KIND_RULES,
) -> list[LinkRecord]:
    """Extract candidate subscription links from free-form README text.

    Pure and deterministic for a fixed ``now``. Duplicates are dropped per call
    only; global deduplication belongs to the aggregator.
    """
    discovered_at = now or datetime.now(timezone.utc)
    links: list[LinkRecord] = []
    seen: set[str] = set()

    lines = (text or "").split("\n")
    for index, line in enumerate(lines):
        previous_line = lines[index - 1] if index > 0 else ""
        for pattern in LINK_PATTERNS:
            for match in pattern.finditer(line):
                url = match.group(0).strip()
                if url in seen:
                    continue
                seen.add(url)
                links.append(
                    LinkRecord(
                        url=url,
                        source=source,
                        discovered_at=discovered_at,
                        kind=infer_kind(line, previous_line, kind_rules),
                        description=extract_description(line, previous_line),
                    )
                )

    LOGGER.debug("Extracted %s links from %s", len(links), source)
    return links


def is_valid_url(url: str) -> bool:
    """Return true when the URL parses with a scheme and a network location."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
