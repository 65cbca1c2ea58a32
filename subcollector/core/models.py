"""Shared records passed between the collection stages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class LinkRecord:
    """One discovered subscription URL plus derived metadata.

    ``url`` is the identity key. ``discovered_at`` is the only field that is
    refreshed when the same URL is found again.
    """

    url: str
    source: str
    discovered_at: datetime
    kind: str | None = None
    description: str | None = None


@dataclass(slots=True)
class Repository:
    full_name: str
    url: str
    stars: int
    updated_at: datetime
    description: str | None = None
