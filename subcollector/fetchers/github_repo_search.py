"""GitHub repository search and README download."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from subcollector.core.models import Repository

LOGGER = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
SEARCH_PAGE_SIZE = 100
RAW_MEDIA_TYPE = "application/vnd.github.raw"


class SearchError(Exception):
    """Raised for recoverable GitHub API errors."""


class RepositorySearcher(Protocol):
    async def search_repositories(
        self,
        keywords: list[str],
        max_count: int,
        min_stars: int,
        max_days_since_update: int,
    ) -> list[Repository]: ...

    async def get_readme(self, full_name: str) -> str | None: ...


class AsyncRateLimiter:
    """Token-interval rate limiter for async request pacing."""

    def __init__(self, rate_per_second: float) -> None:
        self.rate = max(rate_per_second, 0.001)
        self.interval = 1.0 / self.rate
        self._next_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            wait_for = self._next_time - now
            if wait_for > 0:
                await asyncio.sleep(wait_for)
                now = loop.time()
            self._next_time = now + self.interval


def parse_github_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def build_search_query(keywords: list[str], min_stars: int, pushed_since: datetime) -> str:
    terms = [keyword for keyword in keywords if keyword]
    terms.append(f"stars:>={min_stars}")
    terms.append(f"pushed:>={pushed_since.date().isoformat()}")
    return " ".join(terms)


def repository_from_item(item: dict[str, Any]) -> Repository | None:
    full_name = item.get("full_name")
    if not isinstance(full_name, str) or not full_name:
        return None
    updated_at = parse_github_datetime(item.get("pushed_at")) or parse_github_datetime(
        item.get("updated_at")
    )
    if updated_at is None:
        return None
    stars = item.get("stargazers_count")
    return Repository(
        full_name=full_name,
        url=item.get("html_url") or f"https://github.com/{full_name}",
        stars=stars if isinstance(stars, int) else 0,
        updated_at=updated_at,
        description=item.get("description"),
    )


class GitHubRepoSearcher:
    """Thin GitHub REST client used as the collector's repository source."""

    def __init__(
        self,
        token: str | None = None,
        rate_limit: float = 1.0,
        timeout_seconds: float = 20.0,
        attempts: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token if token is not None else os.environ.get("GITHUB_TOKEN", "").strip()
        self.timeout_seconds = timeout_seconds
        self.attempts = max(1, attempts)
        self._limiter = AsyncRateLimiter(rate_limit)
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "subcollector (+https://github.com/subcollector/subcollector)",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers=self._headers(),
            transport=self._transport,
        )

    async def _api_get(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, Any] | None = None,
        accept: str | None = None,
    ) -> httpx.Response:
        """GET with retry; 404 responses are returned to the caller untouched."""
        headers = {"Accept": accept} if accept else None
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                await self._limiter.acquire()
                response = await client.get(path, params=params, headers=headers)
                if response.status_code == 404:
                    return response
                if response.status_code >= 500:
                    raise SearchError(f"GitHub API server error {response.status_code} for {path}")
                if response.status_code in {403, 429}:
                    raise SearchError(f"Rate limit or forbidden {response.status_code} for {path}")
                if response.status_code >= 400:
                    body = response.text[:200]
                    raise SearchError(f"GitHub API HTTP {response.status_code} for {path}: {body}")
                return response
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt == self.attempts:
                    break
                await asyncio.sleep(min(10.0, 0.8 * (2 ** (attempt - 1))))
        raise SearchError(f"Failed API request {path}: {last_error}") from last_error

    async def search_repositories(
        self,
        keywords: list[str],
        max_count: int,
        min_stars: int,
        max_days_since_update: int,
    ) -> list[Repository]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_days_since_update)
        query = build_search_query(keywords, min_stars, cutoff)
        LOGGER.info("Searching GitHub: %s (max=%s)", query, max_count)

        repositories: list[Repository] = []
        seen: set[str] = set()
        page = 1
        async with self._client() as client:
            while len(repositories) < max_count:
                response = await self._api_get(
                    client,
                    "/search/repositories",
                    params={
                        "q": query,
                        "sort": "updated",
                        "order": "desc",
                        "per_page": min(SEARCH_PAGE_SIZE, max_count),
                        "page": page,
                    },
                )
                if response.status_code == 404:
                    raise SearchError("GitHub search endpoint not found")
                items = response.json().get("items") or []
                for item in items:
                    repository = repository_from_item(item)
                    if repository is None or repository.full_name in seen:
                        continue
                    if repository.stars < min_stars or repository.updated_at < cutoff:
                        continue
                    seen.add(repository.full_name)
                    repositories.append(repository)
                    if len(repositories) >= max_count:
                        break
                if len(items) < min(SEARCH_PAGE_SIZE, max_count):
                    break
                page += 1

        LOGGER.info("Found %s repositories", len(repositories))
        return repositories

    async def get_readme(self, full_name: str) -> str | None:
        async with self._client() as client:
            response = await self._api_get(
                client, f"/repos/{full_name}/readme", accept=RAW_MEDIA_TYPE
            )
        if response.status_code == 404:
            LOGGER.debug("No README for %s", full_name)
            return None
        return response.text
