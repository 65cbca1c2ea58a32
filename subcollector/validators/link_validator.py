"""Concurrent liveness checks for subscription links."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import httpx

from subcollector.core.models import LinkRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CONCURRENCY = 10
MAX_REDIRECTS = 5
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
TEXTUAL_CONTENT_HINTS = ("json", "yaml", "xml", "javascript")
DNS_ERROR_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    HTTP_STATUS = "http-status"
    DNS_FAILURE = "dns-failure"
    CONNECTION_REFUSED = "connection-refused"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    record: LinkRecord
    is_live: bool
    failure_reason: FailureReason | None = None
    detail: str = ""


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def classify_connect_error(exc: BaseException) -> FailureReason:
    """Tell resolver failures from refused connections by walking the cause chain."""
    chain = _exception_chain(exc)
    if any(isinstance(item, socket.gaierror) for item in chain):
        return FailureReason.DNS_FAILURE
    if any(isinstance(item, ConnectionRefusedError) for item in chain):
        return FailureReason.CONNECTION_REFUSED

    message = " ".join(str(item) for item in chain).lower()
    if any(hint in message for hint in DNS_ERROR_HINTS):
        return FailureReason.DNS_FAILURE
    if "connection refused" in message or "errno 111" in message:
        return FailureReason.CONNECTION_REFUSED
    return FailureReason.OTHER


def is_textual(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "").lower()
    if not content_type:
        return True
    if content_type.startswith("text/"):
        return True
    return any(hint in content_type for hint in TEXTUAL_CONTENT_HINTS)


def failure_histogram(outcomes: Sequence[ValidationOutcome]) -> dict[str, int]:
    """Count failed outcomes per failure reason."""
    counts: dict[str, int] = {}
    for outcome in outcomes:
        if outcome.is_live or outcome.failure_reason is None:
            continue
        key = outcome.failure_reason.value
        counts[key] = counts.get(key, 0) + 1
    return counts


class LinkValidator:
    """Fetch links in fixed-size batches and keep the ones that answer.

    At most ``concurrency`` requests are in flight; each batch is awaited in
    full before the next one starts.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        concurrency: int = DEFAULT_CONCURRENCY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.concurrency = max(1, concurrency)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            transport=self._transport,
        )

    async def _check_one(self, client: httpx.AsyncClient, record: LinkRecord) -> ValidationOutcome:
        try:
            response = await asyncio.wait_for(client.get(record.url), self.timeout_seconds)
        except asyncio.TimeoutError:
            return ValidationOutcome(
                record, False, FailureReason.TIMEOUT, f"no response within {self.timeout_seconds}s"
            )
        except httpx.TimeoutException as exc:
            return ValidationOutcome(record, False, FailureReason.TIMEOUT, str(exc))
        except httpx.ConnectError as exc:
            return ValidationOutcome(record, False, classify_connect_error(exc), str(exc))
        except Exception as exc:  # noqa: BLE001
            return ValidationOutcome(record, False, FailureReason.OTHER, str(exc) or type(exc).__name__)

        if not 200 <= response.status_code < 400:
            return ValidationOutcome(
                record, False, FailureReason.HTTP_STATUS, f"HTTP {response.status_code}"
            )
        if is_textual(response) and not response.content:
            return ValidationOutcome(record, False, FailureReason.OTHER, "empty body")
        return ValidationOutcome(record, True)

    async def check(self, records: Sequence[LinkRecord]) -> list[ValidationOutcome]:
        """Return one outcome per record, in input order."""
        total = len(records)
        LOGGER.info(
            "Validating %s links (timeout=%ss, concurrency=%s)",
            total,
            self.timeout_seconds,
            self.concurrency,
        )
        started = time.monotonic()
        outcomes: list[ValidationOutcome] = []

        async with self._client() as client:
            for start in range(0, total, self.concurrency):
                batch = records[start : start + self.concurrency]
                batch_outcomes = await asyncio.gather(
                    *(self._check_one(client, record) for record in batch)
                )
                outcomes.extend(batch_outcomes)

                for offset, outcome in enumerate(batch_outcomes, start=start + 1):
                    short_url = outcome.record.url[:60]
                    if outcome.is_live:
                        LOGGER.info("[%s/%s] live %s", offset, total, short_url)
                    else:
                        LOGGER.info(
                            "[%s/%s] dead %s (%s: %s)",
                            offset,
                            total,
                            short_url,
                            outcome.failure_reason.value if outcome.failure_reason else "",
                            outcome.detail,
                        )
                LOGGER.info(
                    "Validation progress: %s/%s (%.1f%%)",
                    len(outcomes),
                    total,
                    len(outcomes) / total * 100,
                )

        live = sum(1 for outcome in outcomes if outcome.is_live)
        LOGGER.info(
            "Validation finished: live=%s dead=%s live_rate=%.1f%% elapsed=%.2fs",
            live,
            total - live,
            (live / total * 100) if total else 0.0,
            time.monotonic() - started,
        )
        histogram = failure_histogram(outcomes)
        if histogram:
            LOGGER.info("Failure reasons: %s", histogram)
        return outcomes

    async def validate(self, records: Sequence[LinkRecord]) -> list[LinkRecord]:
        """Return the live subset, preserving input order."""
        outcomes = await self.check(records)
        return [outcome.record for outcome in outcomes if outcome.is_live]
