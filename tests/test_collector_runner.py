from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from subcollector.core.link_aggregator import LinkAggregator
from subcollector.core.models import Repository
from subcollector.core.run_log import RunLogger
from subcollector.core.settings import CollectorSettings
from subcollector.core.yaml_patcher import PINNED_DEFAULT_URL, SubscriptionConfigPatcher
from subcollector.validators.link_validator import LinkValidator
from subcollector.workers.collector_runner import CollectorRunner

UPDATED = datetime(2026, 10, 1, tzinfo=timezone.utc)


class FakeSearcher:
    def __init__(self, readmes: dict[str, str | None | Exception]) -> None:
        self.readmes = readmes
        self.search_calls: list[tuple] = []

    async def search_repositories(
        self,
        keywords: list[str],
        max_count: int,
        min_stars: int,
        max_days_since_update: int,
    ) -> list[Repository]:
        self.search_calls.append((keywords, max_count, min_stars, max_days_since_update))
        return [
            Repository(full_name=name, url=f"https://github.com/{name}", stars=5, updated_at=UPDATED)
            for name in self.readmes
        ]

    async def get_readme(self, full_name: str) -> str | None:
        value = self.readmes[full_name]
        if isinstance(value, Exception):
            raise value
        return value


def _settings(tmp_path: Path, **overrides) -> CollectorSettings:
    values = {
        "output_file": tmp_path / "output" / "subscriptions.md",
        "config_yaml_path": tmp_path / "config.yaml",
        "max_repositories": 5,
    }
    values.update(overrides)
    return CollectorSettings(**values)


READMES: dict[str, str | None | Exception] = {
    "acme/nodes": "clash: https://raw.githubusercontent.com/acme/nodes/main/clash.yaml",
    "acme/empty": None,
    "acme/broken": RuntimeError("README exploded"),
    "acme/more": (
        "vmess https://raw.githubusercontent.com/acme/more/main/v2.txt\n"
        "https://dead.test/x.txt"
    ),
}


@pytest.mark.asyncio
async def test_run_isolates_repository_failures_and_patches_config(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    settings.output_file.parent.mkdir(parents=True)
    settings.output_file.write_text("```\nhttps://old.example.com/sub\n```\n", encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text(
        f"port: 7890\nsub-urls:\n  - {PINNED_DEFAULT_URL}\nmode: rule\n",
        encoding="utf-8",
    )

    searcher = FakeSearcher(READMES)
    runner = CollectorRunner(
        settings=settings,
        searcher=searcher,
        aggregator=LinkAggregator(),
        events=RunLogger(),
        patcher=SubscriptionConfigPatcher(config),
    )
    summary = await runner.run()

    assert searcher.search_calls == [(["free", "v2ray"], 5, 0, 90)]
    assert summary["repositories"] == 4
    assert (summary["processed"], summary["skipped"], summary["failed"]) == (2, 1, 1)
    assert summary["links_total"] == 4
    assert summary["count_by_kind"] == {"Clash": 1, "V2Ray": 2, "Other": 1}
    assert summary["invalid_links"] == 0
    assert summary["validated_links"] is None
    assert summary["config"]["written"] is True
    assert Path(summary["config"]["backup"]).read_text(encoding="utf-8").startswith("port: 7890")

    report = settings.output_file.read_text(encoding="utf-8")
    assert "https://old.example.com/sub" in report
    assert "### acme/nodes" in report

    patched = config.read_text(encoding="utf-8")
    assert patched.startswith(f"port: 7890\nsub-urls:\n  - {PINNED_DEFAULT_URL}\n")
    assert "  - https://old.example.com/sub\n" in patched
    assert "  - https://raw.githubusercontent.com/acme/nodes/main/clash.yaml\n" in patched
    assert "dead.test" in patched
    assert patched.endswith("mode: rule\n")


@pytest.mark.asyncio
async def test_run_with_validator_patches_only_live_links(tmp_path: Path) -> None:
    settings = _settings(tmp_path, validate_links=True)
    config = tmp_path / "config.yaml"
    config.write_text("sub-urls:\n", encoding="utf-8")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "dead.test":
            return httpx.Response(404)
        return httpx.Response(200, text="nodes")

    runner = CollectorRunner(
        settings=settings,
        searcher=FakeSearcher({"acme/more": READMES["acme/more"]}),
        aggregator=LinkAggregator(),
        events=RunLogger(),
        validator=LinkValidator(transport=httpx.MockTransport(handler)),
        patcher=SubscriptionConfigPatcher(config),
    )
    summary = await runner.run()

    assert summary["links_total"] == 2
    assert summary["validated_links"] == 1
    assert config.read_text(encoding="utf-8") == (
        f"sub-urls:\n  - {PINNED_DEFAULT_URL}\n"
        "  - https://raw.githubusercontent.com/acme/more/main/v2.txt\n"
    )
    assert settings.output_file.exists()


@pytest.mark.asyncio
async def test_run_keeps_malformed_links_out_of_config(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    config = tmp_path / "config.yaml"
    config.write_text("sub-urls:\n", encoding="utf-8")
    readme = (
        "clash feed https://[broken/feed.txt\n"
        "https://raw.githubusercontent.com/acme/x/main/ok.yaml"
    )

    runner = CollectorRunner(
        settings=settings,
        searcher=FakeSearcher({"acme/x": readme}),
        aggregator=LinkAggregator(),
        events=RunLogger(),
        patcher=SubscriptionConfigPatcher(config),
    )
    summary = await runner.run()

    assert summary["links_total"] == 2
    assert summary["invalid_links"] == 1
    assert config.read_text(encoding="utf-8") == (
        f"sub-urls:\n  - {PINNED_DEFAULT_URL}\n"
        "  - https://raw.githubusercontent.com/acme/x/main/ok.yaml\n"
    )
    assert "https://[broken/feed.txt" in settings.output_file.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_run_without_patcher_skips_config(tmp_path: Path) -> None:
    settings = _settings(tmp_path, config_yaml_path=None)
    runner = CollectorRunner(
        settings=settings,
        searcher=FakeSearcher({"acme/nodes": READMES["acme/nodes"]}),
        aggregator=LinkAggregator(),
        events=RunLogger(),
    )
    summary = await runner.run()
    assert summary["config"] is None
    assert summary["links_total"] == 1
    assert not (tmp_path / "config.yaml").exists()


@pytest.mark.asyncio
async def test_run_propagates_config_failures(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    runner = CollectorRunner(
        settings=settings,
        searcher=FakeSearcher({"acme/nodes": READMES["acme/nodes"]}),
        aggregator=LinkAggregator(),
        events=RunLogger(),
        patcher=SubscriptionConfigPatcher(tmp_path / "missing.yaml"),
    )
    with pytest.raises(FileNotFoundError):
        await runner.run()
    assert settings.output_file.exists()
