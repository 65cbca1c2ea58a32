from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from subcollector.core.settings import CollectorSettings, load_settings


def test_defaults_from_empty_environment() -> None:
    settings = load_settings(env={})

    assert settings.github_token is None
    assert settings.keywords == ["free", "v2ray"]
    assert settings.output_file == Path("./output/subscriptions.md")
    assert settings.max_repositories == 30
    assert settings.config_yaml_path == Path("./config.yaml")
    assert settings.min_stars == 0
    assert settings.max_days_since_update == 90
    assert settings.validate_links is False
    assert settings.validation_timeout_seconds == 10.0
    assert settings.validation_concurrency == 10
    assert settings.log_dir == Path("./logs")
    assert settings.enable_file_log is True


def test_environment_overrides() -> None:
    settings = load_settings(
        env={
            "GITHUB_TOKEN": " ghp_x ",
            "SEARCH_KEYWORDS": "clash, vmess ,,",
            "OUTPUT_FILE": "out/links.md",
            "MAX_REPOSITORIES": "12",
            "CONFIG_YAML_PATH": "",
            "MIN_STARS": "3",
            "MAX_DAYS_SINCE_UPDATE": "14",
            "VALIDATE_LINKS": "TRUE",
            "LINK_VALIDATION_TIMEOUT": "2500",
            "LINK_VALIDATION_CONCURRENCY": "4",
            "LOG_DIR": "var/log",
            "ENABLE_FILE_LOG": "false",
        }
    )

    assert settings.github_token == "ghp_x"
    assert settings.keywords == ["clash", "vmess"]
    assert settings.output_file == Path("out/links.md")
    assert settings.max_repositories == 12
    assert settings.config_yaml_path is None
    assert settings.min_stars == 3
    assert settings.max_days_since_update == 14
    assert settings.validate_links is True
    assert settings.validation_timeout_seconds == 2.5
    assert settings.validation_concurrency == 4
    assert settings.log_dir == Path("var/log")
    assert settings.enable_file_log is False


def test_invalid_number_names_the_variable() -> None:
    with pytest.raises(ValueError, match="MAX_REPOSITORIES"):
        load_settings(env={"MAX_REPOSITORIES": "many"})


def test_out_of_range_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_settings(env={"LINK_VALIDATION_CONCURRENCY": "0"})
    with pytest.raises(ValidationError):
        CollectorSettings(min_stars=-1)


def test_process_environment_is_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_REPOSITORIES", "7")
    monkeypatch.setenv("SEARCH_KEYWORDS", "trojan")
    settings = load_settings(use_dotenv=False)
    assert settings.max_repositories == 7
    assert settings.keywords == ["trojan"]
