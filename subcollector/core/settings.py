"""Environment-driven settings for a collection run."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_KEYWORDS = ("free", "v2ray")


class CollectorSettings(BaseModel):
    github_token: str | None = None
    keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    output_file: Path = Path("./output/subscriptions.md")
    max_repositories: int = Field(default=30, ge=1)
    config_yaml_path: Path | None = Path("./config.yaml")
    min_stars: int = Field(default=0, ge=0)
    max_days_since_update: int = Field(default=90, ge=1)
    validate_links: bool = False
    validation_timeout_seconds: float = Field(default=10.0, gt=0)
    validation_concurrency: int = Field(default=10, ge=1)
    log_dir: Path = Path("./logs")
    enable_file_log: bool = True


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _keywords(raw: str | None) -> list[str]:
    if raw is None:
        return list(DEFAULT_KEYWORDS)
    return [keyword.strip() for keyword in raw.split(",") if keyword.strip()]


def load_settings(
    env: Mapping[str, str] | None = None,
    use_dotenv: bool = True,
) -> CollectorSettings:
    """Build settings from the process environment (after ``.env``) or a mapping."""
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    config_path = env.get("CONFIG_YAML_PATH")
    if config_path is None:
        config_yaml_path: Path | None = Path("./config.yaml")
    else:
        config_yaml_path = Path(config_path.strip()) if config_path.strip() else None

    timeout_ms = _int_env(env, "LINK_VALIDATION_TIMEOUT", 10000)

    return CollectorSettings(
        github_token=env.get("GITHUB_TOKEN", "").strip() or None,
        keywords=_keywords(env.get("SEARCH_KEYWORDS")),
        output_file=Path(env.get("OUTPUT_FILE") or "./output/subscriptions.md"),
        max_repositories=_int_env(env, "MAX_REPOSITORIES", 30),
        config_yaml_path=config_yaml_path,
        min_stars=_int_env(env, "MIN_STARS", 0),
        max_days_since_update=_int_env(env, "MAX_DAYS_SINCE_UPDATE", 90),
        validate_links=env.get("VALIDATE_LINKS", "").strip().lower() == "true",
        validation_timeout_seconds=timeout_ms / 1000,
        validation_concurrency=_int_env(env, "LINK_VALIDATION_CONCURRENCY", 10),
        log_dir=Path(env.get("LOG_DIR") or "./logs"),
        enable_file_log=env.get("ENABLE_FILE_LOG", "").strip().lower() != "false",
    )
