"""Configuration settings for Content Publisher with caching utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from threading import RLock
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetadataRule(str, Enum):
    """公開フロントマターへのフィールド出力ルール"""

    ALWAYS = "always"
    NON_EMPTY = "only-if-nonempty"
    EXCLUDED = "excluded"


class MetadataFormat(BaseModel):
    """公開フロントマターの 1 フィールド分のテンプレート"""

    name: str
    template: str
    rule: MetadataRule = MetadataRule.ALWAYS


class LinkTemplates(BaseModel):
    """[[参照]] を置換するリンクテンプレート（上から順に試行）"""

    primary: str = "[{{refer}}]({{pubUrl}}{{anchor}})"
    secondary: str = "[{{refer}}]({{urlPrefix}}{{pubSlug}}{{anchor}})"
    not_found: str = "{{refer}}"

    def try_list(self) -> list[str]:
        """Ordered fallback list used for resolved references"""
        return [self.primary, self.secondary, self.not_found]


DEFAULT_METADATA_FORMATS: list[MetadataFormat] = [
    MetadataFormat(name="title", template="{{file.basename}}"),
    MetadataFormat(name="author", template="{{frontmatter.author}}"),
    MetadataFormat(name="pubDatetime", template="{{pubTime.isoformat()}}"),
    MetadataFormat(name="modDatetime", template="{{modTime.isoformat()}}"),
    MetadataFormat(name="featured", template="false"),
    MetadataFormat(name="slug", template="{{pubSlug}}"),
    MetadataFormat(
        name="draft", template="{{frontmatter.draft}}", rule=MetadataRule.NON_EMPTY
    ),
    MetadataFormat(name="tags", template="{{array(frontmatter.tags)}}"),
    MetadataFormat(
        name="description",
        template="{{frontmatter.description}}",
        rule=MetadataRule.NON_EMPTY,
    ),
]


class Settings(BaseSettings):
    """Content Publisher settings"""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_PUBLISHER_",
        env_file=[".env.test", ".env"],
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Obsidian vault
    vault_path: Path = Path("./vault")
    note_folder: str = ""  # vault 内の公開対象フォルダ

    # Publish destination (e.g. /Users/home/projects/astro/src/content/blog)
    publish_to_ab_folder: str = ""
    url_prefix: str = "/posts/"

    # Template configuration
    slug_template: str = "{{buiSlug}}"
    metadata_formats: list[MetadataFormat] = Field(
        default_factory=lambda: [m.model_copy() for m in DEFAULT_METADATA_FORMATS]
    )
    link_templates: LinkTemplates = Field(default_factory=LinkTemplates)

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # Environment
    environment: str = "personal"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.environment.lower() in ["development", "dev"]

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode"""
        return self.environment.lower() in ["testing", "test"]

    @property
    def note_root(self) -> Path:
        """Absolute location of the publish source folder"""
        return self.vault_path / self.note_folder


_SETTINGS_LOCK = RLock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, refresh: bool = False) -> Settings:
    """Return a cached ``Settings`` instance.

    Parameters
    ----------
    refresh:
        When ``True`` the cached instance is discarded and a new one is created.
    """

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        if refresh or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear the cached settings instance."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


@contextmanager
def override_settings(**overrides: Any) -> Iterator[Settings]:
    """Temporarily override the cached settings within a context."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        previous_settings = _SETTINGS_CACHE

    base_settings = previous_settings or Settings()
    patched_settings = base_settings.model_copy(update=overrides)

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = patched_settings

    try:
        yield patched_settings
    finally:
        with _SETTINGS_LOCK:
            _SETTINGS_CACHE = previous_settings
