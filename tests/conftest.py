"""
共通フィクスチャと収集設定。

- テスト向けの環境変数を毎テスト自動設定（autouse）
- ルートを `sys.path` に追加して `import content_publisher.*` を解決
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# プロジェクトルート（このファイルの親の親）をパスに追加
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=9)))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """テスト用の環境変数を毎テストで設定し、設定キャッシュを破棄する。"""
    from content_publisher.config import clear_settings_cache

    env: dict[str, str] = {
        "CONTENT_PUBLISHER_VAULT_PATH": "/tmp/test_vault",
        "CONTENT_PUBLISHER_NOTE_FOLDER": "blog",
        "CONTENT_PUBLISHER_URL_PREFIX": "https://example.com/posts/",
        "CONTENT_PUBLISHER_ENVIRONMENT": "testing",
    }
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    clear_settings_cache()
    yield
    clear_settings_cache()


class MemoryStore:
    """メモリ上のノートストア（DocumentStore / ReferenceResolver）"""

    def __init__(self) -> None:
        self.texts: dict[str, str] = {}
        self.frontmatters: dict[str, dict[str, Any] | None] = {}
        self.frontmatter_reads: dict[str, int] = {}

    def add(
        self, path: str, body: str = "", frontmatter: dict[str, Any] | None = None
    ):
        from content_publisher.publisher import Document

        self.texts[path] = body
        self.frontmatters[path] = frontmatter
        return Document(path=path)

    async def read(self, document) -> str:
        return self.texts[document.path]

    def get_frontmatter(self, document) -> dict[str, Any] | None:
        self.frontmatter_reads[document.path] = (
            self.frontmatter_reads.get(document.path, 0) + 1
        )
        return self.frontmatters.get(document.path)

    async def update_header(self, document, mutator, *, pin_mtime=False):
        frontmatter = dict(self.frontmatters.get(document.path) or {})
        mutator(frontmatter)
        self.frontmatters[document.path] = frontmatter
        return frontmatter

    def resolve(self, link_text: str, source):
        from content_publisher.publisher import Document

        for path in self.texts:
            if Path(path).stem == link_text or path == link_text:
                return Document(path=path)
        return None


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def publish_settings(tmp_path):
    from content_publisher.config import Settings

    return Settings(
        vault_path=tmp_path / "vault",
        note_folder="blog",
        publish_to_ab_folder=str(tmp_path / "site"),
        url_prefix="https://example.com/posts/",
    )


@pytest.fixture
def processor_manager(publish_settings, memory_store):
    from content_publisher.publisher.template_system import (
        MetadataTemplateProcessorManager,
    )

    return MetadataTemplateProcessorManager(
        publish_settings, memory_store, clock=lambda: FIXED_NOW
    )


@pytest.fixture
def vault_tmp(tmp_path) -> Path:
    """一時ディレクトリ上の Vault と公開先フォルダ"""
    vault = tmp_path / "vault"
    (vault / "blog" / "guides").mkdir(parents=True)
    (vault / ".obsidian").mkdir()
    (tmp_path / "site").mkdir()
    return vault
