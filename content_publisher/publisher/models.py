"""
Publisher data models
"""

from dataclasses import dataclass, field
from pathlib import PurePosixPath


class NoteMeta:
    """ノートのフロントマターに永続化される公開用キー"""

    VIEW_URL = "content-publish-url"
    PUB_TS = "content-publish-ts"
    MOD_TS = "content-update-ts"


@dataclass
class Document:
    """Vault 内のノート（パスで一意に識別される）"""

    path: str  # vault からの相対パス (POSIX)
    mtime: float = 0.0

    @property
    def basename(self) -> str:
        """File name without extension"""
        return PurePosixPath(self.path).stem

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def extension(self) -> str:
        return PurePosixPath(self.path).suffix.lstrip(".")

    @property
    def parent(self) -> str:
        parent = PurePosixPath(self.path).parent.as_posix()
        return "" if parent == "." else parent


@dataclass(frozen=True)
class Reference:
    """本文中の [[target#anchor|alias]] 参照"""

    raw: str  # [[ ]] の内側
    target: str
    anchor: str | None = None
    alias: str | None = None
    start: int = 0
    end: int = 0

    @property
    def refer_text(self) -> str:
        """Display text: alias if given, otherwise the raw reference text"""
        return self.alias if self.alias else self.raw


@dataclass
class PublishResult:
    """一括公開の集計結果"""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed
