"""Local Obsidian vault storage, reference resolution and publish output"""

import os
import re
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import Any

import aiofiles
import structlog
import yaml

from content_publisher.config import Settings
from content_publisher.publisher.models import Document
from content_publisher.publisher.template_system.base import FrontmatterMutator
from content_publisher.utils.mixins import LoggerMixin

logger = structlog.get_logger(__name__)

FRONTMATTER_BLOCK = re.compile(r"^---[ \t]*\n(?:(.*?)\n)?---[ \t]*(?:\n|$)", re.DOTALL)


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """ノートをフロントマター辞書と本文に分ける"""
    match = FRONTMATTER_BLOCK.match(text)
    if not match:
        return None, text
    source = match.group(1) or ""
    data = yaml.safe_load(source) if source.strip() else {}
    if not isinstance(data, dict):
        data = {}
    return data, text[match.end() :]


def join_frontmatter(frontmatter: dict[str, Any], body: str) -> str:
    dumped = yaml.safe_dump(frontmatter, allow_unicode=True, sort_keys=False)
    return f"---\n{dumped}---\n{body}"


class LocalVault(LoggerMixin):
    """ファイルシステム上の Obsidian Vault"""

    def __init__(self, vault_path: str | Path):
        self.vault_path = Path(vault_path)
        self._frontmatter_cache: dict[str, tuple[float, dict[str, Any] | None]] = {}
        self._index: dict[str, list[Document]] | None = None

    def absolute_path(self, document: Document) -> Path:
        return self.vault_path / document.path

    def document(self, path: str | Path) -> Document:
        """Vault 相対パスまたは絶対パスから Document を作る"""
        path = Path(path)
        if path.is_absolute():
            path = path.relative_to(self.vault_path)
        full_path = self.vault_path / path
        mtime = full_path.stat().st_mtime if full_path.exists() else 0.0
        return Document(path=path.as_posix(), mtime=mtime)

    def list_notes(self, folder: str = "") -> list[Document]:
        """フォルダ以下の Markdown ノート（隠しフォルダを除く）"""
        root = self.vault_path / folder
        if not root.is_dir():
            return []
        notes = []
        for file_path in sorted(root.rglob("*.md")):
            relative = file_path.relative_to(self.vault_path)
            if any(part.startswith(".") for part in relative.parts):
                continue
            notes.append(
                Document(path=relative.as_posix(), mtime=file_path.stat().st_mtime)
            )
        return notes

    def invalidate(self) -> None:
        """Forget cached frontmatter and the note index"""
        self._frontmatter_cache.clear()
        self._index = None

    async def read(self, document: Document) -> str:
        async with aiofiles.open(self.absolute_path(document), encoding="utf-8") as f:
            return await f.read()

    def get_frontmatter(self, document: Document) -> dict[str, Any] | None:
        full_path = self.absolute_path(document)
        mtime = full_path.stat().st_mtime
        cached = self._frontmatter_cache.get(document.path)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        try:
            frontmatter, _ = split_frontmatter(full_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            self.logger.warning(
                "Invalid frontmatter, treating note as having none",
                path=document.path,
                error=str(e),
            )
            frontmatter = None
        self._frontmatter_cache[document.path] = (mtime, frontmatter)
        return frontmatter

    async def update_header(
        self,
        document: Document,
        mutator: FrontmatterMutator,
        *,
        pin_mtime: bool = False,
    ) -> dict[str, Any]:
        """Apply ``mutator`` to the frontmatter and write the note back.

        With ``pin_mtime`` the file keeps its previous modification time, so
        a metadata refresh does not count as a content change.
        """
        full_path = self.absolute_path(document)
        stat = full_path.stat()
        text = await self.read(document)
        frontmatter, body = split_frontmatter(text)
        frontmatter = dict(frontmatter or {})
        mutator(frontmatter)

        async with aiofiles.open(full_path, "w", encoding="utf-8") as f:
            await f.write(join_frontmatter(frontmatter, body))

        if pin_mtime:
            os.utime(full_path, (stat.st_atime, stat.st_mtime))
        document.mtime = full_path.stat().st_mtime
        self._frontmatter_cache[document.path] = (document.mtime, frontmatter)
        return frontmatter

    def _note_index(self) -> dict[str, list[Document]]:
        if self._index is None:
            index: dict[str, list[Document]] = {}
            for note in self.list_notes():
                index.setdefault(note.basename.lower(), []).append(note)
            self._index = index
        return self._index

    def resolve(self, link_text: str, source: Document) -> Document | None:
        """リンクテキストからノートを探す（参照元に最も近いものを優先）"""
        link = PurePosixPath(link_text.strip().lstrip("/"))
        if link.suffix.lower() != ".md":
            link = PurePosixPath(f"{link}.md")

        for candidate in (PurePosixPath(source.parent) / link, link):
            if (self.vault_path / candidate).is_file():
                return self.document(candidate.as_posix())

        wanted = link.as_posix().lower()
        matches = [
            note
            for note in self._note_index().get(link.stem.lower(), [])
            if note.path.lower() == wanted or note.path.lower().endswith("/" + wanted)
        ]
        if not matches:
            return None

        source_parts = PurePosixPath(source.parent).parts

        def distance(note: Document) -> tuple[int, int, str]:
            parts = PurePosixPath(note.parent).parts
            common = 0
            for a, b in zip(source_parts, parts, strict=False):
                if a != b:
                    break
                common += 1
            return (len(source_parts) + len(parts) - 2 * common, len(parts), note.path)

        return min(matches, key=distance)


def resolve_publish_path(settings: Settings, document: Document) -> Path:
    """ノートの公開先パス（ノートフォルダからの相対位置を保つ）"""
    path = PurePosixPath(document.path)
    folder = settings.note_folder.strip("/")
    if folder:
        try:
            path = path.relative_to(folder)
        except ValueError:
            pass
    return Path(settings.publish_to_ab_folder) / path


def check_setting_of_ab_path(ab_path: str) -> bool:
    """公開先フォルダが存在する絶対パスか"""
    if not ab_path or not Path(ab_path).is_absolute() or not Path(ab_path).is_dir():
        logger.error(
            "The project content folder does not exist. "
            "Please create the path or update the current path in settings.",
            path=ab_path,
        )
        return False
    return True


def check_note_in_source(settings: Settings, document: Document) -> bool:
    folder = settings.note_folder.strip("/")
    in_folder = not folder or document.path.startswith(f"{folder}/")
    if in_folder and document.path.endswith(".md"):
        return True
    logger.warning(
        "Not in source folder or not a markdown file",
        path=document.path,
        note_folder=settings.note_folder,
    )
    return False


class FileWriter:
    """公開コンテンツをファイルへ書き出す"""

    async def write(
        self, path: Path, content: str, callback: Callable[[], None] | None = None
    ) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to write published note", path=str(path), error=str(e))
            raise
        if callback is not None:
            callback()
