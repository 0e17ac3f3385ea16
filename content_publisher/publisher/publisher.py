"""Publish orchestration for single notes and whole note folders"""

import asyncio
from collections.abc import Callable

from content_publisher.config import Settings
from content_publisher.publisher.errors import PublishError
from content_publisher.publisher.handlers import ContentHandler, NoteHandler
from content_publisher.publisher.models import Document, NoteMeta, PublishResult
from content_publisher.publisher.template_system import (
    MetadataTemplateProcessorManager,
    Transliterator,
)
from content_publisher.publisher.template_system.base import keep_text
from content_publisher.publisher.template_system.processor import parse_timestamp
from content_publisher.publisher.vault import (
    FileWriter,
    LocalVault,
    check_note_in_source,
    check_setting_of_ab_path,
    resolve_publish_path,
)
from content_publisher.utils.mixins import LoggerMixin


class ContentPublisher(LoggerMixin):
    """Vault のノートを公開先プロジェクトへ書き出す"""

    def __init__(
        self,
        settings: Settings,
        vault: LocalVault | None = None,
        writer: FileWriter | None = None,
        transliterate: Transliterator = keep_text,
    ):
        self.settings = settings
        self.vault = vault or LocalVault(settings.vault_path)
        self.writer = writer or FileWriter()
        self.manager = MetadataTemplateProcessorManager(
            settings, self.vault, transliterate=transliterate
        )
        self.note_handler = NoteHandler(settings, self.vault, self.manager)
        self.content_handler = ContentHandler(
            settings, self.vault, self.manager, self.vault
        )
        self.wait_processing_task = 0
        self.result = PublishResult()
        self.diagnostics: list[str] = []

    def set_task(self, task: int) -> None:
        self.wait_processing_task = task
        self.result = PublishResult()
        self.diagnostics = []

    def check_task_done(self) -> None:
        self.wait_processing_task -= 1
        if self.wait_processing_task <= 0:
            self.finish_run()

    def finish_run(self) -> None:
        """公開処理の終了: キャッシュを破棄して結果を報告する"""
        self.manager.clear()
        self.vault.invalidate()
        self.wait_processing_task = 0
        if self.result.failed > 0:
            self.logger.warning(
                "All done with failures",
                failed=self.result.failed,
                succeeded=self.result.succeeded,
                skipped=self.result.skipped,
            )
        else:
            self.logger.info(
                "All notes have been published!",
                succeeded=self.result.succeeded,
                skipped=self.result.skipped,
            )

    def validate_publish_root(self) -> bool:
        return check_setting_of_ab_path(self.settings.publish_to_ab_folder)

    async def publish_single_note(
        self, document: Document, callback: Callable[[], None] | None = None
    ) -> PublishResult:
        """ノート 1 件のフロントマターを更新して公開する"""
        if not self.validate_publish_root() or not check_note_in_source(
            self.settings, document
        ):
            return PublishResult(failed=1, failures={document.path: "invalid path"})

        self.manager.clear()
        self.set_task(1)
        try:
            await self.note_handler.update_frontmatter(document)
        except (PublishError, OSError) as e:
            self._record_failure(document, e)
            self.check_task_done()
            return self.result
        await self.just_publish_content(document, callback)
        return self.result

    async def refresh_content_frontmatter(self, documents: list[Document]) -> None:
        for document in documents:
            try:
                await self.note_handler.update_frontmatter(document)
            except (PublishError, OSError) as e:
                self.logger.warning(
                    "Refreshing frontmatter failed, skip it",
                    path=document.path,
                    error=str(e),
                )

    async def just_publish_content(
        self, document: Document, callback: Callable[[], None] | None = None
    ) -> None:
        if callback is None:

            def callback() -> None:
                self.logger.info(
                    "Note published",
                    note=document.basename,
                    destination=self.settings.publish_to_ab_folder,
                )

        try:
            async with self.manager.lock(document):
                header = self.content_handler.get_published_yaml(document)
                content = await self.content_handler.get_published_text(
                    document, self.diagnostics
                )
            await self.writer.write(
                resolve_publish_path(self.settings, document),
                header + "\n" + content,
                callback,
            )
            self.result.succeeded += 1
        except (PublishError, OSError) as e:
            self._record_failure(document, e)
        finally:
            self.check_task_done()

    def _record_failure(self, document: Document, error: Exception) -> None:
        self.result.failed += 1
        self.result.failures[document.path] = str(error)
        self.logger.error("Publish failed", note=document.basename, error=str(error))

    def is_unmodified(self, document: Document) -> bool:
        """前回の公開以降に内容が変更されていないか"""
        frontmatter = self.vault.get_frontmatter(document) or {}
        try:
            updated = parse_timestamp(frontmatter.get(NoteMeta.MOD_TS))
        except (TypeError, ValueError, OverflowError):
            return False
        return updated is not None and updated.timestamp() >= document.mtime

    async def publish_all_notes(self, respect_mod_ts: bool = True) -> PublishResult:
        """ノートフォルダ以下をすべて公開する

        Args:
            respect_mod_ts: skip notes not modified since their last publish
        """
        if not self.validate_publish_root():
            return PublishResult()

        self.logger.info("Preparing to publish all...")
        self.manager.clear()
        self.vault.invalidate()

        documents = []
        skipped = 0
        for document in self.vault.list_notes(self.settings.note_folder):
            if respect_mod_ts and self.is_unmodified(document):
                self.logger.info(
                    "Skipping note, no content modified", note=document.basename
                )
                skipped += 1
                continue
            documents.append(document)

        # 参照先の pubUrl を確定させるため、先に全ノートのフロントマターを更新する
        await self.refresh_content_frontmatter(documents)
        self.set_task(len(documents))
        self.result.skipped = skipped
        self.logger.info("Got notes for publishing", count=len(documents))

        result = self.result
        if not documents:
            self.finish_run()
            return result

        await asyncio.gather(
            *(self.just_publish_content(document) for document in documents)
        )
        return result
