"""Per publish run cache of metadata template processors"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

from content_publisher.config import Settings
from content_publisher.publisher.models import Document
from content_publisher.publisher.template_system.base import (
    DocumentStore,
    Transliterator,
    keep_text,
)
from content_publisher.publisher.template_system.evaluator import ExpressionEvaluator
from content_publisher.publisher.template_system.processor import (
    MetadataTemplateProcessor,
    check_slug_template,
)
from content_publisher.utils.mixins import LoggerMixin


def local_now() -> datetime:
    return datetime.now().astimezone()


class MetadataTemplateProcessorManager(LoggerMixin):
    """ノートのパスごとに 1 つの変数グラフを公開処理の間だけ保持する

    同じノートが複数回参照されても、公開 URL・スラッグ・タイムスタンプは
    一度だけ計算され、すべての参照で同じ値が使われる。
    """

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        transliterate: Transliterator = keep_text,
        clock: Callable[[], datetime] = local_now,
    ):
        self.settings = settings
        self.store = store
        self.transliterate = transliterate
        self.clock = clock
        self.evaluator = ExpressionEvaluator()
        check_slug_template(settings.slug_template, self.evaluator)

        self.processors: dict[str, MetadataTemplateProcessor] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.now = clock()

    def __len__(self) -> int:
        return len(self.processors)

    def __contains__(self, document: Document) -> bool:
        return document.path in self.processors

    def get_processor(
        self, document: Document, frontmatter: dict[str, Any] | None = None
    ) -> MetadataTemplateProcessor:
        """Return the cached processor for ``document``, creating it if needed.

        A supplied ``frontmatter`` replaces the processor's current value.
        """
        processor = self.processors.get(document.path)
        if processor is None:
            processor = MetadataTemplateProcessor(
                document,
                store=self.store,
                now=self.now,
                url_prefix=self.settings.url_prefix,
                note_folder=self.settings.note_folder,
                slug_template=self.settings.slug_template,
                transliterate=self.transliterate,
                evaluator=self.evaluator,
            )
            self.processors[document.path] = processor
            self.logger.debug("Created template processor", path=document.path)

        if frontmatter is not None:
            processor.set_variable("frontmatter", frontmatter)
        return processor

    def prime(self, document: Document, **variables: Any) -> MetadataTemplateProcessor:
        """既知の値を変数グラフに書き込む"""
        processor = self.get_processor(document)
        for name, value in variables.items():
            processor.set_variable(name, value)
        return processor

    def lock(self, document: Document) -> asyncio.Lock:
        """Lock serializing concurrent tasks working on the same note"""
        return self._locks.setdefault(document.path, asyncio.Lock())

    def clear(self) -> None:
        """Drop every cached processor and start a new publish run"""
        if self.processors:
            self.logger.debug("Clearing template processors", count=len(self.processors))
        self.processors.clear()
        self._locks.clear()
        self.now = self.clock()
