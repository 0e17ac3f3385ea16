"""
Note and content handlers
"""

import re
from collections.abc import Sequence
from typing import Any

from content_publisher.config import MetadataFormat, MetadataRule, Settings
from content_publisher.publisher.errors import HeaderBuildError, PublishError
from content_publisher.publisher.models import Document, NoteMeta
from content_publisher.publisher.references import ReferenceRewriter
from content_publisher.publisher.template_system import (
    DocumentStore,
    MetadataTemplateProcessorManager,
    ReferenceResolver,
    TemplateProcessor,
)
from content_publisher.utils.mixins import LoggerMixin

FRONTMATTER_PATTERN = re.compile(r"^---[\s\S]+?---")
HEADER_DELIMITER = "---"


def build_header(processor: TemplateProcessor, formats: Sequence[MetadataFormat]) -> str:
    """メタデータ定義を順に評価して公開用フロントマターを組み立てる

    Raises:
        HeaderBuildError: a field could not be evaluated
    """
    lines: list[str] = []
    for meta in formats:
        if meta.rule is MetadataRule.EXCLUDED:
            continue
        try:
            value = processor.eval_template(meta.template)
        except PublishError as e:
            raise HeaderBuildError(meta.name, e) from e
        if meta.rule is MetadataRule.NON_EMPTY and not value.strip():
            continue
        lines.append(re.sub(r"\s+\n", "\n", f"{meta.name}: {value}").strip())

    body = "".join(f"{line}\n" for line in lines)
    return f"{HEADER_DELIMITER}\n{body}{HEADER_DELIMITER}\n"


def strip_frontmatter(text: str) -> str:
    """先頭のフロントマターを取り除いた本文"""
    return FRONTMATTER_PATTERN.sub("", text, count=1).strip()


class Handler(LoggerMixin):
    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        manager: MetadataTemplateProcessorManager,
    ):
        self.settings = settings
        self.store = store
        self.manager = manager


class NoteHandler(Handler):
    """ソース側ノートの公開用フロントマターを管理する"""

    async def update_frontmatter(self, document: Document) -> dict[str, Any]:
        """Record publish URL and timestamps in the note's frontmatter.

        The publish URL and publish timestamp are only written once; the
        update timestamp is refreshed on every call. The processor cache is
        primed with the stored frontmatter.
        """
        processor = self.manager.get_processor(document)
        view_url = processor.eval_template("{{urlPrefix}}{{pubSlug}}")
        stamp = self.manager.now.isoformat()

        def mutate(frontmatter: dict[str, Any]) -> None:
            if not frontmatter.get(NoteMeta.VIEW_URL):
                frontmatter[NoteMeta.VIEW_URL] = view_url
            if not frontmatter.get(NoteMeta.PUB_TS):
                frontmatter[NoteMeta.PUB_TS] = stamp
            frontmatter[NoteMeta.MOD_TS] = stamp

        frontmatter = await self.store.update_header(document, mutate, pin_mtime=True)
        self.manager.get_processor(document, frontmatter)
        self.logger.debug(
            "Frontmatter refreshed",
            path=document.path,
            url=frontmatter.get(NoteMeta.VIEW_URL),
        )
        return frontmatter


class ContentHandler(Handler):
    """公開用のフロントマターと本文を生成する"""

    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        manager: MetadataTemplateProcessorManager,
        resolver: ReferenceResolver,
    ):
        super().__init__(settings, store, manager)
        self.rewriter = ReferenceRewriter(manager, resolver, settings.link_templates)

    def get_published_yaml(self, document: Document) -> str:
        processor = self.manager.get_processor(document)
        try:
            return build_header(processor, self.settings.metadata_formats)
        except HeaderBuildError as e:
            self.logger.error(
                "Publish Error", path=document.path, field=e.field, error=str(e.cause)
            )
            raise

    async def get_published_text(
        self, document: Document, diagnostics: list[str] | None = None
    ) -> str:
        body = await self.get_content_without_front_matter(document)
        return self.rewriter.rewrite(body, document, diagnostics)

    async def get_content_without_front_matter(self, document: Document) -> str:
        return strip_frontmatter(await self.store.read(document))
