"""Rewriting of [[note#anchor|alias]] references into published links"""

import re
from collections.abc import Sequence

from content_publisher.config import LinkTemplates
from content_publisher.publisher.errors import AllFallbacksFailedError
from content_publisher.publisher.models import Document, Reference
from content_publisher.publisher.template_system import (
    MetadataTemplateProcessorManager,
    ReferenceResolver,
    eval_with_try_list,
    simplify,
)
from content_publisher.utils.mixins import LoggerMixin

# ![[embed]] は対象外
REFERENCE_PATTERN = re.compile(r"(?<!!)\[\[([^\[\]\n]+?)\]\]")


def parse_reference(raw: str, start: int = 0, end: int = 0) -> Reference:
    """``target#anchor|alias`` を分解する"""
    link, sep, alias = raw.partition("|")
    target, hash_sign, anchor = link.partition("#")
    return Reference(
        raw=raw,
        target=target.strip(),
        anchor=anchor.strip() if hash_sign and anchor.strip() else None,
        alias=alias.strip() if sep and alias.strip() else None,
        start=start,
        end=end,
    )


def find_references(body: str) -> list[Reference]:
    return [
        parse_reference(m.group(1), m.start(), m.end())
        for m in REFERENCE_PATTERN.finditer(body)
    ]


class ReferenceRewriter(LoggerMixin):
    """本文中の参照を公開先のリンクへ置換する"""

    def __init__(
        self,
        manager: MetadataTemplateProcessorManager,
        resolver: ReferenceResolver,
        link_templates: LinkTemplates,
    ):
        self.manager = manager
        self.resolver = resolver
        self.link_templates = link_templates

    def rewrite(
        self,
        body: str,
        document: Document,
        diagnostics: list[str] | None = None,
    ) -> str:
        """Replace every reference in ``body`` in a single left-to-right pass.

        Unresolved references are rendered with the not-found template and
        reported through ``diagnostics``; they never abort the rewrite.
        """

        def replace(match: re.Match[str]) -> str:
            reference = parse_reference(match.group(1), match.start(), match.end())
            return self.render(reference, document, diagnostics) or match.group(0)

        return REFERENCE_PATTERN.sub(replace, body)

    def render(
        self,
        reference: Reference,
        document: Document,
        diagnostics: list[str] | None = None,
    ) -> str | None:
        """参照 1 件をリンク文字列にする。描画できない場合は None

        ``refer`` and ``anchor`` are set only while the link renders, so the
        target's own header still sees its defaults.
        """
        if reference.target:
            target = self.resolver.resolve(reference.target, document)
        else:
            # [[#見出し]] だけが自分自身への参照
            target = document if reference.anchor else None

        if target is None:
            message = f"Reference target not found: [[{reference.raw}]] in {document.path}"
            self.logger.warning(
                "Reference target not found",
                reference=reference.raw,
                path=document.path,
            )
            if diagnostics is not None:
                diagnostics.append(message)
            processor = self.manager.get_processor(document)
            with processor.scoped(refer=reference.raw, anchor=""):
                return self._render(processor, [self.link_templates.not_found], reference)

        processor = self.manager.get_processor(target)
        anchor = f"#{simplify(reference.anchor)}" if reference.anchor else ""
        with processor.scoped(refer=reference.refer_text, anchor=anchor):
            return self._render(processor, self.link_templates.try_list(), reference)

    def _render(
        self, processor, templates: Sequence[str], reference: Reference
    ) -> str | None:
        try:
            return eval_with_try_list(processor, templates)
        except AllFallbacksFailedError as e:
            self.logger.error(
                "Failed to render reference",
                reference=reference.raw,
                error=str(e.last_error),
            )
            return None
