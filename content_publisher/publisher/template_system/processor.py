"""Template processor backed by a lazy, memoized variable graph"""

import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any

from content_publisher.publisher.errors import (
    ConfigurationError,
    UninitializedVariableError,
)
from content_publisher.publisher.models import Document, NoteMeta
from content_publisher.publisher.template_system.base import (
    DocumentStore,
    Transliterator,
    keep_text,
)
from content_publisher.publisher.template_system.evaluator import (
    ExpressionEvaluator,
    to_text,
)
from content_publisher.publisher.template_system.slug import simplify
from content_publisher.utils.mixins import LoggerMixin


@dataclass(frozen=True)
class VariableInitializer:
    """名前付き変数の初期化子（依存する変数を静的に宣言する）"""

    name: str
    requires: tuple[str, ...]
    build: Callable[["TemplateProcessor"], Any]


def check_acyclic(initializers: Mapping[str, VariableInitializer]) -> None:
    """Raise ``ConfigurationError`` if the dependency declarations form a cycle"""
    done: set[str] = set()

    def visit(name: str, chain: tuple[str, ...]) -> None:
        if name in done or name not in initializers:
            return
        if name in chain:
            cycle = " -> ".join((*chain[chain.index(name) :], name))
            raise ConfigurationError(f"Circular variable dependency: {cycle}")
        for dep in initializers[name].requires:
            visit(dep, (*chain, name))
        done.add(name)

    for name in initializers:
        visit(name, ())


class TemplateProcessor(LoggerMixin):
    """``{{expr}}`` テンプレートを変数マッピングに対して評価する"""

    EXPR_PATTERN = re.compile(r"{{(.*?)}}")

    def __init__(
        self,
        variables: Mapping[str, Any] | None = None,
        initializers: Iterable[VariableInitializer] = (),
        evaluator: ExpressionEvaluator | None = None,
    ):
        self.variables: dict[str, Any] = dict(variables or {})
        self.initialized: set[str] = set(self.variables)
        self.initializers: dict[str, VariableInitializer] = {
            init.name: init for init in initializers
        }
        self.evaluator = evaluator or ExpressionEvaluator()
        # 初期化子が計算した変数（外部から設定された値は含まない）
        self._built: set[str] = set()
        check_acyclic(self.initializers)

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value
        self.initialized.add(name)
        self._built.discard(name)
        self._invalidate_dependents(name)

    def _invalidate_dependents(self, name: str) -> None:
        for initializer in self.initializers.values():
            if name in initializer.requires and initializer.name in self._built:
                self._built.discard(initializer.name)
                self.initialized.discard(initializer.name)
                self.variables.pop(initializer.name, None)
                self._invalidate_dependents(initializer.name)

    @contextmanager
    def scoped(self, **values: Any) -> Iterator["TemplateProcessor"]:
        """Set ``values`` for the duration of the block, then restore them.

        A name that had no value before is reset so that its initializer
        runs again on the next access.
        """
        saved = {
            name: (
                name in self.initialized,
                name in self._built,
                self.variables.get(name),
            )
            for name in values
        }
        for name, value in values.items():
            self.set_variable(name, value)
        try:
            yield self
        finally:
            for name, (was_set, was_built, value) in saved.items():
                if was_set:
                    self.set_variable(name, value)
                    if was_built:
                        self._built.add(name)
                else:
                    self.variables.pop(name, None)
                    self.initialized.discard(name)
                    self._built.discard(name)
                    self._invalidate_dependents(name)

    def require(self, name: str) -> Any:
        """Initialize ``name`` if needed and return its value"""
        self._ensure(name)
        return self.variables[name]

    def _ensure(self, name: str) -> None:
        if name in self.initialized:
            return
        initializer = self.initializers.get(name)
        if initializer is None:
            return
        for dep in initializer.requires:
            self._ensure(dep)
        self.variables[name] = initializer.build(self)
        self.initialized.add(name)
        self._built.add(name)

    def eval_part(self, expr: str) -> Any:
        for name in self.evaluator.referenced_names(expr):
            self._ensure(name)
        return self.evaluator.evaluate(expr, self.variables)

    def eval_template(self, template: str) -> str:
        return self.EXPR_PATTERN.sub(
            lambda match: to_text(self.eval_part(match.group(1))), template
        )


def check_slug_template(slug_template: str, evaluator: ExpressionEvaluator) -> None:
    """スラッグテンプレートが pubSlug 自身を参照していないことを確認"""
    for match in TemplateProcessor.EXPR_PATTERN.finditer(slug_template):
        if "pubSlug" in evaluator.referenced_names(match.group(1)):
            raise ConfigurationError(
                f"The slug template cannot reference pubSlug: {slug_template!r}"
            )


def parse_timestamp(value: Any) -> datetime | None:
    """フロントマターのタイムスタンプ値を datetime に変換"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).astimezone()
    if isinstance(value, int | float) and not isinstance(value, bool):
        # Obsidian のタイムスタンプはミリ秒
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds).astimezone()
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.astimezone()


class MetadataTemplateProcessor(TemplateProcessor):
    """1 ノート分の公開メタデータ変数グラフ

    Variables and what they are built from:

    - ``file``: the note itself
    - ``now``: the publish run timestamp
    - ``frontmatter``: the note's frontmatter, ``{}`` when it has none
    - ``pubTime`` / ``modTime``: frontmatter timestamps, else ``now``
    - ``refer``: reference display text, defaults to the note name
    - ``anchor``: ``#heading`` suffix of the reference being rendered
    - ``urlPrefix``: configured URL prefix
    - ``buiSlug``: slug built from the path below the note folder
    - ``pubSlug``: the configured slug template
    - ``pubUrl``: the publish URL recorded in the frontmatter
    """

    def __init__(
        self,
        document: Document,
        *,
        store: DocumentStore,
        now: datetime,
        url_prefix: str = "",
        note_folder: str = "",
        slug_template: str = "{{buiSlug}}",
        transliterate: Transliterator = keep_text,
        evaluator: ExpressionEvaluator | None = None,
        frontmatter: dict[str, Any] | None = None,
    ):
        evaluator = evaluator or ExpressionEvaluator()
        check_slug_template(slug_template, evaluator)

        self.document = document
        self.store = store
        self.url_prefix = url_prefix
        self.note_folder = note_folder
        self.slug_template = slug_template
        self.transliterate = transliterate

        slug_requires = tuple(
            sorted(
                {
                    name
                    for match in self.EXPR_PATTERN.finditer(slug_template)
                    for name in evaluator.referenced_names(match.group(1))
                }
            )
        )
        super().__init__(
            variables={"file": document, "now": now},
            initializers=[
                VariableInitializer("frontmatter", (), self._init_frontmatter),
                VariableInitializer(
                    "pubTime", ("frontmatter", "now"), self._init_pub_time
                ),
                VariableInitializer(
                    "modTime", ("frontmatter", "now"), self._init_mod_time
                ),
                VariableInitializer("refer", (), lambda p: document.basename),
                VariableInitializer("anchor", (), lambda p: ""),
                VariableInitializer("urlPrefix", (), lambda p: self.url_prefix),
                VariableInitializer("buiSlug", (), self._init_built_slug),
                VariableInitializer("pubSlug", slug_requires, self._init_pub_slug),
                VariableInitializer("pubUrl", ("frontmatter",), self._init_pub_url),
            ],
            evaluator=evaluator,
        )
        if frontmatter is not None:
            self.set_variable("frontmatter", frontmatter)

    def log_context(self) -> dict[str, Any]:
        return {"path": self.document.path}

    def _init_frontmatter(self, _: TemplateProcessor) -> dict[str, Any]:
        frontmatter = self.store.get_frontmatter(self.document)
        if not isinstance(frontmatter, dict):
            self.logger.debug("Note has no frontmatter")
            return {}
        return frontmatter

    def _timestamp(self, key: str) -> datetime:
        try:
            stamp = parse_timestamp(self.variables["frontmatter"].get(key))
        except (TypeError, ValueError, OverflowError) as e:
            raise UninitializedVariableError(
                key, f"invalid timestamp in {self.document.path}"
            ) from e
        return stamp or self.variables["now"]

    def _init_pub_time(self, _: TemplateProcessor) -> datetime:
        return self._timestamp(NoteMeta.PUB_TS)

    def _init_mod_time(self, _: TemplateProcessor) -> datetime:
        return self._timestamp(NoteMeta.MOD_TS)

    def related_path(self) -> PurePosixPath:
        """Path of the note below the configured note folder"""
        path = PurePosixPath(self.document.path)
        if self.note_folder:
            try:
                path = path.relative_to(self.note_folder.strip("/"))
            except ValueError:
                pass
        return path.with_suffix("")

    def _init_built_slug(self, _: TemplateProcessor) -> str:
        parts = [self.transliterate(part) for part in self.related_path().parts]
        return simplify("/".join(parts))

    def _init_pub_slug(self, _: TemplateProcessor) -> str:
        slug = simplify(self.eval_template(self.slug_template))
        if not slug:
            raise UninitializedVariableError(
                "pubSlug",
                f"slug template produced an empty slug for {self.document.path}",
            )
        return slug

    def _init_pub_url(self, _: TemplateProcessor) -> str:
        url = self.variables["frontmatter"].get(NoteMeta.VIEW_URL)
        if not url:
            raise UninitializedVariableError(
                "pubUrl", f"{self.document.path} has not been published yet"
            )
        return str(url)
