"""Sandboxed evaluation of single template expressions"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import yaml
from jinja2 import ChainableUndefined, TemplateSyntaxError, Undefined, meta, nodes
from jinja2.sandbox import ImmutableSandboxedEnvironment

from content_publisher.publisher.errors import EvaluationError, PublishError
from content_publisher.publisher.template_system.slug import simplify


def array(value: Any) -> str:
    """値を YAML のフロー形式リストとして出力する（例: ``[a, b]``）"""
    if value is None or isinstance(value, Undefined):
        items: list[Any] = []
    elif isinstance(value, str | int | float | bool):
        items = [value]
    else:
        items = list(value)
    return yaml.safe_dump(
        items, default_flow_style=True, allow_unicode=True, width=10**6
    ).strip()


DEFAULT_HELPERS: dict[str, Callable[..., Any]] = {
    "array": array,
    "simplify": simplify,
}


def to_text(value: Any) -> str:
    """評価結果をテンプレートに埋め込む文字列へ変換"""
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, list | tuple | set):
        return array(value)
    if isinstance(value, Mapping):
        return yaml.safe_dump(
            dict(value), default_flow_style=True, allow_unicode=True, width=10**6
        ).strip()
    return str(value)


@dataclass(frozen=True)
class CompiledExpression:
    """Parsed expression with the top-level names it reads"""

    source: str
    names: frozenset[str]
    is_bare_name: bool
    func: Callable[..., Any]


class ExpressionEvaluator:
    """Evaluates one ``{{expr}}`` body in a jinja2 sandbox.

    Supports member access, calls and literals; statements are not part of
    the expression grammar. Evaluation never writes to the variable mapping.
    A name that is not defined is an error. A missing key on a nested
    mapping evaluates to ``None`` and renders as an empty string, except when
    the whole expression is a single name. Methods that modify lists, dicts
    or sets (``append``, ``pop``, ``update``, ...) are rejected.
    """

    def __init__(self, helpers: Mapping[str, Callable[..., Any]] | None = None):
        self.env = ImmutableSandboxedEnvironment(undefined=ChainableUndefined)
        self.env.globals.clear()
        self.env.globals.update(DEFAULT_HELPERS if helpers is None else helpers)
        self._compiled: dict[str, CompiledExpression] = {}

    def compile(self, expr: str) -> CompiledExpression:
        """式を解析してキャッシュする"""
        cached = self._compiled.get(expr)
        if cached is not None:
            return cached

        try:
            tree = self.env.parse("{{ " + expr + " }}")
            func = self.env.compile_expression(expr, undefined_to_none=False)
        except TemplateSyntaxError as e:
            raise EvaluationError(expr, f"invalid syntax ({e.message})") from e

        output = tree.body[0] if tree.body else None
        is_bare_name = (
            isinstance(output, nodes.Output)
            and len(output.nodes) == 1
            and isinstance(output.nodes[0], nodes.Name)
        )
        compiled = CompiledExpression(
            source=expr,
            names=frozenset(meta.find_undeclared_variables(tree)),
            is_bare_name=is_bare_name,
            func=func,
        )
        self._compiled[expr] = compiled
        return compiled

    def referenced_names(self, expr: str) -> frozenset[str]:
        """Top-level variable names read by ``expr``"""
        return self.compile(expr).names - self.env.globals.keys()

    def evaluate(self, expr: str, variables: Mapping[str, Any]) -> Any:
        """式を評価して値を返す"""
        compiled = self.compile(expr)

        undefined = sorted(compiled.names - variables.keys() - self.env.globals.keys())
        if undefined:
            raise EvaluationError(expr, f"undefined name {', '.join(undefined)}")

        try:
            value = compiled.func(**variables)
        except PublishError:
            raise
        except Exception as e:
            raise EvaluationError(expr, str(e)) from e

        if isinstance(value, Undefined):
            value = None
        if value is None and compiled.is_bare_name:
            raise EvaluationError(expr, "the value is undefined")
        return value
