"""Template system for published note metadata"""

from .base import DocumentStore, ReferenceResolver, Transliterator, Writer
from .evaluator import ExpressionEvaluator, array, to_text
from .fallback import eval_with_try_list
from .manager import MetadataTemplateProcessorManager
from .processor import (
    MetadataTemplateProcessor,
    TemplateProcessor,
    VariableInitializer,
    check_slug_template,
)
from .slug import simplify

__all__ = [
    "DocumentStore",
    "ReferenceResolver",
    "Transliterator",
    "Writer",
    "ExpressionEvaluator",
    "array",
    "to_text",
    "eval_with_try_list",
    "MetadataTemplateProcessorManager",
    "MetadataTemplateProcessor",
    "TemplateProcessor",
    "VariableInitializer",
    "check_slug_template",
    "simplify",
]
