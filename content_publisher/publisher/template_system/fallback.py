"""Ordered template fallback evaluation"""

from collections.abc import Sequence

import structlog

from content_publisher.publisher.errors import AllFallbacksFailedError, PublishError
from content_publisher.publisher.template_system.processor import TemplateProcessor

logger = structlog.get_logger(__name__)


def eval_with_try_list(processor: TemplateProcessor, templates: Sequence[str]) -> str:
    """テンプレートを順に評価し、最初に成功した結果を返す

    Raises:
        AllFallbacksFailedError: every template failed
    """
    last_error: PublishError | None = None
    for template in templates:
        try:
            return processor.eval_template(template)
        except PublishError as e:
            logger.debug("Template fallback", template=template, error=str(e))
            last_error = e
    raise AllFallbacksFailedError(list(templates), last_error)
