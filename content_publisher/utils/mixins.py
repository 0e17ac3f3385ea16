"""ロギング用ミックスイン"""

from typing import Any, cast

import structlog


class LoggerMixin:
    """クラス名をロガー名とする structlog ロガーを提供する

    ``log_context`` を上書きすると、そのインスタンスのログすべてに
    共通のキー（対象ノートのパスなど）が付く。
    """

    def log_context(self) -> dict[str, Any]:
        return {}

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        logger = structlog.get_logger(type(self).__name__)
        context = self.log_context()
        if context:
            logger = logger.bind(**context)
        return cast("structlog.stdlib.BoundLogger", logger)
