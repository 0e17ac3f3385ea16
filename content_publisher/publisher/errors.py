"""Exceptions raised while building published notes."""


class PublishError(Exception):
    """Base class for publish failures"""


class EvaluationError(PublishError):
    """A single ``{{expr}}`` could not be evaluated."""

    def __init__(self, expr: str, reason: str):
        self.expr = expr
        self.reason = reason
        super().__init__(f'The expression "{expr}" cannot be evaluated: {reason}')


class UninitializedVariableError(PublishError):
    """A variable initializer found no data to initialize from."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Variable '{name}' is not available: {reason}")


class AllFallbacksFailedError(PublishError):
    """Every template of a fallback list failed."""

    def __init__(self, templates: list[str], last_error: Exception | None):
        self.templates = templates
        self.last_error = last_error
        super().__init__(
            f"All {len(templates)} templates failed, last error: {last_error}"
        )


class ConfigurationError(PublishError):
    """Invalid publish configuration (e.g. a self-referencing slug template)."""


class HeaderBuildError(PublishError):
    """A metadata field could not be built; the note must not be published."""

    def __init__(self, field: str, cause: Exception):
        self.field = field
        self.cause = cause
        super().__init__(f"Publish Error in field '{field}': {cause}")
