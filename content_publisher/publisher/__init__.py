"""
Note publishing module
"""

from content_publisher.publisher.errors import (
    AllFallbacksFailedError,
    ConfigurationError,
    EvaluationError,
    HeaderBuildError,
    PublishError,
    UninitializedVariableError,
)
from content_publisher.publisher.handlers import (
    ContentHandler,
    NoteHandler,
    build_header,
    strip_frontmatter,
)
from content_publisher.publisher.models import (
    Document,
    NoteMeta,
    PublishResult,
    Reference,
)
from content_publisher.publisher.publisher import ContentPublisher
from content_publisher.publisher.references import (
    ReferenceRewriter,
    find_references,
    parse_reference,
)
from content_publisher.publisher.vault import (
    FileWriter,
    LocalVault,
    resolve_publish_path,
)

__all__ = [
    # Errors
    "PublishError",
    "EvaluationError",
    "UninitializedVariableError",
    "AllFallbacksFailedError",
    "ConfigurationError",
    "HeaderBuildError",
    # Models
    "Document",
    "NoteMeta",
    "PublishResult",
    "Reference",
    # Handlers
    "ContentHandler",
    "NoteHandler",
    "build_header",
    "strip_frontmatter",
    "ReferenceRewriter",
    "find_references",
    "parse_reference",
    # Storage
    "LocalVault",
    "FileWriter",
    "resolve_publish_path",
    # Orchestration
    "ContentPublisher",
]
