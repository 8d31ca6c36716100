"""Domain-specific exceptions — framework-independent."""

from typing import Any


class SchemaNotFoundError(Exception):
    """Raised when a collection name is not present in the schema registry."""

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"No schema registered for collection '{collection}'")


class SchemaConfigurationError(Exception):
    """Raised when collection schema definitions are malformed.

    Fatal at startup: the engine cannot run against an inconsistent registry.
    """

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")


class PathNotFoundError(Exception):
    """Raised when no join path connects two collections."""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"No hopping path from '{source}' to '{target}'")


class UnauthorizedAccessError(Exception):
    """Raised when none of the requested source records belong to the tenant."""

    def __init__(self, collection: str, tenant_id: str, requested: int):
        self.collection = collection
        self.tenant_id = tenant_id
        self.requested = requested
        super().__init__(
            f"None of {requested} '{collection}' records belong to tenant '{tenant_id}'"
        )


class InvalidFilterValueError(Exception):
    """A filter value that cannot apply to its field.

    Recorded and logged by the filter sanitizer; the offending key is dropped
    instead of failing the query.
    """

    def __init__(self, collection: str, field: str, value: Any, reason: str):
        self.collection = collection
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"{collection}.{field}={value!r} dropped: {reason}")


class SearchExecutionError(Exception):
    """Raised when every search strategy for a collection failed."""

    def __init__(self, collection: str, method: str, message: str):
        self.collection = collection
        self.method = method
        self.message = message
        super().__init__(f"[{method}] search on '{collection}' failed: {message}")


class DocumentStoreError(Exception):
    """Raised by document store adapters when the backing store fails."""

    def __init__(self, operation: str, collection: str, message: str):
        self.operation = operation
        self.collection = collection
        self.message = message
        super().__init__(f"{operation} on '{collection}' failed: {message}")


class UnsupportedFilterOperatorError(DocumentStoreError):
    """Raised when a filter uses an operator the store cannot evaluate."""

    def __init__(self, collection: str, operator: str):
        self.operator = operator
        super().__init__("filter", collection, f"unsupported operator '{operator}'")


class EmbeddingProviderError(Exception):
    """Raised when an embedding provider returns an error.

    Provider-agnostic — works for OpenRouter, OpenAI, local models, etc.
    """

    def __init__(self, provider: str, status_code: int, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{provider}] {status_code}: {message}")


class EmbeddingError(Exception):
    """Raised when a query text could not be turned into an embedding vector."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PlanValidationError(Exception):
    """Raised when a retrieval plan is structurally invalid."""

    def __init__(self, step_id: str | None, message: str):
        self.step_id = step_id
        self.message = message
        where = f"step '{step_id}': " if step_id else ""
        super().__init__(f"{where}{message}")
