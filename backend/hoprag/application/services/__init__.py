from .schema_registry import SchemaRegistry, SchemaRegistryLoader
from .path_finder import PathFinder
from .filter_sanitizer import FilterSanitizer, SanitizedFilter
from .embedding_service import EmbeddingService
from .search_service import SearchService
from .hop_executor import HopExecutor
from .plan_orchestrator import PlanOrchestrator
from .iteration_controller import IterationController
from .document_ingestion_service import DocumentIngestionService
from .progress_stream import ProgressStream

__all__ = [
    "SchemaRegistry",
    "SchemaRegistryLoader",
    "PathFinder",
    "FilterSanitizer",
    "SanitizedFilter",
    "EmbeddingService",
    "SearchService",
    "HopExecutor",
    "PlanOrchestrator",
    "IterationController",
    "DocumentIngestionService",
    "ProgressStream",
]
