from .cache import ArtifactCategory, DiskCache, PurgeResult
from .errors import classify_error
from .fallback import ClientIdentity, with_fallback
from .orchestrator import ExtractionOrchestrator
from .paths import EnginePaths
from .retry import RetryPolicy, with_retry
from .runtime import get_runtime_info

__all__ = [
    "ArtifactCategory",
    "ClientIdentity",
    "DiskCache",
    "EnginePaths",
    "ExtractionOrchestrator",
    "PurgeResult",
    "RetryPolicy",
    "classify_error",
    "get_runtime_info",
    "with_fallback",
    "with_retry",
]
