"""External services and collaborators for the try-on pipeline."""

from .classifier import ResultClassifier
from .gemini_client import GeminiInvoker, GenaiBackend, ModelResponse
from .history import HistoryRecorder
from .image_fetcher import FetchStrategy, RemoteImageFetcher
from .ledger import CreditLedger
from .stores import (
    InMemoryInventoryStore,
    InMemoryProfileStore,
    InventoryStore,
    JsonInventoryStore,
    JsonProfileStore,
    ProfileStore,
)

__all__ = [
    "ResultClassifier",
    "GeminiInvoker",
    "GenaiBackend",
    "ModelResponse",
    "HistoryRecorder",
    "FetchStrategy",
    "RemoteImageFetcher",
    "CreditLedger",
    "InMemoryInventoryStore",
    "InMemoryProfileStore",
    "InventoryStore",
    "JsonInventoryStore",
    "JsonProfileStore",
    "ProfileStore",
]
