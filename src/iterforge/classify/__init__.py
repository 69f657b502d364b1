"""Command classification: keyword tables with LLM escalation."""

from iterforge.classify.cache import ClassificationCache, FIFOCache
from iterforge.classify.classifier import (
    ClassificationBackend,
    ClassificationResult,
    CommandClassifier,
    LLMClassificationBackend,
)
from iterforge.classify.patterns import CommandType

__all__ = [
    "ClassificationBackend",
    "ClassificationCache",
    "ClassificationResult",
    "CommandClassifier",
    "CommandType",
    "FIFOCache",
    "LLMClassificationBackend",
]
