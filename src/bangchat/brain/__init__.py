"""
bangchat/brain/__init__.py - Language Model Backends
"""

from __future__ import annotations

from bangchat.brain.base import FragmentSink, LanguageModel, call_with_retry
from bangchat.brain.types import Message, Role
from bangchat.exceptions import (
    GenerationError,
    IngestError,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    StateError,
)

__all__ = [
    "LanguageModel",
    "FragmentSink",
    "call_with_retry",
    "Message",
    "Role",
    "LLMError",
    "IngestError",
    "GenerationError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "StateError",
]
