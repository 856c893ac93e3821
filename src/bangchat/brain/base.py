"""
bangchat/brain/base.py - Language Model Contract + Retry

Every backend subclasses LanguageModel and implements:
  - apply_template()      -> render (role, message) pairs as backend-native text
  - ingest()              -> absorb rendered text into the context
  - generate_streaming()  -> produce a reply, delivering fragments to a sink
  - save_state() / load_state()

Failures are reported with IngestError, GenerationError and StateError from
bangchat.exceptions. call_with_retry() gives backends exponential backoff on
transient errors.
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Sequence, TypeVar

from bangchat.brain.types import Message
from bangchat.exceptions import LLMConnectionError, LLMRateLimitError
from bangchat.observability.logger import get_logger

FragmentSink = Callable[[str], None]

T = TypeVar("T")


class LanguageModel(ABC):
    """
    Abstract base for all language model backends.

    Class attributes:
      - name:           backend identifier used in logs
      - supports_think: True if apply_template(think=True) opens a reasoning
                        block that the model closes with "</think>"
    """

    name: str = "base"
    supports_think: bool = False

    @abstractmethod
    def apply_template(self, messages: Sequence[Message], think: bool = False) -> str:
        """Render messages into the text this backend ingests."""
        ...

    @abstractmethod
    def ingest(self, text: str) -> None:
        """Append rendered text to the context. Raises IngestError."""
        ...

    @abstractmethod
    def generate_streaming(self, sink: FragmentSink) -> str:
        """
        Generate a reply from the current context.

        The sink is called zero or more times with each fragment, on the
        caller's thread, before this method returns the full reply.
        Raises GenerationError.
        """
        ...

    @abstractmethod
    def save_state(self, path: str | Path) -> None:
        """Persist the context. Raises StateError."""
        ...

    @abstractmethod
    def load_state(self, path: str | Path) -> None:
        """Restore a context written by save_state(). Raises StateError."""
        ...

    def close(self) -> None:
        """Release backend resources. Default: nothing to release."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Retry logic
# ─────────────────────────────────────────────────────────────────────────────


def call_with_retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn() with exponential backoff on transient errors.

    Retries on:
      - LLMConnectionError  (network blip, timeout, 5xx)
      - LLMRateLimitError   (429 / quota exceeded)

    Every other exception propagates immediately.

    Backoff formula: min(base_delay * 2^attempt + jitter, max_delay)
    If LLMRateLimitError carries retry_after, that value is used instead.
    """
    log = get_logger("bangchat.brain.retry")
    last_error: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return fn()
        except (LLMConnectionError, LLMRateLimitError) as e:
            last_error = e

            if attempt == max_attempts - 1:
                break

            if isinstance(e, LLMRateLimitError) and e.retry_after:
                delay = min(e.retry_after, max_delay)
            else:
                jitter = random.uniform(0, 0.5)
                delay = min(base_delay * (2 ** attempt) + jitter, max_delay)

            log.warning(
                "llm.retrying",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            sleep(delay)

    raise last_error  # type: ignore[misc]
