"""
bangchat/brain/openai_backend.py - OpenAI-compatible Completion Backend

Drives any server that speaks the OpenAI /v1/completions API (OpenAI, vLLM,
llama.cpp server, Ollama, LiteLLM proxy) through the openai SDK with
stream=True.

The backend keeps the whole conversation as one growing text context:

    System: You are a helpful assistant.

    User: what is 1 + 2?

    Assistant: Let me check.
    !add 1 2

    System: 3
    Command "add 1 2" is returned with code 0

    Assistant:

Generation stops when the reply ends with a blank line ("\\n\\n"), so each
reply is one paragraph block. With think mode the open Assistant turn gets
a "<think>" block and the blank-line stop is only armed once the answer
after "</think>" has started.

A sink may start a nested generate_streaming() call (a tool reading more
model output). The outer stream then ends after that fragment, since its
remaining chunks were sampled from a context that no longer exists.

State files are JSON: {"version": 1, "backend": ..., "model": ..., "context": ...}.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx
import openai
from openai import OpenAI

from bangchat.brain.base import FragmentSink, LanguageModel, call_with_retry
from bangchat.brain.types import Message
from bangchat.exceptions import (
    GenerationError,
    IngestError,
    LLMConnectionError,
    LLMRateLimitError,
    StateError,
)
from bangchat.observability.logger import get_logger
from bangchat.plugins.params import (
    param_bool,
    param_float,
    param_int,
    param_str,
    parse_params,
    warn_unknown,
)

log = get_logger(__name__)

THINK_OPEN = " <think>"
THINK_CLOSE = "</think>"
BLOCK_SEPARATOR = "\n\n"

_STATE_VERSION = 1

_DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo-instruct"
_DEFAULT_OLLAMA_MODEL = "llama3.1"
_DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"

_KNOWN_PARAMS = {
    "model", "base_url", "api_key", "temperature", "top_p", "max_tokens",
    "think", "max_attempts", "timeout", "max_context",
}


class CompletionLanguageModel(LanguageModel):
    """
    Text-completion backend over an OpenAI-compatible endpoint.

    Args:
        model:        Model name sent with every request.
        api_key:      API key. None lets the SDK read OPENAI_API_KEY.
        base_url:     Endpoint root ending in /v1. None = official OpenAI.
        temperature:  Sampling temperature.
        top_p:        Nucleus sampling.
        max_tokens:   Upper bound on tokens per reply.
        think:        Whether think mode may be requested.
        max_attempts: Attempts to open the stream on transient errors.
        timeout:      Read timeout in seconds for each request.
        max_context:  Context size limit in characters, 0 for no limit.
        client:       Pre-built openai.OpenAI client (tests inject a mock).
    """

    name = "openai"
    supports_think = True

    def __init__(
        self,
        model: str = _DEFAULT_OPENAI_MODEL,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 1.0,
        top_p: float = 1.0,
        max_tokens: int = 512,
        think: bool = True,
        max_attempts: int = 3,
        timeout: float = 60.0,
        max_context: int = 0,
        provider: str = "openai",
        client: Optional[Any] = None,
    ):
        if not model:
            raise ValueError("parameter 'model' must not be empty")
        if max_tokens < 1:
            raise ValueError("parameter 'max_tokens' must be >= 1")
        if timeout <= 0:
            raise ValueError("parameter 'timeout' must be > 0")

        self.name = provider
        self.supports_think = think
        self._model = model
        self._temperature = temperature
        self._top_p = top_p
        self._max_tokens = max_tokens
        self._max_attempts = max(1, max_attempts)
        self._max_context = max(0, max_context)
        self._base_url = base_url

        if client is None:
            try:
                client = OpenAI(
                    api_key=api_key,
                    base_url=base_url,
                    timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
                    max_retries=0,
                )
            except openai.OpenAIError as e:
                raise ValueError(str(e)) from e
        self._client = client

        self._context = ""
        self._think_open = False
        self._generation = 0

    # ── Contract ─────────────────────────────────────────────────────────────

    def apply_template(self, messages: Sequence[Message], think: bool = False) -> str:
        blocks = []
        for msg in messages:
            if msg.is_open:
                blocks.append(f"{msg.role.value}:")
            else:
                blocks.append(f"{msg.role.value}: {msg.content.strip()}")
        text = BLOCK_SEPARATOR.join(blocks)
        if think and self.supports_think and messages and messages[-1].is_open:
            text += THINK_OPEN
        return text

    def ingest(self, text: str) -> None:
        if not isinstance(text, str):
            raise IngestError(f"cannot ingest {type(text).__name__}", provider=self.name)
        addition = text
        if self._context and not self._context.endswith(BLOCK_SEPARATOR):
            sep = "\n" if self._context.endswith("\n") else BLOCK_SEPARATOR
            addition = sep + text
        if self._max_context and len(self._context) + len(addition) > self._max_context:
            raise IngestError(
                f"context would grow to {len(self._context) + len(addition)} characters, "
                f"limit is {self._max_context}",
                provider=self.name,
            )
        self._context += addition
        self._think_open = text.endswith(THINK_OPEN)
        log.debug("lm.ingest", backend=self.name, chars=len(text), context_chars=len(self._context))

    def generate_streaming(self, sink: FragmentSink) -> str:
        log.debug("lm.generate.start", backend=self.name, model=self._model)
        stream = call_with_retry(
            lambda: self._open_stream(self._context),
            max_attempts=self._max_attempts,
        )

        self._generation += 1
        generation = self._generation

        generated = ""
        # the blank-line stop is armed at the first non-space character after
        # "</think>", so the blank line that usually follows it does not count
        stop_from: Optional[int] = None if self._think_open else 0
        self._think_open = False
        think_end: Optional[int] = None
        try:
            for chunk in stream:
                text = _chunk_text(chunk)
                if not text:
                    continue
                combined = generated + text
                if stop_from is None:
                    if think_end is None:
                        close_at = combined.find(THINK_CLOSE)
                        if close_at != -1:
                            think_end = close_at + len(THINK_CLOSE)
                    if think_end is not None:
                        answer = combined[think_end:]
                        if answer.strip():
                            stop_from = think_end + len(answer) - len(answer.lstrip())
                stop = -1
                if stop_from is not None:
                    stop = combined.find(
                        BLOCK_SEPARATOR,
                        max(stop_from, len(generated) - len(BLOCK_SEPARATOR) + 1),
                    )
                if stop != -1:
                    text = combined[len(generated):stop + len(BLOCK_SEPARATOR)]
                if text:
                    generated += text
                    self._context += text
                    sink(text)
                if stop != -1:
                    break
                if self._generation != generation:
                    # the sink ran a nested generation (a tool reading model
                    # output); the rest of this stream predates that context
                    log.debug("lm.generate.superseded", backend=self.name, chars=len(generated))
                    break
        except openai.OpenAIError as e:
            raise GenerationError(
                f"stream interrupted: {e}",
                provider=self.name,
                status_code=getattr(e, "status_code", None),
            ) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"stream interrupted: {e}", provider=self.name) from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        log.debug("lm.generate.complete", backend=self.name, chars=len(generated))
        return generated

    def save_state(self, path: str | Path) -> None:
        path = Path(path)
        payload = {
            "version": _STATE_VERSION,
            "backend": self.name,
            "model": self._model,
            "context": self._context,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as e:
            raise StateError(f"cannot save state to {path}: {e}", provider=self.name) from e
        log.info("lm.state.saved", path=str(path), context_chars=len(self._context))

    def load_state(self, path: str | Path) -> None:
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateError(f"cannot read state file {path}: {e}", provider=self.name) from e
        except json.JSONDecodeError as e:
            raise StateError(f"state file {path} is not valid JSON: {e}", provider=self.name) from e
        if not isinstance(payload, dict) or not isinstance(payload.get("context"), str):
            raise StateError(f"state file {path} has no context", provider=self.name)
        if payload.get("version") != _STATE_VERSION:
            raise StateError(
                f"state file {path} has version {payload.get('version')!r}, "
                f"expected {_STATE_VERSION}",
                provider=self.name,
            )
        if payload.get("model") not in (None, self._model):
            log.warning("lm.state.model_mismatch", saved=payload.get("model"), current=self._model)
        self._context = payload["context"]
        self._think_open = False
        log.info("lm.state.loaded", path=str(path), context_chars=len(self._context))

    def close(self) -> None:
        self._client.close()

    @property
    def context(self) -> str:
        return self._context

    def __repr__(self) -> str:
        return f"<CompletionLanguageModel provider={self.name} model={self._model}>"

    # ── Private helpers ───────────────────────────────────────────────────────

    def _open_stream(self, prompt: str):
        try:
            return self._client.completions.create(
                model=self._model,
                prompt=prompt,
                stream=True,
                temperature=self._temperature,
                top_p=self._top_p,
                max_tokens=self._max_tokens,
            )
        except openai.RateLimitError as e:
            raise LLMRateLimitError(str(e), provider=self.name, retry_after=_retry_after(e)) from e
        except openai.APIConnectionError as e:
            raise LLMConnectionError(
                f"Cannot reach {self._base_url or 'the OpenAI API'}: {e}", provider=self.name
            ) from e
        except openai.InternalServerError as e:
            raise LLMConnectionError(str(e), provider=self.name, status_code=e.status_code) from e
        except openai.APIStatusError as e:
            raise GenerationError(str(e), provider=self.name, status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise GenerationError(str(e), provider=self.name) from e


def _chunk_text(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    return getattr(choices[0], "text", None) or ""


def _retry_after(e: Exception) -> Optional[float]:
    response = getattr(e, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        return float(headers.get("retry-after"))
    except (TypeError, ValueError):
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Plugin constructors
# ─────────────────────────────────────────────────────────────────────────────


def _build(params: str, provider: str, defaults: dict[str, Any]) -> CompletionLanguageModel:
    opts = parse_params(params)
    warn_unknown(opts, _KNOWN_PARAMS, plugin=provider)
    return CompletionLanguageModel(
        model=param_str(opts, "model", defaults["model"]),
        api_key=param_str(opts, "api_key", defaults.get("api_key")),
        base_url=param_str(opts, "base_url", defaults.get("base_url")),
        temperature=param_float(opts, "temperature", 1.0),
        top_p=param_float(opts, "top_p", 1.0),
        max_tokens=param_int(opts, "max_tokens", 512),
        think=param_bool(opts, "think", True),
        max_attempts=param_int(opts, "max_attempts", 3),
        timeout=param_float(opts, "timeout", 60.0),
        max_context=param_int(opts, "max_context", 0),
        provider=provider,
    )


def create_language_model(params: str = "") -> CompletionLanguageModel:
    """Build the "openai" backend from a "k=v,..." parameter string."""
    return _build(params, "openai", {"model": _DEFAULT_OPENAI_MODEL})


def create_ollama_language_model(params: str = "") -> CompletionLanguageModel:
    """Build the "ollama" backend. No API key required."""
    base_url = os.environ.get("OLLAMA_BASE_URL")
    return _build(
        params,
        "ollama",
        {
            "model": _DEFAULT_OLLAMA_MODEL,
            "api_key": "ollama",
            "base_url": base_url.rstrip("/") + "/v1" if base_url else _DEFAULT_OLLAMA_BASE_URL,
        },
    )
