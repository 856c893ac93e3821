"""
bangchat/plugins/loader.py - Plugin Loader

Resolves a plugin reference to a constructor and calls it with the opaque
"k=v,..." parameter string. A reference is one of:

  - a built-in name          "openai", "ollama", "ish", "calc"
  - a module attribute       "mypkg.backends:create_language_model"
  - a module                 "mypkg.tools.search"      (well-known symbol)
  - a Python file            "./plugins/weather.py"    (well-known symbol)

Well-known constructor symbols are `create_language_model` for language
model backends and `create_tool` for tools.

Errors:
  - PluginLoadError  the module, file or symbol cannot be resolved
  - ContractError    the constructor rejects its parameters, or returns
                     something that does not implement the contract

Usage:
    lm = load_language_model("openai", "model=gpt-3.5-turbo-instruct")
    tool = load_tool("./plugins/weather.py", "units=metric")
"""

from __future__ import annotations

import importlib
import importlib.util
import re
import sys
from pathlib import Path
from typing import Any, Callable

from bangchat.brain.base import LanguageModel
from bangchat.exceptions import ContractError, PluginLoadError
from bangchat.observability.logger import get_logger
from bangchat.tools.base import BaseTool

log = get_logger(__name__)

LANGUAGE_MODEL_SYMBOL = "create_language_model"
TOOL_SYMBOL = "create_tool"

BUILTIN_LANGUAGE_MODELS: dict[str, str] = {
    "openai": "bangchat.brain.openai_backend:create_language_model",
    "ollama": "bangchat.brain.openai_backend:create_ollama_language_model",
}

BUILTIN_TOOLS: dict[str, str] = {
    "ish": "bangchat.tools.shell:create_tool",
    "calc": "bangchat.tools.calc:create_tool",
}


def _import_file(path: Path) -> Any:
    if not path.is_file():
        raise PluginLoadError(str(path), f"Plugin file not found: {path}")
    module_name = f"_bangchat_plugin_{path.stem}_{abs(hash(str(path.resolve())))}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(str(path), f"Cannot import plugin file: {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise PluginLoadError(str(path), f"Failed to import plugin file {path}: {e}") from e
    return module


def _import_module(name: str) -> Any:
    try:
        return importlib.import_module(name)
    except ImportError as e:
        raise PluginLoadError(name, f"Failed to import plugin module '{name}': {e}") from e


_FILE_REFERENCE = re.compile(r"\.py(:\w+)?$")


def _is_file_reference(reference: str) -> bool:
    return bool(_FILE_REFERENCE.search(reference)) or "/" in reference or "\\" in reference


def resolve_constructor(
    reference: str,
    symbol: str,
    builtins: dict[str, str],
) -> Callable[[str], Any]:
    """
    Turn a plugin reference into a callable constructor.

    Raises:
        PluginLoadError: if the module, file or symbol cannot be resolved.
    """
    reference = reference.strip()
    if not reference:
        raise PluginLoadError(reference, "Empty plugin reference")

    target = builtins.get(reference, reference)

    if _is_file_reference(target):
        # "plugins/weather.py:make_tool" names a symbol inside the file
        path_text, attr = target.rsplit(":", 1) if ".py:" in target else (target, "")
        module = _import_file(Path(path_text).expanduser())
        attr = attr or symbol
        origin = path_text
    else:
        module_name, _, attr = target.partition(":")
        module = _import_module(module_name)
        attr = attr or symbol
        origin = module_name

    constructor = getattr(module, attr, None)
    if constructor is None:
        raise PluginLoadError(
            reference, f"Plugin '{origin}' does not define '{attr}'"
        )
    if not callable(constructor):
        raise PluginLoadError(
            reference, f"Plugin symbol '{origin}:{attr}' is not callable"
        )
    return constructor


def _construct(reference: str, constructor: Callable[[str], Any], params: str) -> Any:
    try:
        return constructor(params or "")
    except ContractError:
        raise
    except (ValueError, TypeError, KeyError) as e:
        raise ContractError(
            f"Plugin '{reference}' rejected its parameters {params!r}: {e}"
        ) from e


def load_language_model(reference: str, params: str = "") -> LanguageModel:
    """Load and construct a language model backend."""
    constructor = resolve_constructor(reference, LANGUAGE_MODEL_SYMBOL, BUILTIN_LANGUAGE_MODELS)
    lm = _construct(reference, constructor, params)
    if not isinstance(lm, LanguageModel):
        raise ContractError(
            f"Plugin '{reference}' returned {type(lm).__name__}, "
            f"expected a LanguageModel"
        )
    log.info("plugin_loader.language_model", reference=reference, backend=lm.name)
    return lm


def load_tool(reference: str, params: str = "") -> BaseTool:
    """Load and construct a tool."""
    constructor = resolve_constructor(reference, TOOL_SYMBOL, BUILTIN_TOOLS)
    tool = _construct(reference, constructor, params)
    if not isinstance(tool, BaseTool):
        raise ContractError(
            f"Plugin '{reference}' returned {type(tool).__name__}, expected a BaseTool"
        )
    log.info("plugin_loader.tool", reference=reference, tool=tool.name)
    return tool
