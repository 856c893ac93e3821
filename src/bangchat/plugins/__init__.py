from bangchat.plugins.loader import load_language_model, load_tool, resolve_constructor
from bangchat.plugins.params import parse_params

__all__ = ["load_language_model", "load_tool", "resolve_constructor", "parse_params"]
