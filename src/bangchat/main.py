"""
bangchat/main.py - bangchat Entry Point

Usage:
    bangchat --lm openai --lm-args model=gpt-3.5-turbo-instruct
    bangchat --lm ollama --lm-args model=llama3.1 --tool calc --tool ish
    bangchat --system-prompt-file prompts/agent.txt --state-file chat.state
    bangchat --chat-history chat.log --show-thinking --log-level DEBUG
    bangchat --config path/to/config.yaml

Exit codes: 0 on a clean exit, 1 on a configuration problem or any fatal
error (plugin load, backend failure, state save), with the message on stderr.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="bangchat",
        description="Chat with a language model that can call tools with '!' lines",
    )
    parser.add_argument(
        "--lm",
        default=None,
        help="Language model backend: openai, ollama, module:attr or a .py file "
             "(default: lm.backend from config)",
    )
    parser.add_argument(
        "--lm-args",
        default=None,
        help='Backend parameters as "key=value,key2=value2"',
    )
    parser.add_argument(
        "--tool",
        action="append",
        default=None,
        help="Tool to load: ish, calc, module:attr or a .py file (repeatable)",
    )
    parser.add_argument(
        "--tool-args",
        action="append",
        default=None,
        help='Parameters for the --tool at the same position, as "key=value,..." '
             "(a single --tool-args applies to every --tool)",
    )
    prompt = parser.add_mutually_exclusive_group()
    prompt.add_argument("--system-prompt", default=None, help="System prompt text")
    prompt.add_argument("--system-prompt-file", default=None, help="File holding the system prompt")
    parser.add_argument(
        "--chat-history",
        default=None,
        help="Append the raw conversation transcript to this file",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="Load backend state from this file at start and save it on exit",
    )
    parser.add_argument(
        "--show-thinking",
        action="store_true",
        default=None,
        help="Print the model's thoughts in think mode",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $BANGCHAT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def _tool_entries(args: argparse.Namespace) -> Optional[list[dict]]:
    if not args.tool:
        return None
    params = args.tool_args or []
    if len(params) == 1:
        params = params * len(args.tool)
    if len(params) > len(args.tool):
        raise ValueError("more --tool-args than --tool flags were given")
    params = params + [""] * (len(args.tool) - len(params))
    return [{"module": module, "params": p} for module, p in zip(args.tool, params)]


def apply_cli_overrides(settings, args: argparse.Namespace):
    """Return a copy of settings with command-line flags applied on top."""
    from bangchat.config.settings import LanguageModelConfig, ToolEntryConfig

    update: dict = {}

    if args.lm is not None or args.lm_args is not None:
        update["lm"] = LanguageModelConfig(
            backend=args.lm if args.lm is not None else settings.lm.backend,
            params=args.lm_args if args.lm_args is not None else settings.lm.params,
        )

    tools = _tool_entries(args)
    if tools is not None:
        update["tools"] = [ToolEntryConfig(**t) for t in tools]

    session_update: dict = {}
    if args.system_prompt is not None:
        session_update.update(system_prompt=args.system_prompt, system_prompt_file=None)
    if args.system_prompt_file is not None:
        session_update.update(system_prompt=None, system_prompt_file=args.system_prompt_file)
    if args.chat_history is not None:
        session_update["transcript_path"] = args.chat_history
    if args.state_file is not None:
        session_update["state_path"] = args.state_file
    if args.show_thinking:
        session_update["show_thinking"] = True
    if session_update:
        update["session"] = settings.session.model_copy(update=session_update)

    if args.log_level is not None:
        update["logging"] = settings.logging.model_copy(update={"level": args.log_level})

    return settings.model_copy(update=update) if update else settings


def bootstrap(args: argparse.Namespace):
    """
    Load config, apply command-line flags, validate, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from bangchat.config.settings import ConfigError, load_settings
    from bangchat.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = apply_cli_overrides(load_settings(args.config), args)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\nConfig validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml, your .env file or the command line and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(f"\nFailed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    setup_logging(
        level=settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("bangchat.main")
    return settings, log


def build_registry(settings, log):
    """Load every configured tool. Duplicate names are skipped with a warning."""
    from bangchat.exceptions import ToolNameConflictError
    from bangchat.plugins.loader import load_tool
    from bangchat.tools.registry import ToolRegistry

    registry = ToolRegistry()
    for entry in settings.tools:
        tool = load_tool(entry.module, entry.params)
        try:
            registry.register(tool)
        except ToolNameConflictError as e:
            log.warning("bangchat.tool_name_conflict", tool=e.name, module=entry.module)
    return registry


def run(settings, log) -> int:
    from bangchat.agent.orchestrator import SessionOrchestrator
    from bangchat.agent.transcript import TranscriptWriter
    from bangchat.interfaces.cli import ChatCLI
    from bangchat.plugins.loader import load_language_model

    lm = load_language_model(settings.lm.backend, settings.lm.params)
    try:
        registry = build_registry(settings, log)
        cli = ChatCLI(show_thinking=settings.session.show_thinking)

        writer = None
        if settings.session.transcript_path:
            writer = TranscriptWriter(Path(settings.session.transcript_path).expanduser())
        try:
            orchestrator = SessionOrchestrator.from_settings(
                settings, lm, registry, transcript_writer=writer, **cli.sinks()
            )
            log.info(
                "bangchat.starting",
                backend=settings.lm.backend,
                tools=[t.name for t in registry.tools()],
            )
            return cli.run(orchestrator)
        finally:
            if writer is not None:
                writer.close()
    finally:
        lm.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    from bangchat.exceptions import BangchatError

    load_dotenv()
    args = parse_args(argv)
    settings, log = bootstrap(args)

    try:
        code = run(settings, log)
    except (BangchatError, OSError) as exc:
        log.error("bangchat.fatal", error=str(exc), error_type=type(exc).__name__)
        print(f"Fatal Error: {exc}", file=sys.stderr)
        return 1

    log.info("bangchat.exited", code=code)
    return code


if __name__ == "__main__":
    sys.exit(main())
