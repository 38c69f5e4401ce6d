"""Main entry point for chat-tui."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from chat_tui.application.confirm import ConfirmationEngine
from chat_tui.application.prompts import PromptSynthesizer
from chat_tui.application.session import ChatSession
from chat_tui.application.trust import TrustStore
from chat_tui.infrastructure.config import Config, get_config
from chat_tui.infrastructure.engine import EngineLoadError, load_engine
from chat_tui.infrastructure.logging import configure_logging, get_logger
from chat_tui.infrastructure.readline import Prompter
from chat_tui.infrastructure.signals import InterruptListener
from chat_tui.infrastructure.terminal import TerminalArea
from chat_tui.presentation.display import Display
from chat_tui.presentation.render import CallTreeRenderer
from chat_tui.presentation.style import RenderConfig

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chat_tui.infrastructure.engine import Engine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-tui",
        description="Chat with a tool in the terminal.",
    )
    parser.add_argument("tool", help="Tool reference to run")
    parser.add_argument("--input", help="First message sent to the tool")
    parser.add_argument(
        "--workspace", type=Path, help="Workspace directory (temporary if omitted)"
    )
    parser.add_argument(
        "--chat-state-file",
        type=Path,
        help="Save the conversation here and resume from it on the next start",
    )
    parser.add_argument(
        "--event-log", type=Path, help="Append engine events to this file as JSON lines"
    )
    parser.add_argument(
        "--trusted-prefix",
        action="append",
        default=[],
        metavar="PREFIX",
        help="Trust tools from this origin without asking (repeatable)",
    )
    parser.add_argument(
        "--disable-cache", action="store_true", help="Disable the engine cache"
    )
    return parser


def apply_arguments(config: Config, args: argparse.Namespace) -> Config:
    """Return a copy of ``config`` with the command-line values applied."""
    update: dict[str, Any] = {}
    if args.input is not None:
        update["input"] = args.input
    if args.workspace is not None:
        update["workspace"] = args.workspace
    if args.chat_state_file is not None:
        update["save_chat_state_file"] = args.chat_state_file
    if args.event_log is not None:
        update["event_log"] = args.event_log
    if args.trusted_prefix:
        update["trusted_repo_prefixes"] = [
            *config.trusted_repo_prefixes,
            *args.trusted_prefix,
        ]
    if args.disable_cache:
        update["disable_cache"] = True
    return config.model_copy(update=update)


async def main(argv: Sequence[str] | None = None) -> None:
    """Application entry point."""
    args = build_parser().parse_args(argv)

    # Settings are needed before logging is configured
    config = apply_arguments(get_config(), args)

    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        log_backup_count=config.log_backup_count,
    )

    logger = get_logger(__name__)
    logger.info("Starting chat-tui", tool=args.tool)

    engine: Engine | None = None
    prompter: Prompter | None = None
    display: Display | None = None

    try:
        if not config.engine:
            raise EngineLoadError("", "no engine configured (set CHAT_TUI_ENGINE)")
        engine = load_engine(config.engine, config)

        render = RenderConfig(color=sys.stdout.isatty())
        trust = TrustStore.load(config.trust_file, config.trusted_repo_prefixes)
        confirm = ConfirmationEngine(
            engine,
            trust,
            PromptSynthesizer(render, config.exec_always_scope_directory),
            config.system_tool_prefix,
        )

        prompter = Prompter.create(args.tool, config.history_dir)
        display = Display(TerminalArea(), prompter, render.size, config.paint_interval)
        interrupt = InterruptListener()

        session = ChatSession(
            config,
            engine,
            display,
            confirm,
            CallTreeRenderer(render, config.raw_tool_prefix),
            render,
            interrupt,
        )

        display.start()
        with interrupt:
            await session.run(args.tool)

    except Exception:
        logger.exception("Fatal error occurred")
        sys.exit(1)
    finally:
        if display is not None:
            await display.close()
        if prompter is not None:
            prompter.close()
        if engine is not None:
            try:
                await engine.close()
            except Exception:
                logger.exception("Error during engine cleanup")

        logger.info("Shutdown complete")
        logging.shutdown()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
