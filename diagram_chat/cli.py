"""Command-line interface."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from .config import (
    ModelProvider,
    configure_logging,
    get_iterate_provider,
    get_loop_config,
    print_config,
)
from .diagram import DiagramText
from .errors import OutlineError, StreamError
from .models import RequestCommand, TurnResult
from .orchestrator import ConversationLoop
from .providers import get_model_stream
from .session import DiagramSession, SessionPresenter
from .tools import build_workspace_registry
from .validator import DiagramValidator, MermaidCliBackend


def parse_command(text: str) -> tuple[Optional[RequestCommand], str]:
    """Split a leading '/command' off a user request."""
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None, stripped
    head, _, rest = stripped[1:].partition(" ")
    try:
        return RequestCommand(head.lower()), rest.strip()
    except ValueError:
        return None, stripped


def print_diagram(diagram: DiagramText):
    print(f"\n--- {diagram.diagram_type or 'diagram'} ---")
    print(diagram.content)
    print("---")


def build_loop(
    workspace: str,
    provider: Optional[ModelProvider] = None,
    session: Optional[DiagramSession] = None,
    show_diagrams: bool = True,
) -> ConversationLoop:
    """Wire the loop with the configured model, workspace tools and Mermaid CLI."""
    config = get_loop_config()
    session = session or DiagramSession()
    iterate_provider = get_iterate_provider()
    return ConversationLoop(
        model=get_model_stream(provider),
        iterate_model=get_model_stream(iterate_provider) if iterate_provider else None,
        tools=build_workspace_registry(workspace),
        validator=DiagramValidator(
            MermaidCliBackend(config.mmdc_path, timeout=config.validation_timeout),
            timeout=config.validation_timeout,
            language=config.language,
        ),
        session=session,
        presenter=SessionPresenter(session, on_present=print_diagram if show_diagrams else None),
        config=config,
        workspace=str(Path(workspace).resolve()),
    )


def _print_text(text: str):
    print(text, end="", flush=True)


def _print_progress(message: str):
    print(f"\n[{message}]", flush=True)


async def run_request(
    loop: ConversationLoop,
    command: Optional[RequestCommand],
    request: str,
    **callbacks,
) -> TurnResult:
    """Run a parsed request; '/outline <file>' outlines a workspace file."""
    if command == RequestCommand.OUTLINE:
        return await loop.run_outline(request, **callbacks)
    return await loop.run_turn(request, command, **callbacks)


async def run_interactive(workspace: str, provider: Optional[ModelProvider] = None):
    """Run an interactive diagram chat session."""
    print("=" * 60)
    print("diagram-chat - Conversational Mermaid diagrams")
    print("=" * 60)
    print_config()
    print("\nDescribe the diagram you want. Prefix with /uml, /sequence or /iterate,\nor use /outline <file> for an outline of one Python file.")
    print("Commands: quit, show\n")

    loop = build_loop(workspace, provider)

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            break

        if not user_input:
            continue
        if user_input.lower() == 'quit':
            break
        if user_input.lower() == 'show':
            current = loop.session.current
            print(current.content if current else "No diagram yet.")
            continue

        command, request = parse_command(user_input)
        try:
            await run_request(loop, command, request, on_text=_print_text, on_progress=_print_progress)
        except StreamError as e:
            print(f"\nERROR: {e}")
        except OutlineError as e:
            print(f"\nERROR: {e}")


async def run_once(
    prompt: str,
    workspace: str,
    provider: Optional[ModelProvider] = None,
    quiet: bool = False,
) -> TurnResult:
    """Run a single turn (non-interactive mode)."""
    command, request = parse_command(prompt)
    loop = build_loop(workspace, provider, show_diagrams=not quiet)
    return await run_request(
        loop,
        command,
        request,
        on_text=None if quiet else _print_text,
        on_progress=None if quiet else _print_progress,
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="diagram-chat",
        description="Chat with a language model to produce validated Mermaid diagrams"
    )
    parser.add_argument(
        "--workspace", "-w",
        type=str,
        default=".",
        help="Project directory the model's tools may read"
    )
    parser.add_argument(
        "--prompt", "-p",
        type=str,
        help="Run a single request non-interactively (may start with /uml, /sequence)"
    )
    parser.add_argument(
        "--outline",
        type=str,
        metavar="FILE",
        help="Diagram the symbol outline of one Python file in the workspace"
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in ModelProvider],
        help="Override LLM_PROVIDER"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output the turn result as JSON (with --prompt)"
    )
    parser.add_argument(
        "--config", "-c",
        action="store_true",
        help="Show config and exit"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log loop activity to stderr"
    )
    args = parser.parse_args()

    configure_logging("INFO" if args.verbose else None)

    if args.config:
        print_config()
        return

    if not Path(args.workspace).is_dir():
        print(f"Error: Workspace not found: {args.workspace}", file=sys.stderr)
        sys.exit(1)

    provider = ModelProvider(args.provider) if args.provider else None

    prompt = f"/outline {args.outline}" if args.outline else args.prompt
    if prompt:
        try:
            result = asyncio.run(run_once(prompt, args.workspace, provider, quiet=args.json))
        except StreamError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)
        except OutlineError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if args.json:
            print(json.dumps(result.model_dump(mode="json"), indent=2))
        else:
            print(f"\n{'=' * 60}")
            print(f"Result: {result.state.value}")
            print(f"Model calls: {result.model_calls}, retries: {result.retries}")
            if result.message:
                print(result.message)

        sys.exit(0 if result.accepted else 1)

    asyncio.run(run_interactive(args.workspace, provider))


if __name__ == "__main__":
    main()
