#!/usr/bin/env python3
"""
Command Line Interface for the conversational API caller
"""

import argparse
import json
import sys
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.prompt import Prompt
from loguru import logger

from api_dialogue.config import AppConfig
from api_dialogue.conversation_engine import ConversationEngine
from api_dialogue.conversation_store import InMemoryConversationStore, JsonFileConversationStore
from api_dialogue.errors import SpecLoadError
from api_dialogue.spec_compiler import SpecCompiler
from api_dialogue.spec_loader import load_spec


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    logger.remove()

    if verbose:
        logger.add(sys.stderr, level="DEBUG", format="<green>{time}</green> | <level>{level: <8}</level> | {message}")
    else:
        logger.add(sys.stderr, level="WARNING", format="<level>{level: <8}</level> | {message}")


def load_config(args) -> AppConfig:
    config = AppConfig.from_env(args.env_file)
    if args.threshold is not None:
        config.min_confidence = args.threshold
    if args.base_url:
        config.base_url_override = args.base_url
    if args.conversations_dir:
        config.conversations_dir = args.conversations_dir
    return config


def compile_command(args):
    """Compile a document and show its tools."""
    console = Console()
    config = load_config(args)
    document = load_spec(args.spec, timeout=config.request_timeout)
    compiler = SpecCompiler(document, config.base_url_override)
    tools = compiler.compile()

    if args.json:
        print(json.dumps([tool.to_dict() for tool in tools], indent=2))
        return

    table = Table(title=f"Tools compiled from {args.spec}")
    table.add_column("Name", style="green")
    table.add_column("Method", style="cyan", width=7)
    table.add_column("Path", style="blue")
    table.add_column("Required", style="yellow")
    table.add_column("Optional", style="white")

    for tool in tools:
        table.add_row(
            tool.name,
            tool.endpoint.method,
            tool.endpoint.path,
            ", ".join(tool.input_schema.required),
            ", ".join(tool.input_schema.optional),
        )

    console.print(table)
    console.print(f"Base URL: {compiler.base_url or '(none)'}")
    if compiler.skipped:
        console.print(f"[yellow]Skipped {len(compiler.skipped)} operations:[/yellow]")
        for error in compiler.skipped:
            console.print(f"- {error}")


def match_command(args):
    """Rank tools for a single query."""
    console = Console()
    config = load_config(args)

    with console.status("[bold green]Loading tools..."):
        engine = ConversationEngine.from_config(args.spec, config, store=InMemoryConversationStore())

    results = engine.matcher.find_similar(args.query, k=args.top)

    table = Table(title=f"Top {args.top} Tool Matches for: '{args.query}'")
    table.add_column("Rank", style="cyan", width=4)
    table.add_column("Tool", style="green")
    table.add_column("Score", style="yellow", width=7)
    table.add_column("Semantic", width=8)
    table.add_column("Keyword", width=8)
    table.add_column("Intent", width=7)
    table.add_column("Path", width=6)
    table.add_column("Status", width=18)

    for rank, scored in enumerate(results, 1):
        above = scored.score >= config.min_confidence
        status = "[green]✅ MATCH[/green]" if above else "[red]❌ Below threshold[/red]"
        breakdown = scored.breakdown
        table.add_row(
            str(rank),
            scored.tool.name,
            f"{scored.score:.3f}",
            f"{breakdown.semantic:.2f}",
            f"{breakdown.keyword:.2f}",
            f"{breakdown.intent:.2f}",
            f"{breakdown.path:.2f}",
            status,
        )

    console.print(table)
    if results and results[0].score < config.min_confidence:
        console.print(f"[yellow]💡 Tip:[/yellow] Lower the threshold with --threshold {results[0].score:.2f} "
                      f"to accept the best result")


def print_response(console: Console, engine: ConversationEngine, response):
    style = "yellow" if response.needs_clarification else ("red" if response.errors else "green")
    console.print(Panel(response.message, title="Assistant", border_style=style))
    if response.request is not None:
        console.print(f"[dim]{engine.synthesizer.to_curl_string(response.request)}[/dim]")


def chat_command(args):
    """Start an interactive conversation."""
    console = Console()
    config = load_config(args)

    with console.status("[bold green]Loading tools..."):
        engine = ConversationEngine.from_config(args.spec, config)

    record = engine.start_conversation()
    console.print("[bold blue]🤖 API Assistant[/bold blue]")
    console.print("Type 'quit' to exit, 'state' to show collected parameters\n")
    console.print(record.messages[-1].content)

    while True:
        try:
            text = Prompt.ask("[bold cyan]You")

            if text.strip().lower() in ("quit", "exit"):
                break
            if text.strip().lower() == "state":
                state = engine.get_conversation(record.id).state
                console.print(json.dumps(state.to_dict(), indent=2, default=str))
                continue
            if not text.strip():
                continue

            print_response(console, engine, engine.process_message(record.id, text))
            console.print()

        except (KeyboardInterrupt, EOFError):
            console.print("\n[yellow]Goodbye![/yellow]")
            break

    console.print(f"[dim]Conversation id: {record.id}[/dim]")


def conversations_command(args):
    """List or clean up persisted conversations."""
    console = Console()
    config = load_config(args)
    if not config.conversations_dir:
        console.print("[red]Set CONVERSATIONS_DIR or pass --conversations-dir to use stored conversations[/red]")
        sys.exit(1)

    store = JsonFileConversationStore(config.conversations_dir, lambda name: None)
    if args.delete:
        deleted = store.delete(args.delete)
        console.print(f"{'Deleted' if deleted else 'Not found'}: {args.delete}")
        return
    if args.evict:
        evicted = store.evict_idle(config.conversation_timeout)
        console.print(f"Evicted {len(evicted)} idle conversations")

    table = Table(title="Conversations")
    table.add_column("Id", style="green")
    table.add_column("Last activity", style="cyan")
    table.add_column("Messages", style="yellow")
    for summary in store.list():
        table.add_row(summary["id"], summary["lastActivity"], str(summary["messageCount"]))
    console.print(table)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Conversational API caller CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py compile petstore.yaml                       # List compiled tools
  python cli.py match petstore.yaml "create a pet named Leo" # Rank tools for a query
  python cli.py chat petstore.yaml                          # Start a conversation
  python cli.py conversations --evict                       # Drop idle conversations
        """
    )

    # Global arguments
    parser.add_argument('--threshold', type=float, default=None,
                        help='Minimum fused score to accept a tool (default: MIN_CONFIDENCE_THRESHOLD or 0.35)')
    parser.add_argument('--base-url', default=None,
                        help='Override the base URL compiled from the document')
    parser.add_argument('--conversations-dir', default=None,
                        help='Directory for stored conversations (default: CONVERSATIONS_DIR)')
    parser.add_argument('--env-file', default=None,
                        help='Path to a .env file')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    compile_parser = subparsers.add_parser('compile', help='Compile a document into tools')
    compile_parser.add_argument('spec', help='Path or URL of an OpenAPI/Swagger document')
    compile_parser.add_argument('--json', action='store_true', help='Print tool descriptors as JSON')

    match_parser = subparsers.add_parser('match', help='Rank tools for a query')
    match_parser.add_argument('spec', help='Path or URL of an OpenAPI/Swagger document')
    match_parser.add_argument('query', help='Natural-language request')
    match_parser.add_argument('--top', type=int, default=5, help='Number of results to show')

    chat_parser = subparsers.add_parser('chat', help='Start an interactive conversation')
    chat_parser.add_argument('spec', help='Path or URL of an OpenAPI/Swagger document')

    conversations_parser = subparsers.add_parser('conversations', help='List stored conversations')
    conversations_parser.add_argument('--delete', metavar='ID', help='Delete one conversation')
    conversations_parser.add_argument('--evict', action='store_true', help='Delete idle conversations first')

    args = parser.parse_args()

    setup_logging(args.verbose)

    commands = {
        'compile': compile_command,
        'match': match_command,
        'chat': chat_command,
        'conversations': conversations_command,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(1)

    try:
        commands[args.command](args)
    except SpecLoadError as e:
        Console().print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == '__main__':
    main()
