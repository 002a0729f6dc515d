"""CLI entry point for Gamal."""

import asyncio
from pathlib import Path
from typing import Optional, Sequence, Tuple

import click
import httpx
from rich.console import Console
from rich.text import Text

from gamal.display.citations import CitationDisplay, cited_urls
from gamal.display.review import render_review
from gamal.llm.client import CompletionClient
from gamal.models.chat import Reference, Turn
from gamal.models.config import Config
from gamal.pipeline.context import PipelineDelegates
from gamal.pipeline.runner import Pipeline
from gamal.services.conversations import ConversationStore, handle_command
from gamal.services.exceptions import GamalError, PipelineError
from gamal.services.searxng import SearchClient, iso639_1
from gamal.utils.logging import configure_logging, conversation_context, get_logger


logger = get_logger(__name__)
console = Console()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "gamal" / "config.yaml"

# The terminal session is a single conversation
CONVERSATION = "cli"


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration.

    The YAML file is used when given or when ~/.config/gamal/config.yaml
    exists; otherwise settings come from environment variables.

    Returns:
        Validated Config instance

    Raises:
        click.ClickException: If config is missing, has invalid permissions, or validation fails
    """
    config_path = path or DEFAULT_CONFIG_PATH

    try:
        if path is None and not config_path.exists():
            config = Config.from_env()
            logger.info("config_loaded", source="environment")
            return config
        config = Config.load(config_path)
        logger.info("config_loaded", path=str(config_path))
        return config
    except FileNotFoundError as e:
        logger.error("config_not_found", path=str(config_path))
        raise click.ClickException(str(e))
    except PermissionError as e:
        logger.error("config_permission_error", path=str(config_path))
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        raise click.ClickException(f"Configuration validation failed:\n{e}")


def build_pipeline(config: Config) -> Pipeline:
    llm = CompletionClient(config.llm)
    searcher = SearchClient(config.search)
    return Pipeline(llm, searcher)


def check_llm(pipeline: Pipeline, config: Config) -> None:
    """Make sure the completion backend answers before taking inquiries."""
    console.print(Text.assemble("Using SearXNG at ", (config.search.url, "magenta"), "."))
    console.print(Text.assemble(
        f"Using LLM at {config.llm.base_url} (model: ",
        (config.llm.model, "green"),
        ").",
    ))

    async def probe():
        return await pipeline.llm.check()

    try:
        with console.status("Checking LLM..."):
            asyncio.run(probe())
    except (GamalError, httpx.HTTPError, ValueError) as e:
        # ValueError covers a body that is not JSON
        logger.error("llm_not_ready", error=str(e))
        raise click.ClickException(f"LLM is not ready!\n{e}")

    console.print(Text.assemble("LLM is ", ("ready", "green"), " (working as expected)."))


def print_references(refs: Sequence[int], references: Sequence[Reference]) -> None:
    urls = cited_urls(refs, references)
    if urls:
        console.print()
        console.print()
        for ordinal, url in urls:
            console.print(Text.assemble(f"[{ordinal}] ", (url, "bright_black")))


def print_citable(text: str) -> None:
    styled = Text(text)
    styled.highlight_regex(r"\[\d+\]", "bright_black")
    console.print(styled, end="")


class TerminalDelegates(PipelineDelegates):
    """Streams the answer to the terminal and reports the search keyphrases."""

    streams_answer = True

    def __init__(self):
        self.display = CitationDisplay(print_citable)

    def on_stage_leave(self, name, fields):
        if name == "Reason" and fields.get("keyphrases"):
            console.print(f"⇢ Searching for {fields['keyphrases']}...", style="bright_black", markup=False)

    def on_partial_answer(self, text):
        self.display.push(text)


async def answer_inquiry(
    pipeline: Pipeline,
    store: ConversationStore,
    inquiry: str,
    key: str = CONVERSATION,
) -> Optional[Turn]:
    """Run one terminal turn; returns the new turn, or None on failure."""
    delegates = TerminalDelegates()
    async with store.lock(key):
        try:
            with conversation_context(key):
                result = await pipeline.run(inquiry, store.history(key), delegates)
        except PipelineError as e:
            delegates.display.flush()
            console.print()
            console.print(f"✘ {e}", style="red", markup=False)
            return None
        turn = Turn.from_result(inquiry, result)
        store.append(key, turn)

    refs = delegates.display.flush()
    print_references(refs, result.references)
    console.print()
    return turn


async def chat_loop(pipeline: Pipeline, config: Config, voice: bool, listen: bool) -> None:
    """Interactive question-answering until end of input."""
    from gamal.services.voice import Listener, Speaker

    store = ConversationStore()
    speaker = Speaker(config.voice) if voice else None

    async def handle(inquiry: str) -> None:
        reply = handle_command(inquiry, store, CONVERSATION)
        if reply is not None:
            if reply.stages:
                console.print(render_review(reply.stages))
            else:
                console.print(reply.text)
                console.print()
            return
        if not inquiry.strip():
            return
        turn = await answer_inquiry(pipeline, store, inquiry)
        if turn and speaker:
            await speaker.speak(turn.answer, iso639_1(turn.language) or "en")

    if listen:
        listener = Listener(config.voice)

        async def on_transcript(text: str) -> None:
            console.print(Text.assemble((">> ", "yellow"), (text, "cyan")))
            await handle(text)

        await listener.listen(on_transcript)
    else:
        console.print()
        while True:
            try:
                inquiry = await asyncio.to_thread(console.input, "[yellow]>> [/yellow]")
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            await handle(inquiry)

    if speaker and speaker.pending:
        await asyncio.gather(*speaker.pending)


def _prepare(ctx: click.Context) -> Tuple[Config, Pipeline]:
    """Load config, build the pipeline and (unless skipped) check the LLM."""
    obj = ctx.ensure_object(dict)
    if "pipeline" not in obj:
        config = load_config(obj.get("config_path"))
        pipeline = build_pipeline(config)
        if not obj.get("skip_check"):
            check_llm(pipeline, config)
        obj["config"] = config
        obj["pipeline"] = pipeline
    return obj["config"], obj["pipeline"]


@click.group(invoke_without_command=True)
@click.version_option(version="0.1.0", prog_name="gamal")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML config file (default: ~/.config/gamal/config.yaml, else environment)",
)
@click.option("--skip-check", is_flag=True, help="Do not check the LLM before starting")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], skip_check: bool):
    """Gamal: answer questions from live web search results, with citations.

    Without a command, runs the HTTP server when a port is configured, the
    Telegram bot when a token is configured, and the interactive chat
    otherwise.
    """
    # Configure logging on CLI startup
    configure_logging()

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["skip_check"] = skip_check

    if ctx.invoked_subcommand is not None:
        return

    config, _ = _prepare(ctx)
    if config.server.port:
        ctx.invoke(serve, port=config.server.port)
    elif config.telegram.enabled:
        ctx.invoke(telegram)
    else:
        ctx.invoke(chat)


@cli.command()
@click.option("--voice", is_flag=True, help="Read answers aloud (piper + sox)")
@click.option("--listen", is_flag=True, help="Take inquiries from the microphone (whisper.cpp)")
@click.pass_context
def chat(ctx: click.Context, voice: bool = False, listen: bool = False):
    """
    Ask questions interactively.

    Type /reset to forget the conversation, /review to inspect the
    stages of the last answer.
    """
    config, pipeline = _prepare(ctx)
    logger.info("chat_command_started", voice=voice, listen=listen)
    asyncio.run(chat_loop(pipeline, config, voice, listen))
    logger.info("chat_command_completed")


@cli.command()
@click.argument("inquiry")
@click.pass_context
def ask(ctx: click.Context, inquiry: str):
    """
    Answer a single question.

    Examples:
        gamal ask "Which planet is the largest?"
    """
    _, pipeline = _prepare(ctx)
    logger.info("ask_command_started", inquiry=inquiry)
    turn = asyncio.run(answer_inquiry(pipeline, ConversationStore(), inquiry))
    if turn is None:
        ctx.exit(1)


@cli.command(name="eval")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--fail-fast", is_flag=True, help="Stop a file at its first failed assertion")
@click.option("--verbose", is_flag=True, help="Show the stage review of passing answers too")
@click.pass_context
def evaluate(ctx: click.Context, files: Tuple[Path, ...], fail_fast: bool, verbose: bool):
    """
    Run test-spec files and report failures.

    Exits with a non-zero status when any assertion fails.
    """
    from gamal.evaluation import Evaluator

    _, pipeline = _prepare(ctx)
    evaluator = Evaluator(pipeline, console=console, fail_fast=fail_fast, verbose=verbose)

    failed = False
    for path in files:
        logger.info("eval_file_started", path=str(path))
        try:
            report = asyncio.run(evaluator.run_file(path))
        except GamalError as e:
            logger.error("eval_file_failed", path=str(path), error=str(e))
            raise click.ClickException(f"{path}: {e}")
        if not report.passed:
            failed = True
            if fail_fast:
                break

    if failed:
        ctx.exit(1)


@cli.command()
@click.option("--port", type=click.IntRange(1, 65535), help="Port to listen on (default: GAMAL_HTTP_PORT or 5000)")
@click.option("--host", help="Interface to bind")
@click.pass_context
def serve(ctx: click.Context, port: Optional[int] = None, host: Optional[str] = None):
    """Serve answers over HTTP (GET /chat?<inquiry>)."""
    import uvicorn
    from gamal.server import create_app

    config, pipeline = _prepare(ctx)
    port = port or config.server.port or 5000
    host = host or config.server.host

    logger.info("serve_command_started", host=host, port=port)
    console.print(f"Listening on port {port}")
    uvicorn.run(create_app(pipeline), host=host, port=port, log_level="warning")


@cli.command()
@click.pass_context
def telegram(ctx: click.Context):
    """Run as a Telegram bot (token from GAMAL_TELEGRAM_TOKEN or config)."""
    from gamal.services.telegram import TelegramPoller

    config, pipeline = _prepare(ctx)
    if not config.telegram.enabled:
        raise click.ClickException("No valid Telegram bot token configured")

    console.print("Running as a Telegram bot...")
    logger.info("telegram_command_started")
    poller = TelegramPoller(config.telegram, pipeline)
    try:
        asyncio.run(poller.run())
    except KeyboardInterrupt:
        logger.info("telegram_command_stopped")


@cli.command()
@click.pass_context
def check(ctx: click.Context):
    """Check that the LLM answers."""
    ctx.obj["skip_check"] = False
    _prepare(ctx)


def main():
    """Main entry point for setuptools console script."""
    cli()


if __name__ == "__main__":
    main()
