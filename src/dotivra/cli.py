"""dotivra CLI — chat with the document agent or generate documents from repos.

Usage:
    dotivra chat "Add a deployment section" --document-id doc-1 --store store.json
    dotivra generate https://github.com/owner/repo --template template.txt --name "User Manual"
    dotivra tools
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table as RichTable

from . import __version__
from .agent.engine import StageEngine
from .agent.models import Message, Stage, StageEvent
from .config import Settings
from .errors import DotivraError
from .generation.chunked import ChunkedGenerator, GenerationJob
from .generation.negotiation import FileNegotiator
from .generation.sections import SectionGenerator
from .llm.cancellation import CancellationToken
from .llm.client import get_completion_client
from .repo.accessor import GitHubRepositoryAccessor, repo_ref
from .repo.cache import CacheConfig, RepoContextCache
from .repo.context import RepositoryContextService
from .store.documents import InMemoryDocumentStore
from .tools.broker import ToolBroker
from .tools.contracts import TOOL_REGISTRY
from .tools.models import ToolResult

console = Console()

BANNER = r"""
     _       _   _
  __| | ___ | |_(_)_   ___ __ __ _
 / _` |/ _ \| __| \ \ / / '__/ _` |
| (_| | (_) | |_| |\ V /| | | (_| |
 \__,_|\___/ \__|_| \_/ |_|  \__,_|
  Document Agent  v{version}
"""

_STAGE_STYLES: dict[Stage, str] = {
    Stage.PLANNING: "cyan",
    Stage.REASONING: "blue",
    Stage.TOOL_USED: "magenta",
    Stage.SUMMARY: "green",
    Stage.DONE: "green",
    Stage.ERROR: "bold red",
    Stage.STOPPED: "yellow",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _settings(api_base: str | None, model: str | None, provider: str | None) -> Settings:
    return Settings.from_env().with_overrides(
        api_base=api_base, model=model, llm_provider=provider,
    )


@click.group()
@click.version_option(version=__version__, prog_name="dotivra")
def main():
    """dotivra — LLM document agent and repository-to-document generator."""
    pass


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------

@main.command()
def tools():
    """List the tools the agent may call."""
    table = RichTable(title="Tool Catalog", show_lines=False)
    table.add_column("Tool", style="bold")
    table.add_column("Category")
    table.add_column("Parameters")
    table.add_column("Mutates", justify="center")
    for contract in TOOL_REGISTRY.values():
        params = ", ".join(
            p.name if p.required else f"[dim]{p.name}?[/]" for p in contract.parameters
        )
        table.add_row(contract.name, contract.category, params, "✓" if contract.mutates else "")
    console.print(table)


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------

def _print_event(event: StageEvent) -> None:
    style = _STAGE_STYLES.get(event.stage, "white")
    if event.stage is Stage.TOOL_USED:
        if event.invocation is not None:
            label = event.invocation.description or event.invocation.tool
            console.print(f"[{style}]🔧 {escape(event.invocation.tool)}[/] — {escape(label)}")
        else:
            console.print(f"[{style}]🔧 invalid tool request[/]")
    elif event.stage is Stage.SUMMARY:
        console.print(Panel(Markdown(str(event.content or "")), border_style=style, title="Summary"))
    elif event.stage is Stage.DONE:
        console.print(f"[{style}]✓ done[/]")
    elif event.stage in (Stage.ERROR, Stage.STOPPED):
        console.print(f"[{style}]{escape(str(event.content))}[/]")
    else:
        text = "" if event.content is None else str(event.content)
        console.print(f"[{style}]{event.stage.value}:[/] {escape(text)}")
        if event.thought and event.thought != event.stage.value:
            console.print(f"  [dim]{escape(event.thought)}[/]")


def _print_tool_result(result: ToolResult) -> None:
    if result.success:
        console.print(f"  [green]✓[/] {escape(result.tool)}")
    else:
        console.print(f"  [red]✗[/] {escape(result.tool)}: {escape(str(result.error))}")


def _load_history(path: str | None) -> list[Message]:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [Message(**m) for m in data]


async def _run_chat(
    settings: Settings,
    prompt: str,
    *,
    document_id: str | None,
    store_path: str | None,
    selected_text: str | None,
    history: list[Message],
    as_json: bool,
) -> int:
    llm = get_completion_client(settings)
    broker = ToolBroker(
        settings.tools_url,
        fallback_endpoint=settings.tools_fallback_url,
        document_id=document_id,
        timeout=settings.http_timeout,
    )
    store = InMemoryDocumentStore.from_json(store_path) if store_path else None
    engine = StageEngine(llm, broker, store=store)

    cancel = CancellationToken()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)

    exit_code = 0
    try:
        async for event in engine.run(
            prompt,
            history=history,
            document_id=document_id,
            selected_text=selected_text,
            cancel=cancel,
            on_tool_result=None if as_json else _print_tool_result,
        ):
            if as_json:
                click.echo(json.dumps(event.to_wire(), ensure_ascii=False))
            else:
                _print_event(event)
            if event.stage is Stage.ERROR:
                exit_code = 1
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await broker.aclose()
        await llm.aclose()
    return exit_code


@main.command()
@click.argument("prompt")
@click.option("--document-id", default=None, help="Active document id.")
@click.option(
    "--store", "store_path", type=click.Path(exists=True, dir_okay=False), default=None,
    help="JSON file with documents/projects/templates used for runtime values.",
)
@click.option("--selected-text", default=None, help="Text currently selected in the editor.")
@click.option(
    "--history", "history_path", type=click.Path(exists=True, dir_okay=False), default=None,
    help="JSON list of prior {role, content} messages.",
)
@click.option("--api-base", default=None, help="Base URL of the dotivra API (generate + tools).")
@click.option("--model", default=None, help="Model name.")
@click.option(
    "--provider", type=click.Choice(["endpoint", "openai"], case_sensitive=False), default=None,
    help="Completion backend.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit stage events as JSON lines.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
def chat(
    prompt: str,
    document_id: str | None,
    store_path: str | None,
    selected_text: str | None,
    history_path: str | None,
    api_base: str | None,
    model: str | None,
    provider: str | None,
    as_json: bool,
    verbose: bool,
):
    """Run one agent invocation for PROMPT and stream its stages."""
    _setup_logging(verbose)
    settings = _settings(api_base, model, provider)
    if not as_json:
        console.print(BANNER.replace("{version}", __version__), style="bold cyan")
    try:
        code = asyncio.run(_run_chat(
            settings,
            prompt,
            document_id=document_id,
            store_path=store_path,
            selected_text=selected_text,
            history=_load_history(history_path),
            as_json=as_json,
        ))
    except (RuntimeError, ValueError) as exc:
        console.print(f"[bold red]Chat failed:[/] {escape(str(exc))}")
        raise SystemExit(1)
    raise SystemExit(code)


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------

async def _run_generate(
    settings: Settings,
    job: GenerationJob,
    strategy: str,
    progress: Progress,
    task_id,
) -> str:
    llm = get_completion_client(settings)
    accessor = GitHubRepositoryAccessor(token=settings.github_token, timeout=settings.http_timeout)
    repos = RepositoryContextService(
        accessor,
        RepoContextCache(CacheConfig(
            max_entries=settings.repo_cache_size, ttl_seconds=settings.repo_cache_ttl,
        )),
    )

    def on_progress(step: str, detail: str) -> None:
        progress.update(task_id, description=f"[cyan]{step}[/] {escape(detail)}")

    generator: ChunkedGenerator
    if strategy == "negotiate":
        generator = FileNegotiator(llm, repos, on_progress=on_progress)
    else:
        generator = SectionGenerator(llm, repos, on_progress=on_progress)
    try:
        return await generator.generate(job)
    finally:
        await accessor.aclose()
        await llm.aclose()


@main.command()
@click.argument("repo")
@click.option(
    "--template", "template_path", type=click.Path(exists=True, dir_okay=False), default=None,
    help="File holding the template instructions.",
)
@click.option("--template-text", default=None, help="Template instructions given inline.")
@click.option("--name", "document_name", required=True, help="Document title.")
@click.option("--role", "document_role", default="Developer", show_default=True, help="Target reader role.")
@click.option(
    "--strategy", type=click.Choice(["sections", "negotiate"], case_sensitive=False),
    default="sections", show_default=True,
    help="'sections' plans and writes section by section; 'negotiate' lets the model request files.",
)
@click.option("-o", "--output", "output_path", type=click.Path(dir_okay=False), default=None,
              help="Write the HTML here instead of stdout.")
@click.option("--api-base", default=None, help="Base URL of the dotivra API.")
@click.option("--model", default=None, help="Model name.")
@click.option(
    "--provider", type=click.Choice(["endpoint", "openai"], case_sensitive=False), default=None,
    help="Completion backend.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
def generate(
    repo: str,
    template_path: str | None,
    template_text: str | None,
    document_name: str,
    document_role: str,
    strategy: str,
    output_path: str | None,
    api_base: str | None,
    model: str | None,
    provider: str | None,
    verbose: bool,
):
    """Generate a document for REPO (GitHub URL or owner/repo) from a template."""
    _setup_logging(verbose)
    if template_path:
        template = Path(template_path).read_text(encoding="utf-8")
    elif template_text:
        template = template_text
    else:
        raise click.UsageError("Provide --template or --template-text.")

    try:
        ref = repo_ref(repo)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="REPO")

    settings = _settings(api_base, model, provider)
    job = GenerationJob(
        template_prompt=template,
        repository=ref,
        document_name=document_name,
        document_role=document_role,
    )

    console.print(Panel(
        f"[bold]Repository:[/] {ref.full_name}\n"
        f"[bold]Document:[/]   {escape(document_name)}\n"
        f"[bold]Role:[/]       {escape(document_role)}\n"
        f"[bold]Strategy:[/]   {strategy}\n"
        f"[bold]Model:[/]      {settings.model}",
        title="[bold green]dotivra — Generate[/]",
        border_style="green",
    ), highlight=False)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("[cyan]Starting...", total=None)
        try:
            html = asyncio.run(_run_generate(settings, job, strategy.lower(), progress, task_id))
        except (DotivraError, RuntimeError) as exc:
            progress.stop()
            console.print(f"\n[bold red]Generation failed:[/] {escape(str(exc))}")
            raise SystemExit(1)

    if output_path:
        Path(output_path).write_text(html, encoding="utf-8")
        console.print(f"[green]✓[/] Wrote {len(html):,} chars to [bold]{escape(output_path)}[/]")
    else:
        click.echo(html)


if __name__ == "__main__":
    main()
