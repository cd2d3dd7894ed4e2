"""
Second Brain RAG - CLI Entry Point
-----------------------------------
Typer commands over the local document store and the RAG pipeline.

Usage:
    python -m secondbrain.main add notes/meeting.txt --ingest
    python -m secondbrain.main ingest 3
    python -m secondbrain.main query "What did we decide about pricing?"
    python -m secondbrain.main documents
    python -m secondbrain.main conversations
    python -m secondbrain.main delete 3
    python -m secondbrain.main status
    python -m secondbrain.main serve --port 8000
"""
from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from secondbrain.config import CONFIG_PATH_ENV, RAGConfig, load_config
from secondbrain.errors import RAGError
from secondbrain.generation.orchestrator import StreamEvent, StreamEventType
from secondbrain.storage.local_store import LocalStore
from secondbrain.utils.helpers import format_bytes, format_datetime
from secondbrain.utils.logger import setup_logger

app = typer.Typer(
    name="secondbrain",
    help="Second Brain - ask questions about your own documents",
    add_completion=False,
)
console = Console()

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config YAML")


# --- Helpers ------------------------------------------------------------------

def _setup(config_path: Optional[str]) -> RAGConfig:
    try:
        config = load_config(config_path)
    except RAGError as exc:
        _fail(exc)
    setup_logger(log_level=config.log_level, log_file=config.log_file)
    return config


def _fail(exc: RAGError) -> NoReturn:
    console.print(f"[red]{exc.kind}:[/red] {exc.message}")
    if exc.remediation:
        console.print(f"[yellow]Hint:[/yellow] {exc.remediation}")
    raise typer.Exit(1)


def _pipeline(config: RAGConfig):
    from secondbrain.serving.pipeline import RAGPipeline

    return RAGPipeline(config)


# --- Commands -----------------------------------------------------------------

@app.command()
def add(
    path: Path = typer.Argument(..., help="Text or PDF file to register"),
    ingest: bool = typer.Option(False, "--ingest", "-i", help="Ingest right after adding"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Register a local text or PDF file as a document."""
    cfg = _setup(config)

    async def _run() -> None:
        pipeline = _pipeline(cfg)
        try:
            doc = pipeline.add_document(path)
            console.print(
                f"[green][OK][/green] Added document [bold]{doc.id}[/bold] "
                f"{doc.filename} ({format_bytes(doc.size_bytes)})"
            )
            if ingest:
                await _ingest(pipeline, doc.id)
        finally:
            await pipeline.aclose()

    try:
        asyncio.run(_run())
    except RAGError as exc:
        _fail(exc)


@app.command()
def ingest(
    document_id: int = typer.Argument(..., help="Document id (see `documents`)"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Chunk and embed a registered document."""
    cfg = _setup(config)

    async def _run() -> None:
        pipeline = _pipeline(cfg)
        try:
            await _ingest(pipeline, document_id)
        finally:
            await pipeline.aclose()

    try:
        asyncio.run(_run())
    except RAGError as exc:
        _fail(exc)


async def _ingest(pipeline, document_id: int) -> None:
    with console.status(f"[cyan]Ingesting document {document_id}...[/cyan]"):
        result = await pipeline.ingest(document_id)
    console.print(
        f"[green][OK][/green] Document {result.document_id}: "
        f"{result.chunks_created} chunks, {result.embeddings_created} embeddings "
        f"[dim]({result.model})[/dim]"
    )


@app.command()
def query(
    question: str = typer.Argument(..., help="Question to answer from your documents"),
    conversation: Optional[int] = typer.Option(
        None, "--conversation", help="Append to an existing conversation"
    ),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """
    Ask a question; the answer streams as it is generated.

    Ctrl+C stops generation and keeps the partial answer.
    """
    cfg = _setup(config)

    try:
        terminal = asyncio.run(_stream_answer(cfg, question, conversation))
    except RAGError as exc:
        console.print()
        _fail(exc)

    console.print("\n")
    if terminal is None:
        return
    data = terminal.data
    if terminal.event == StreamEventType.CANCELLED:
        console.print("[yellow]Cancelled - partial answer kept.[/yellow]")

    if data["sources"]:
        table = Table("No.", "Document", "File", "Chunk", box=box.SIMPLE, header_style="bold dim")
        for i, src in enumerate(data["sources"], start=1):
            table.add_row(str(i), str(src["documentId"]), src["filename"], str(src["chunkIndex"]))
        console.print(table)
    console.print(
        f"[dim]conversation={data['conversationId']}  message={data['messageId']}  "
        f"state={data['state']}[/dim]\n"
    )


async def _stream_answer(
    config: RAGConfig, question: str, conversation_id: Optional[int]
) -> Optional[StreamEvent]:
    pipeline = _pipeline(config)
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Windows event loops have no signal handlers; Ctrl+C then cancels the task.
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)

    terminal: Optional[StreamEvent] = None
    try:
        with console.status("[cyan]Retrieving...[/cyan]"):
            events = await pipeline.open_stream(question, conversation_id, cancel=cancel)
        console.print()
        console.print(Panel.fit(question, title="[bold cyan]Question[/bold cyan]"))
        async for event in events:
            if event.event == StreamEventType.TOKEN:
                console.print(event.data["token"], end="", markup=False, highlight=False)
            else:
                terminal = event
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await pipeline.aclose()
    return terminal


@app.command()
def documents(config: Optional[str] = _CONFIG_OPTION) -> None:
    """List registered documents."""
    cfg = _setup(config)
    store = LocalStore.load(cfg.data_dir)
    docs = store.list_documents()
    if not docs:
        console.print("[yellow]No documents yet. Add one with: python -m secondbrain.main add FILE[/yellow]")
        return

    table = Table("Id", "File", "Size", "Chunks", "Added", box=box.SIMPLE, header_style="bold dim")
    for doc in docs:
        chunks = store.count_fragments(doc.id)
        table.add_row(
            str(doc.id),
            doc.filename,
            format_bytes(doc.size_bytes),
            str(chunks) if chunks else "[dim]-[/dim]",
            format_datetime(doc.created_at),
        )
    console.print(table)


@app.command()
def conversations(config: Optional[str] = _CONFIG_OPTION) -> None:
    """List conversations, most recent first (ids for `query --conversation`)."""
    cfg = _setup(config)
    store = LocalStore.load(cfg.data_dir)
    convs = store.list_conversations()
    if not convs:
        console.print("[yellow]No conversations yet.[/yellow]")
        return

    table = Table("Id", "Title", "Messages", "Updated", box=box.SIMPLE, header_style="bold dim")
    for conv in convs:
        table.add_row(
            str(conv.id),
            conv.title,
            str(len(store.list_messages(conv.id))),
            format_datetime(conv.updated_at),
        )
    console.print(table)


@app.command()
def delete(
    document_id: int = typer.Argument(..., help="Document id"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Delete a document with its fragments and embeddings."""
    cfg = _setup(config)
    store = LocalStore.load(cfg.data_dir)
    if not store.delete_document(document_id):
        console.print(f"[red]Document {document_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"[green][OK][/green] Deleted document {document_id}")


@app.command()
def status(config: Optional[str] = _CONFIG_OPTION) -> None:
    """Show store counts and check every fragment has exactly one embedding."""
    cfg = _setup(config)
    report = LocalStore.load(cfg.data_dir).integrity_report()

    console.print()
    console.print("[bold]Store[/bold]")
    console.print(f"  Data dir   : [dim]{cfg.data_dir}[/dim]")
    console.print(f"  Documents  : {report.documents} ({report.ingested_documents} ingested)")
    console.print(f"  Fragments  : {report.fragments}")
    console.print(f"  Embeddings : {report.embeddings}")
    console.print(f"  Dimensions : {', '.join(map(str, report.dimensions)) or '-'}")
    console.print(f"  Models     : {', '.join(report.models) or '-'}")
    console.print()
    console.print("[bold]Provider[/bold]")
    console.print(f"  {cfg.provider} @ {cfg.provider_base}")
    console.print(f"  embed={cfg.embed_model}  llm={cfg.llm_model}")
    console.print()

    if report.ok:
        console.print("[green][OK] Every fragment has exactly one embedding[/green]")
        return
    console.print(
        f"[red]Integrity problems:[/red] "
        f"{report.fragments_without_embedding} fragment(s) without embedding, "
        f"{report.embeddings_without_fragment} orphan embedding(s), "
        f"dimensions={report.dimensions}"
    )
    raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port", "-p"),
    reload: bool = typer.Option(False, "--reload"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Run the HTTP API (uvicorn logs go through loguru)."""
    import uvicorn

    cfg = _setup(config)
    if config:
        os.environ[CONFIG_PATH_ENV] = config
    console.print(f"[cyan]Serving on http://{host}:{port}[/cyan] [dim](data: {cfg.data_dir})[/dim]")
    uvicorn.run("app.server:app", host=host, port=port, reload=reload, log_config=None)


if __name__ == "__main__":
    app()
