import asyncio
import logging
import traceback
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from tcmtwin.config import settings
from tcmtwin.diagnosis.models import DiagnosisQuery
from tcmtwin.exceptions import TwinError
from tcmtwin.extraction.models import KnowledgeRecord
from tcmtwin.ingestion import load_document
from tcmtwin.service import TwinService
from tcmtwin.store import JsonMasterRepository
from tcmtwin.utils import knowledge_to_markdown, save_as_markdown


# Setup logging
LOG = logging.getLogger(__name__)


def setup_logging(verbose: bool):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)
    logging.basicConfig(level=level)


# Setup rich
console = Console()

# Setup typer
app = typer.Typer(
    help="Build digital twins of TCM masters from their writings and consult them"
)


def _service(ctx: typer.Context) -> TwinService:
    return ctx.obj["service"]


def _abort(ctx: typer.Context, error: Exception) -> None:
    console.print(f"[red]Error:[/red] {error}")
    if ctx.obj.get("verbose"):
        console.print("[red]Traceback:[/red]")
        console.print(traceback.format_exc())
    raise typer.Exit(code=1)


def _resolve_master_id(ctx: typer.Context, master_id: Optional[str]) -> str:
    return master_id or _service(ctx).current_master().id


def _print_progress(knowledge: KnowledgeRecord) -> None:
    console.print(
        f"[green]Knowledge:[/green] {len(knowledge.disease_classifications)} diseases, "
        f"{len(knowledge.symptom_mappings)} mappings, "
        f"{len(knowledge.master_thoughts)} thoughts"
    )
    if knowledge.has_more_content:
        console.print(
            "[yellow]The document still holds unextracted knowledge.[/yellow] "
            "Run [bold]tcmtwin continue[/bold] to extract the next batch."
        )
    elif knowledge.has_more_content is False:
        console.print("[green]All knowledge of the document has been extracted.[/green]")


MasterOption = typer.Option(
    None, "--master", "-m", help="Master id (default: the selected master)"
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    data_dir: Path = typer.Option(
        settings.data_dir, "--data-dir", help="Directory holding the saved masters"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
):
    setup_logging(verbose)
    ctx.obj = {
        "service": TwinService(JsonMasterRepository(data_dir)),
        "verbose": verbose,
    }


@app.command()
def masters(ctx: typer.Context):
    """List all masters."""
    service = _service(ctx)
    current_id = service.current_master().id

    table = Table(title="泰斗")
    table.add_column("", width=1)
    table.add_column("ID", no_wrap=True)
    table.add_column("Name", no_wrap=True)
    table.add_column("Diseases", justify="right")
    table.add_column("Mappings", justify="right")
    table.add_column("Thoughts", justify="right")
    table.add_column("Document")

    for master in service.list_masters():
        knowledge = master.knowledge or KnowledgeRecord.empty()
        document = service.documents.get(master.id)
        table.add_row(
            "*" if master.id == current_id else "",
            master.id,
            master.name,
            str(len(knowledge.disease_classifications)),
            str(len(knowledge.symptom_mappings)),
            str(len(knowledge.master_thoughts)),
            document.name if document else "",
        )
    console.print(table)


@app.command()
def create(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Display name of the new master"),
):
    """Create a new, empty master and select it."""
    master = _service(ctx).create_master(name)
    console.print(f"[green]Created[/green] {master.name} ({master.id})")


@app.command()
def rename(ctx: typer.Context, master_id: str, name: str):
    """Rename a master."""
    try:
        master = _service(ctx).rename_master(master_id, name)
    except TwinError as e:
        _abort(ctx, e)
    console.print(f"[green]Renamed[/green] {master.id} to {master.name}")


@app.command()
def delete(ctx: typer.Context, master_id: str):
    """Delete a master. The last remaining master cannot be deleted."""
    try:
        _service(ctx).delete_master(master_id)
    except TwinError as e:
        _abort(ctx, e)
    console.print(f"[green]Deleted[/green] {master_id}")


@app.command()
def use(ctx: typer.Context, master_id: str):
    """Select the master that other commands act on."""
    try:
        master = _service(ctx).select_master(master_id)
    except TwinError as e:
        _abort(ctx, e)
    console.print(f"Now using {master.name} ({master.id})")


@app.command()
def extract(
    ctx: typer.Context,
    input_file: Path = typer.Argument(
        ...,
        help="Document to learn from (.pdf, .txt, .md or .docx)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    master_id: Optional[str] = MasterOption,
    extract_all: bool = typer.Option(
        False, "--all", "-a", help="Keep extracting until the document is exhausted"
    ),
):
    """Attach a document to a master and run the first extraction round."""
    service = _service(ctx)
    try:
        master_id = _resolve_master_id(ctx, master_id)
        document = load_document(input_file, settings.max_document_bytes)
        service.attach_document(
            master_id, document.payload, document.mime_type, document.name
        )
        with console.status("[bold green]Extracting knowledge...[/bold green]"):
            if extract_all:
                knowledge = asyncio.run(
                    service.run_to_completion(master_id, settings.max_rounds)
                )
            else:
                knowledge = asyncio.run(service.run_extraction(master_id, continuing=False))
    except (TwinError, FileNotFoundError) as e:
        _abort(ctx, e)
    _print_progress(knowledge)


@app.command("continue")
def continue_extraction(
    ctx: typer.Context,
    master_id: Optional[str] = MasterOption,
    extract_all: bool = typer.Option(
        False, "--all", "-a", help="Keep extracting until the document is exhausted"
    ),
):
    """Extract the next batch from the master's current document."""
    service = _service(ctx)
    try:
        master_id = _resolve_master_id(ctx, master_id)
        with console.status("[bold green]Extracting next batch...[/bold green]"):
            if extract_all:
                knowledge = asyncio.run(
                    service.run_to_completion(master_id, settings.max_rounds)
                )
            else:
                knowledge = asyncio.run(service.run_extraction(master_id, continuing=True))
    except TwinError as e:
        _abort(ctx, e)
    _print_progress(knowledge)


@app.command()
def merge(
    ctx: typer.Context,
    master_ids: Optional[List[str]] = typer.Argument(
        None, help="Masters to fuse (default: every master with knowledge)"
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the fused master"),
):
    """Fuse the knowledge of several masters into a new master."""
    try:
        master = _service(ctx).create_fused_master(list(master_ids) if master_ids else None, name)
    except TwinError as e:
        _abort(ctx, e)
    console.print(f"[green]Created[/green] {master.name} ({master.id})")
    _print_progress(master.knowledge)


@app.command()
def show(
    ctx: typer.Context,
    master_id: Optional[str] = MasterOption,
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Also save the knowledge as a markdown file"
    ),
):
    """Display a master's knowledge."""
    service = _service(ctx)
    try:
        master = service.get_master(_resolve_master_id(ctx, master_id))
    except TwinError as e:
        _abort(ctx, e)

    if master.knowledge is None:
        console.print(f"{master.name} has no knowledge yet. Run [bold]tcmtwin extract[/bold] first.")
        return

    console.print(Markdown(knowledge_to_markdown(master.name, master.knowledge)))
    if output:
        save_as_markdown(master.name, master.knowledge, output)
        console.print(f"[green]Knowledge saved to:[/green] {output}")


@app.command()
def export(
    ctx: typer.Context,
    master_id: Optional[str] = MasterOption,
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Path to output JSON file (default: <name>-agent.json)",
    ),
):
    """Export a master's knowledge as JSON."""
    service = _service(ctx)
    try:
        master_id = _resolve_master_id(ctx, master_id)
        content = service.export_knowledge(master_id)
        output_path = output or Path(service.export_filename(master_id))
    except TwinError as e:
        _abort(ctx, e)

    try:
        output_path.write_text(content, encoding="utf-8")
    except OSError as e:
        _abort(ctx, e)
    console.print(f"[green]Knowledge exported to:[/green] {output_path}")


@app.command()
def diagnose(
    ctx: typer.Context,
    symptoms: str = typer.Argument(..., help="Main complaint and symptoms of the patient"),
    tongue: str = typer.Option("", "--tongue", "-t", help="Tongue appearance (舌象)"),
    pulse: str = typer.Option("", "--pulse", "-p", help="Pulse (脉象)"),
    master_id: Optional[str] = MasterOption,
):
    """Ask a master's agent for a diagnosis and prescription."""
    service = _service(ctx)
    try:
        master_id = _resolve_master_id(ctx, master_id)
        query = DiagnosisQuery(symptoms=symptoms, tongue=tongue, pulse=pulse)
        with console.status("[bold green]Diagnosing...[/bold green]"):
            answer = asyncio.run(service.diagnose(master_id, query))
    except TwinError as e:
        _abort(ctx, e)

    console.print(
        Panel(
            Markdown(answer),
            title=service.get_master(master_id).name,
            border_style="green",
        )
    )


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
