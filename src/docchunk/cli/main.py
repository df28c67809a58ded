import json
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
import typer
import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..core.config import Settings
from ..core.logging import log, setup_logging
from ..core.models import ChunkingOptions, ChunkingStrategy
from ..obs.events import EventEmitter

app = typer.Typer(add_completion=False, help="docchunk CLI")


def _console(settings: Settings) -> Console:
    # Summaries go to stderr; stdout carries chunk rows
    return Console(
        file=sys.stderr,
        color_system=None if settings.NO_COLOR else "auto",
    )


def _load_settings(config_file: Optional[str]) -> Settings:
    try:
        settings = Settings.load_config(config_file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"❌ Error loading configuration: {e}", err=True)
        raise typer.Exit(1) from e
    setup_logging(
        settings.LOG_FORMAT,  # type: ignore[arg-type]
        level=settings.LOG_LEVEL,
        no_color=settings.NO_COLOR,
    )
    return settings


def build_counter(settings: Settings):
    """Token counter for CLI commands, using the configured encoding."""
    from ..chunking.tokens import TiktokenCounter

    return TiktokenCounter(settings.TOKENIZER_ENCODING)


def _new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex[:4]}"


@app.command()
def version() -> None:
    from .. import __version__

    typer.echo(__version__)


@app.command()
def chunk(
    files: List[Path] = typer.Argument(..., help="Text or markdown files to chunk"),
    strategy: Optional[ChunkingStrategy] = typer.Option(
        None, "--strategy", help="fixed, semantic or hybrid"
    ),
    max_tokens: Optional[int] = typer.Option(
        None, "--max-tokens", help="Maximum tokens per chunk"
    ),
    min_tokens: Optional[int] = typer.Option(
        None, "--min-tokens", help="Documents below this become a single chunk"
    ),
    overlap_tokens: Optional[int] = typer.Option(
        None, "--overlap-tokens", help="Tokens repeated between chunks"
    ),
    hard_cap: Optional[bool] = typer.Option(
        None,
        "--hard-cap/--no-hard-cap",
        help="Cut sentences above the limit on token windows",
    ),
    out: Optional[Path] = typer.Option(
        None, "--out", help="Write chunk rows here (NDJSON) instead of stdout"
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", help="Documents chunked in parallel"
    ),
    object_id: Optional[str] = typer.Option(
        None, "--object-id", help="Object id to use (single file only)"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Config file (.docchunk.yaml auto-discovered)"
    ),
) -> None:
    """
    Chunk documents into token-bounded pieces.

    Options not given on the command line come from the config file and
    environment (CHUNK_* settings). Exits 1 if any document fails.

    Example:
        docchunk chunk notes.md --strategy semantic --max-tokens 256
    """
    from ..chunking.engine import chunk_many

    settings = _load_settings(config_file)
    console = _console(settings)

    if object_id and len(files) > 1:
        typer.echo("❌ --object-id can only be used with a single file", err=True)
        raise typer.Exit(2)

    overrides = {
        "strategy": strategy,
        "max_tokens": max_tokens,
        "min_tokens": min_tokens,
        "overlap_tokens": overlap_tokens,
        "enforce_hard_cap": hard_cap,
    }
    try:
        base = ChunkingOptions.from_settings(settings)
        options = ChunkingOptions(
            **{
                **base.model_dump(),
                **{k: v for k, v in overrides.items() if v is not None},
            }
        )
    except ValidationError as e:
        typer.echo(f"❌ Invalid chunking options: {e}", err=True)
        raise typer.Exit(2) from e

    documents = []
    for path in files:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            typer.echo(f"❌ Cannot read {path}: {e}", err=True)
            raise typer.Exit(1) from e
        documents.append((object_id or path.stem, text))

    run_id = _new_run_id()
    structlog.contextvars.bind_contextvars(run_id=run_id)
    log_dir = Path(settings.DOCCHUNK_WORKDIR) / "logs"
    with EventEmitter(run_id, log_dir=str(log_dir)) as emitter:
        emitter.run_start(len(documents), strategy=options.strategy.value)
        results = chunk_many(
            documents,
            options,
            counter=build_counter(settings),
            workers=workers or settings.CHUNK_WORKERS,
        )

        rows = [
            json.dumps(c.to_row(), ensure_ascii=False)
            for result in results
            for c in result.chunks
        ]
        if out:
            out.parent.mkdir(parents=True, exist_ok=True)
            with open(out, "w", encoding="utf-8") as f:
                for row in rows:
                    f.write(row + "\n")
        else:
            for row in rows:
                typer.echo(row)

        failed = [
            (doc_id, result)
            for (doc_id, _), result in zip(documents, results)
            if not result.success
        ]
        for doc_id, result in failed:
            emitter.error(result.error or "chunking failed", doc_id=doc_id)

        emitter.run_complete(
            documents=len(documents),
            chunks=sum(len(r.chunks) for r in results),
            tokens=sum(r.total_tokens for r in results),
        )

    table = Table(title=f"Chunking Summary ({options.strategy.value})")
    table.add_column("Document", style="white")
    table.add_column("Status", style="green")
    table.add_column("Chunks", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("ms", justify="right")
    for (doc_id, _), result in zip(documents, results):
        status = "ok" if result.success else f"[red]{result.error_code.value}[/red]"
        table.add_row(
            doc_id,
            status,
            f"{len(result.chunks):,}",
            f"{result.total_tokens:,}",
            str(result.processing_duration_ms),
        )
    console.print(table)
    log.info(
        "cli.chunk.complete",
        documents=len(documents),
        failed=len(failed),
    )

    if failed:
        raise typer.Exit(1)


@app.command()
def verify(
    chunks_file: Path = typer.Argument(..., help="NDJSON file of chunk rows"),
    max_tokens: Optional[int] = typer.Option(
        None, "--max-tokens", help="Token ceiling to check against"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Config file (.docchunk.yaml auto-discovered)"
    ),
) -> None:
    """Re-tokenize a chunk file and check indices and the token ceiling."""
    from ..chunking.verify import verify_chunk_file

    settings = _load_settings(config_file)
    console = _console(settings)

    if not chunks_file.exists():
        typer.echo(f"❌ Chunks file not found: {chunks_file}", err=True)
        raise typer.Exit(1)

    report = verify_chunk_file(
        str(chunks_file),
        max_tokens or settings.CHUNK_MAX_TOKENS,
        counter=build_counter(settings),
    )
    typer.echo(json.dumps(report, indent=2))

    violations = report["violations"]
    console.print(
        f"Documents: {report['statistics']['total_documents']}  "
        f"Chunks: {report['statistics']['total_chunks']}  "
        f"Oversize: {len(violations['oversize_chunks'])}  "
        f"Index errors: {len(violations['index_errors'])}"
    )
    if report["status"] != "PASS":
        console.print("❌ FAIL", style="red")
        raise typer.Exit(1)
    console.print("✅ PASS", style="green")


@app.command()
def tokens(
    file: Path = typer.Argument(..., help="File to count tokens in"),
    config_file: Optional[str] = typer.Option(
        None, "--config", help="Config file (.docchunk.yaml auto-discovered)"
    ),
) -> None:
    """Print the token count of a file."""
    from ..chunking.tokens import count_tokens

    settings = _load_settings(config_file)
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"❌ Cannot read {file}: {e}", err=True)
        raise typer.Exit(1) from e
    typer.echo(str(count_tokens(text, build_counter(settings))))


if __name__ == "__main__":
    app()
