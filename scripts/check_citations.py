#!/usr/bin/env python3
"""
CLI Script for Citation Checking.

Reads a structured JSON document ({metadata, content: [paragraphs], citations}),
identifies its citations and optionally validates them with the agent panels.

Usage:
    python scripts/check_citations.py identify brief.json
    python scripts/check_citations.py validate brief.json --force-tier3 cit_004
    python scripts/check_citations.py validate brief.json --output checked.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

console = Console()

RISK_STYLES = {
    "LOW_RISK": "green",
    "MODERATE_RISK": "yellow",
    "NEEDS_ADDITIONAL_REVIEW": "red",
}


def load_document(path: Path):  # type: ignore[no-untyped-def]
    """Load and validate a structured document file."""
    from citecheck.identification.schemas import CitationDocument

    with open(path) as f:
        return CitationDocument.model_validate(json.load(f))


def print_citations(citations: list, title: str) -> None:  # type: ignore[type-arg]
    """Print one row per citation with its effective risk."""
    from citecheck.validation.risk import effective_risk

    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Citation", max_width=50)
    table.add_column("Format")
    table.add_column("Stage")
    table.add_column("Risk")
    table.add_column("Source", style="dim")

    for citation in citations:
        risk = effective_risk(citation)
        level = risk.risk_level.value if risk.risk_level else "-"
        style = RISK_STYLES.get(level, "dim")
        table.add_row(
            citation.id,
            citation.citation_type.value,
            citation.citation_text,
            citation.tier_1.format_status.value if citation.tier_1 else "-",
            citation.stage.value,
            f"[{style}]{level}[/]",
            risk.source.value,
        )

    console.print(table)


def print_summary(citations: list) -> None:  # type: ignore[type-arg]
    from citecheck.validation.risk import summarize_risk

    summary = summarize_risk(citations)
    console.print(
        f"\n[bold]Summary:[/] {summary.total_citations} citations | "
        f"[green]{summary.low_risk} low[/] | "
        f"[yellow]{summary.moderate_risk} moderate[/] | "
        f"[red]{summary.needs_additional_review} needs review[/] | "
        f"{summary.unvalidated} unvalidated | "
        f"{summary.escalated} escalated"
    )
    if summary.total_cost_usd:
        console.print(f"[dim]Estimated LLM cost: ${summary.total_cost_usd:.4f}[/]")


async def run_check(
    path: Path,
    validate: bool,
    force_tier3: list[str],
    output: Path | None,
    identifier: str | None = None,
) -> int:
    """Identify (and optionally validate) the citations of one document."""
    from app.config import IdentifierBackend, get_settings
    from citecheck.errors import ValidationInputError
    from citecheck.service import CheckService
    from citecheck.storage.snapshot_store import SnapshotStore
    from citecheck.validation.pipeline import CitationValidator
    from citecheck.validation.schemas import JobPhase

    settings = get_settings()

    try:
        document = load_document(path)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Could not read {path}: {e}[/]")
        return 1

    service = CheckService(
        store=SnapshotStore(),
        validator=CitationValidator.from_settings(settings),
        concurrency=settings.validation_concurrency,
    )

    console.print(f"\n[bold blue]Processing:[/] {path.name}")
    try:
        snapshot = await service.create_check(document)
    except ValidationInputError as e:
        console.print(f"[red]Invalid document: {e}[/]")
        return 1

    with console.status("[bold green]Identifying citations..."):
        snapshot = await service.identify_citations(
            snapshot.snapshot_id,
            backend=IdentifierBackend(identifier) if identifier else settings.identifier_backend,
        )
    console.print(f"  Found {len(snapshot.document.citations)} citations")

    if validate and snapshot.document.citations:
        job = await service.start_validation(snapshot.snapshot_id, force=True)
        with console.status("[bold green]Running agent panels...") as status:
            async for event in service.job_events(job.job_id):
                job = event.job
                progress = (
                    job.tier3_progress if job.phase == JobPhase.TIER3 else job.tier2_progress
                )
                status.update(
                    f"[bold green]{event.type.value}: "
                    f"{progress.current}/{progress.total} ({progress.percentage}%)"
                )

        job = service.get_job(job.job_id)
        if job.error:
            console.print(f"[red]Validation failed: {job.error}[/]")
            return 1
        snapshot = await service.get_check(job.result_check_id)  # type: ignore[arg-type]

        for citation_id in force_tier3:
            citation, snapshot = await service.revalidate_citation(
                snapshot.snapshot_id, citation_id, force_tier3=True
            )
            console.print(f"  Forced Tier 3 for {citation.id}: {citation.stage.value}")

    print_citations(snapshot.document.citations, title=f"Citations in {path.name}")
    print_summary(snapshot.document.citations)

    if output:
        with open(output, "w") as f:
            json.dump(snapshot.document.model_dump(mode="json"), f, indent=2)
        console.print(f"\n[green]✓[/] Wrote {output}")

    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Identify and validate legal citations in a structured document"
    )
    parser.add_argument(
        "command",
        choices=["identify", "validate"],
        help="identify: Tier 1 only; validate: Tier 1 plus agent panels",
    )
    parser.add_argument(
        "path",
        type=Path,
        help="Structured document JSON file",
    )
    parser.add_argument(
        "--force-tier3",
        type=str,
        nargs="*",
        default=[],
        help="Citation IDs to re-run with a forced Tier-3 investigation",
    )
    parser.add_argument(
        "--identifier",
        choices=["regex", "eyecite"],
        default=None,
        help="Citation identifier (default: IDENTIFIER_BACKEND setting)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Write the checked document to this file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    args = parser.parse_args()

    from citecheck.utils.logger import setup_logging

    setup_logging(args.log_level.upper())

    console.print("[bold]Citation Consensus Checker[/]")
    console.print("=" * 50)

    if not args.path.exists():
        console.print(f"[red]Error: {args.path} does not exist[/]")
        sys.exit(1)

    sys.exit(asyncio.run(run_check(
        args.path,
        validate=args.command == "validate",
        force_tier3=args.force_tier3,
        output=args.output,
        identifier=args.identifier,
    )))


if __name__ == "__main__":
    main()
