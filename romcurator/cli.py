"""
romcurator CLI - build verified ROM collections from DATs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from romcurator import config
from romcurator.candidates.generator import CandidateGenerator
from romcurator.candidates.models import CandidateMap, count_candidates
from romcurator.candidates.pipeline import CandidatePipeline
from romcurator.candidates.writer import CandidateWriter
from romcurator.common import fileops
from romcurator.common.exceptions import RomCuratorError
from romcurator.common.types import WriterResult
from romcurator.core.concurrency import MappableSemaphore, WriterContext
from romcurator.core.config_manager import ConfigManager
from romcurator.core.indexed_files import IndexedFiles
from romcurator.core.models import DAT
from romcurator.core.options import Options
from romcurator.core.scanner import Scanner, required_checksum_bitmask
from romcurator.files.file import ArchiveEntry, File
from romcurator.logging_cfg import configure_logging, get_fileops_logger, set_correlation_id
from romcurator.verification.dat_parser import parse_dat_file

app = typer.Typer(
    help="romcurator: match input files against DATs and write verified ROM sets.",
    rich_markup_mode="rich",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    candidates: dict[str, CandidateMap] = field(default_factory=dict)
    results: list[WriterResult] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


def _print_banner():
    console.print(Panel.fit(
        "[bold cyan]romcurator[/bold cyan]\n"
        "[dim]DAT matching | candidate resolution | verified writes[/dim]",
        border_style="blue",
    ))


def _build_options(
    settings: Path,
    commands: Optional[List[str]],
    output: Optional[Path],
    inputs: List[Path],
    **flags,
) -> Options:
    overrides = {
        "commands": tuple(commands) if commands else None,
        "output": str(output) if output else None,
        "input_paths": tuple(str(p) for p in inputs),
    }
    # Flags left off keep whatever the settings file says
    overrides.update({k: (v if v not in (False, "") else None) for k, v in flags.items()})
    return ConfigManager(settings).to_options(**overrides)


def _load_dats(dat_paths: List[Path]) -> list[DAT]:
    dats = []
    for path in dat_paths:
        dats.append(parse_dat_file(path))
    return dats


def delete_moved_files(results: list[WriterResult], indexed: IndexedFiles) -> list[str]:
    """Delete inputs that were moved; an archive goes only once every entry in it was moved."""
    written = {f.file_path for r in results for f in r.wrote}
    moved_keys: dict[str, set[str]] = {}
    for result in results:
        for moved in result.moved:
            moved_keys.setdefault(moved.file_path, set()).add(str(moved))

    fileops_logger = get_fileops_logger()
    deleted = []
    by_path = indexed.get_files_by_file_path()
    for file_path, keys in moved_keys.items():
        if file_path in written:
            continue
        entries = [f for f in by_path.get(file_path, []) if isinstance(f, ArchiveEntry)]
        if entries and not all(str(e) in keys for e in entries):
            logger.debug("Not deleting %s, some entries were not moved", file_path)
            continue
        fileops.safe_unlink(file_path, fileops_logger)
        deleted.append(file_path)
    return deleted


async def run(
    dats: list[DAT],
    options: Options,
    patch_paths: List[Path],
    write: bool,
) -> RunReport:
    reader_semaphore = MappableSemaphore(options.reader_threads)
    scanner = Scanner(required_checksum_bitmask(dats), reader_semaphore)
    files: list[File] = await scanner.scan_files(options.input_paths)
    patches = await scanner.scan_patches(patch_paths) if patch_paths else []
    indexed = IndexedFiles.from_files(files)
    logger.info("Indexed %d input file(s), %d patch(es)", len(indexed.get_files()), len(patches))

    generator = CandidateGenerator(options, reader_semaphore)
    pipeline = CandidatePipeline.default(options, patches, reader_semaphore)
    context = WriterContext.create(options)

    report = RunReport()
    for dat in dats:
        set_correlation_id()
        parents_to_candidates = await generator.generate(dat, indexed)
        parents_to_candidates = await pipeline.run(dat, parents_to_candidates)
        report.candidates[dat.name] = parents_to_candidates
        if write:
            writer = CandidateWriter(options, context)
            candidates = [c for cs in parents_to_candidates.values() for c in cs]
            report.results.append(await writer.write(dat, candidates))

    if write and options.should_move():
        report.deleted = await asyncio.to_thread(delete_moved_files, report.results, indexed)
    return report


def _candidates_table(dat_name: str, parents_to_candidates: CandidateMap) -> Table:
    table = Table(title=dat_name, show_header=True, header_style="bold cyan")
    table.add_column("Game")
    table.add_column("Input", style="dim")
    table.add_column("Output")
    for candidates in parents_to_candidates.values():
        for candidate in candidates:
            for rwf in candidate.roms_with_files:
                table.add_row(str(candidate), str(rwf.input_file), str(rwf.output_file))
    return table


def _summary_table(results: list[WriterResult]) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("DAT", style="dim")
    table.add_column("Written", justify="right")
    table.add_column("Verified", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Moved", justify="right")
    for result in results:
        table.add_row(
            result.dat_name,
            str(result.written_count),
            str(result.verified_count),
            str(result.skipped_count),
            str(result.failed_count),
            str(len(result.moved)),
        )
    return table


def _execute(
    dat: List[Path],
    input_: List[Path],
    patch: List[Path],
    options: Options,
    write: bool,
) -> RunReport:
    try:
        dats = _load_dats(dat)
        with console.status("[bold blue]Scanning and resolving candidates..."):
            return asyncio.run(run(dats, options, patch, write))
    except RomCuratorError as e:
        console.print(f"[bold red]✘[/bold red] {e}")
        raise typer.Exit(1)


# Shared option declarations
DAT_OPTION = typer.Option(..., "--dat", "-d", help="DAT file(s) to match against.")
INPUT_OPTION = typer.Option(..., "--input", "-i", help="Input file(s) or directories.")
PATCH_OPTION = typer.Option([], "--patch", "-p", help="Patch file(s) or directories.")
SETTINGS_OPTION = typer.Option(Path(config.SETTINGS_FILE), "--settings", help="JSON settings file.")


@app.callback()
def global_options(
    log_format: str = typer.Option("auto", "--log-format", help="auto, json or human."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    configure_logging(log_format, logging.DEBUG if verbose else logging.WARNING)


@app.command("plan")
def cmd_plan(
    dat: List[Path] = DAT_OPTION,
    input_: List[Path] = INPUT_OPTION,
    patch: List[Path] = PATCH_OPTION,
    command: Optional[List[str]] = typer.Option(None, "--command", "-c", help="copy, move, link, extract, zip, test."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (tokens allowed)."),
    zip_dat_name: bool = typer.Option(False, "--zip-dat-name", help="One zip per DAT."),
    dir_letter: bool = typer.Option(False, "--dir-letter", help="Group outputs by first letter."),
    settings: Path = SETTINGS_OPTION,
):
    """
    [bold magenta]🔍 Plan[/bold magenta]

    Scan inputs, resolve candidates for every game and show what would be written.
    """
    _print_banner()
    options = _build_options(
        settings, command, output, input_, zip_dat_name=zip_dat_name, dir_letter=dir_letter
    )
    report = _execute(dat, input_, patch, options, write=False)
    for dat_name, parents_to_candidates in report.candidates.items():
        console.print(_candidates_table(dat_name, parents_to_candidates))
        console.print(
            f"[bold green]✔[/bold green] {dat_name}: "
            f"{count_candidates(parents_to_candidates)} candidate(s)"
        )


@app.command("write")
def cmd_write(
    dat: List[Path] = DAT_OPTION,
    input_: List[Path] = INPUT_OPTION,
    patch: List[Path] = PATCH_OPTION,
    command: List[str] = typer.Option(["copy"], "--command", "-c", help="copy, move, link, extract, zip, test."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (tokens allowed)."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing outputs."),
    overwrite_invalid: bool = typer.Option(False, "--overwrite-invalid", help="Overwrite outputs that fail testing."),
    strict_validation: bool = typer.Option(False, "--strict", help="Write nothing for a DAT with output conflicts."),
    zip_dat_name: bool = typer.Option(False, "--zip-dat-name", help="One zip per DAT."),
    dir_letter: bool = typer.Option(False, "--dir-letter", help="Group outputs by first letter."),
    link_mode: Optional[str] = typer.Option(None, "--link-mode", help="hardlink, symlink or reflink."),
    settings: Path = SETTINGS_OPTION,
):
    """
    [bold green]📂 Write[/bold green]

    Resolve candidates and copy, move, link or zip them into the output directory.
    """
    _print_banner()
    options = _build_options(
        settings,
        command,
        output,
        input_,
        overwrite=overwrite,
        overwrite_invalid=overwrite_invalid,
        strict_validation=strict_validation,
        zip_dat_name=zip_dat_name,
        dir_letter=dir_letter,
        link_mode=link_mode,
    )
    report = _execute(dat, input_, patch, options, write=True)
    console.print("\n[bold green]✔ Write finished[/bold green]")
    console.print(_summary_table(report.results))
    if report.deleted:
        console.print(f"[dim]{len(report.deleted)} moved input file(s) deleted[/dim]")
    if any(r.failed_count for r in report.results):
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
