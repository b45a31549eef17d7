#!/usr/bin/env python3
from __future__ import annotations
import os
from pathlib import Path
from typing import List, Optional

import typer

from .config import RunConfig
from .utils import chain_messages

app = typer.Typer(help="ccscheck: quality metrics for PacBio CCS reads", add_completion=False)

HELP_WORDS = {"h", "help", "?", "-h"}

USAGE = """\
ccscheck INPUT OUTDIR REF[optional] VCF[optional]
INPUT - the input ccs.bam file, or a directory of .fastq files
OUTDIR - directory to output results into
REF - A fasta file with the references (optional)
VCF - A VCF file with variant positions to exclude (optional)"""

# ----------------
# Helpers
# ----------------
def _usage() -> None:
    typer.echo(USAGE)

def _echo_error(exc: BaseException) -> None:
    msgs = chain_messages(exc)
    typer.secho("Error thrown when attempting to generate the CCS results", fg="red", err=True)
    typer.secho(f"Error: {msgs[0]}", fg="red", err=True)
    for m in msgs[1:]:
        typer.secho(f"Inner Exception: {m}", fg="red", err=True)

def _cfg_from_args(args: List[str], verbose: bool) -> Optional[RunConfig]:
    """Validate positionals; print the problem and return None if unusable."""
    input_path = Path(args[0])
    out_dir = Path(args[1])
    ref = Path(args[2]) if len(args) > 2 else None
    filt = Path(args[3]) if len(args) > 3 else None

    if not input_path.exists():
        typer.echo(f"Can't find file or folder: {input_path}")
        return None
    if ref is not None and not ref.is_file():
        typer.echo(f"Can't find file: {ref}")
        return None
    if filt is not None and not filt.is_file():
        typer.echo(f"Can't find file: {filt}")
        return None
    if out_dir.is_dir():
        typer.echo("The output directory already exists, please specify a new directory or delete the old one.")
    return RunConfig(input=input_path, outdir=out_dir, reference=ref, filter_file=filt, verbose=verbose)

# ----------------
# Command
# ----------------
@app.command(context_settings={"ignore_unknown_options": True})
def main(
    args: Optional[List[str]] = typer.Argument(None, metavar="INPUT OUTDIR [REF] [FILTERFILE]"),
    verbose: bool = typer.Option(True, "--verbose/--quiet", help="Progress and per-stage messages"),
):
    """
    Align CCS reads to a reference, call and filter variants, and write
    per-read metric tables (zmws, zscores, variants, snrs, qv_calibration).
    """
    from .pipeline import run_check

    args = list(args or [])
    typer.echo(os.getcwd())
    if len(args) > 4:
        typer.echo("Too many arguments")
        _usage()
        return
    if args and args[0] in HELP_WORDS:
        _usage()
        return
    if len(args) < 2:
        typer.echo("Not enough arguments")
        _usage()
        return

    try:
        cfg = _cfg_from_args(args, verbose)
        if cfg is None:
            return
        result = run_check(cfg)
    except Exception as e:
        _echo_error(e)
        return

    if result["source_error"]:
        typer.secho("[ccscheck] input was only partially read; outputs cover the reads parsed before the error",
                    fg="yellow", err=True)
    if result["failed_reads"]:
        typer.echo(f"[ccscheck] {result['failed_reads']} read(s) failed and were skipped")
    if result["excluded_by_filter"] is not None:
        typer.echo(f"Filtered out {result['excluded_by_filter']} variants based on VCF file")
    typer.echo(f"Filtered out {result['excluded_at_end']} variants for being at end of alignment")
    typer.echo(f"[ccscheck] {result['delivered']} reads written to {cfg.outdir}")


if __name__ == "__main__":
    app()
