# ccscheck/utils.py

from __future__ import annotations

from threading import Lock
from typing import Iterator, List

import typer

# ---------- logging helpers ----------
_LOG_LOCK = Lock()

def _log(msg: str, verbose: bool = True):
    if not verbose:
        return
    with _LOG_LOCK:
        typer.echo(msg)

def _log_ok(msg: str, verbose: bool = True):
    if not verbose:
        return
    with _LOG_LOCK:
        typer.secho(msg, fg="green")

def _log_err(msg: str, verbose: bool = True):
    with _LOG_LOCK:
        typer.secho(msg, fg="red", err=True)


def exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield exc followed by its causes, outermost first."""
    seen = set()
    cur = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__ or cur.__context__


def chain_messages(exc: BaseException) -> List[str]:
    return [str(e) or type(e).__name__ for e in exception_chain(exc)]


# ---------- sequence helpers ----------
_COMPLEMENT = str.maketrans("ACGTNacgtn", "TGCANtgcan")

def reverse_complement(seq: str) -> str:
    return seq.translate(_COMPLEMENT)[::-1]
