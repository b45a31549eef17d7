# src/ccscheck/align.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import edlib
import pysam

from .extract import Read
from .utils import reverse_complement

GAP = "-"


@dataclass(frozen=True)
class AlignmentResult:
    reference: str
    reference_start: int                       # 0-based, on the forward reference
    aligned_reference: str                     # gapped, '-' for insertions in the read
    aligned_query: str                         # gapped, '-' for deletions from the read
    aligned_qualities: Tuple[Optional[int], ...]  # one per column, None on deletion columns
    reverse: bool = False
    edit_distance: int = 0

    @property
    def length(self) -> int:
        return len(self.aligned_reference)

    @property
    def reference_end(self) -> int:
        return self.reference_start + sum(1 for c in self.aligned_reference if c != GAP)


def load_reference(path: Path | str) -> Dict[str, str]:
    """Read every contig of a FASTA into memory, upper-cased."""
    contigs: Dict[str, str] = {}
    with pysam.FastxFile(str(path)) as fa:
        for entry in fa:
            contigs[entry.name] = (entry.sequence or "").upper()
    if not contigs:
        raise ValueError(f"No sequences found in reference: {path}")
    return contigs


def _gapped_qualities(aligned_query: str, quals: Tuple[int, ...]) -> Tuple[Optional[int], ...]:
    out = []
    i = 0
    for c in aligned_query:
        if c == GAP:
            out.append(None)
        else:
            out.append(quals[i] if i < len(quals) else None)
            i += 1
    return tuple(out)


class ReferenceAligner:
    """
    Infix (HW) alignment of a whole read against every contig and both
    strands with edlib; the lowest edit distance wins.
    """

    def __init__(self, contigs: Dict[str, str], max_error_rate: float = 0.3):
        self.contigs = contigs
        self.max_error_rate = float(max_error_rate)

    @classmethod
    def from_fasta(cls, path: Path | str, max_error_rate: float = 0.3) -> "ReferenceAligner":
        return cls(load_reference(path), max_error_rate=max_error_rate)

    def align(self, read: Read) -> Optional[AlignmentResult]:
        query = read.sequence.upper()
        if not query:
            return None
        max_k = int(len(query) * self.max_error_rate)

        best = None  # (distance, contig, reverse)
        rc = reverse_complement(query)
        for name, target in self.contigs.items():
            for reverse, q in ((False, query), (True, rc)):
                r = edlib.align(q, target, mode="HW", task="distance", k=max_k)
                d = r["editDistance"]
                if d == -1:
                    continue
                if best is None or d < best[0]:
                    best = (d, name, reverse)
        if best is None:
            return None

        d, name, reverse = best
        q = rc if reverse else query
        quals = tuple(reversed(read.qualities)) if reverse else read.qualities
        target = self.contigs[name]
        r = edlib.align(q, target, mode="HW", task="path", k=max_k)
        if r["editDistance"] == -1:
            return None
        nice = edlib.getNiceAlignment(r, q, target, gapSymbol=GAP)
        return AlignmentResult(
            reference=name,
            reference_start=int(r["locations"][0][0]),
            aligned_reference=nice["target_aligned"],
            aligned_query=nice["query_aligned"],
            aligned_qualities=_gapped_qualities(nice["query_aligned"], quals),
            reverse=reverse,
            edit_distance=int(r["editDistance"]),
        )
