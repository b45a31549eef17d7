from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import FrozenSet, Iterable, List, Optional, Tuple

import pandas as pd
import pysam

from .variants import Variant

VCF_SUFFIXES = (".vcf", ".vcf.gz", ".bcf")


class AtomicCounter:
    """Integer counter safe to bump from many worker threads."""

    def __init__(self, value: int = 0):
        self._value = int(value)
        self._lock = Lock()
        self._frozen = False

    def add(self, n: int) -> int:
        with self._lock:
            if self._frozen:
                raise RuntimeError("counter is frozen")
            self._value += int(n)
            return self._value

    def freeze(self) -> int:
        with self._lock:
            self._frozen = True
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass(frozen=True)
class FilterCounts:
    boundary: int = 0
    excluded: int = 0


class FilterCounters:
    """Process-wide removals per filter: boundary and position exclusion."""

    def __init__(self):
        self.boundary = AtomicCounter()
        self.excluded = AtomicCounter()

    def snapshot(self) -> FilterCounts:
        return FilterCounts(boundary=self.boundary.value, excluded=self.excluded.value)

    def freeze(self) -> FilterCounts:
        return FilterCounts(boundary=self.boundary.freeze(), excluded=self.excluded.freeze())


class FilterSpec:
    """
    Reference positions whose variants are excluded. Keys are
    (reference name, 0-based position). Immutable once loaded.
    """

    def __init__(self, positions: Iterable[Tuple[str, int]], source: Optional[Path] = None):
        self._positions: FrozenSet[Tuple[str, int]] = frozenset((str(c), int(p)) for c, p in positions)
        self.source = source

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, key) -> bool:
        return key in self._positions

    def contains_variant_position(self, v: Variant) -> bool:
        return (v.ref_name, v.position) in self._positions

    @classmethod
    def load(cls, path: Path | str) -> "FilterSpec":
        path = Path(path)
        if path.name.endswith(VCF_SUFFIXES):
            return cls(_positions_from_vcf(path), source=path)
        return cls(_positions_from_tsv(path), source=path)


def _positions_from_vcf(path: Path) -> List[Tuple[str, int]]:
    with pysam.VariantFile(str(path)) as vcf:
        return [(rec.chrom, int(rec.start)) for rec in vcf]


def _positions_from_tsv(path: Path) -> List[Tuple[str, int]]:
    """
    Tab-separated 'chrom<TAB>pos' (1-based, like VCF POS). Lines starting
    with '#' are comments; extra columns are ignored.
    """
    try:
        df = pd.read_csv(path, sep="\t", header=None, comment="#", usecols=[0, 1], dtype={0: str})
    except pd.errors.EmptyDataError:
        return []
    df.columns = ["chrom", "pos"]
    if df.empty:
        return []
    pos = pd.to_numeric(df["pos"], errors="coerce")
    bad = pos.isna()
    if bad.any():
        raise ValueError(f"{path}: non-numeric position on {int(bad.sum())} line(s)")
    return list(zip(df["chrom"].astype(str), (pos.astype(int) - 1)))


class FilterChain:
    """
    Boundary filter, then (with a FilterSpec) position-exclusion filter.
    A variant that is both at the boundary and excluded counts as boundary.
    """

    def __init__(self, spec: Optional[FilterSpec] = None, counters: Optional[FilterCounters] = None):
        self.spec = spec
        self.counters = counters if counters is not None else FilterCounters()

    def apply(self, variants: List[Variant]) -> Tuple[List[Variant], FilterCounts]:
        kept = [v for v in variants if not v.at_end_of_alignment]
        n_boundary = len(variants) - len(kept)
        if n_boundary:
            self.counters.boundary.add(n_boundary)

        n_excluded = 0
        if self.spec is not None and kept:
            before = len(kept)
            kept = [v for v in kept if not self.spec.contains_variant_position(v)]
            n_excluded = before - len(kept)
            if n_excluded:
                self.counters.excluded.add(n_excluded)

        return kept, FilterCounts(boundary=n_boundary, excluded=n_excluded)
