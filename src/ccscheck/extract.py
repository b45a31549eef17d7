# src/ccscheck/extract.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import pysam

from .normalization import parse_read_name

FASTQ_SUFFIXES = (".fastq", ".fq", ".fastq.gz", ".fq.gz")


class ReadSourceError(RuntimeError):
    """The read input could not be enumerated (corrupt or unreadable file)."""


@dataclass(frozen=True)
class Read:
    read_id: str
    sequence: str
    qualities: Tuple[int, ...]
    movie: str = ""
    hole_number: Optional[int] = None
    num_passes: Optional[int] = None
    read_quality: Optional[float] = None
    snr: Optional[Tuple[float, ...]] = None   # A, C, G, T
    zscores: Tuple[float, ...] = ()

    @property
    def mean_qv(self) -> float:
        if not self.qualities:
            return float("nan")
        return sum(self.qualities) / len(self.qualities)


def _tag(aln, name: str):
    return aln.get_tag(name) if aln.has_tag(name) else None


def read_from_bam_record(aln) -> Read:
    name = aln.query_name or ""
    movie, zmw = parse_read_name(name)
    quals = aln.query_qualities
    sn = _tag(aln, "sn")
    zs = _tag(aln, "zs")
    zm = _tag(aln, "zm")
    np_ = _tag(aln, "np")
    rq = _tag(aln, "rq")
    return Read(
        read_id=name,
        sequence=aln.query_sequence or "",
        qualities=tuple(int(q) for q in quals) if quals is not None else (),
        movie=movie,
        hole_number=int(zm) if zm is not None else zmw,
        num_passes=int(np_) if np_ is not None else None,
        read_quality=float(rq) if rq is not None else None,
        snr=tuple(float(x) for x in sn) if sn is not None else None,
        zscores=tuple(float(x) for x in zs) if zs is not None else (),
    )


def read_from_fastq_entry(entry) -> Read:
    movie, zmw = parse_read_name(entry.name)
    quals = entry.get_quality_array() if entry.quality else None
    return Read(
        read_id=entry.name,
        sequence=entry.sequence or "",
        qualities=tuple(int(q) for q in quals) if quals is not None else (),
        movie=movie,
        hole_number=zmw,
    )


def _iter_bam(path: Path) -> Iterator[Read]:
    try:
        with pysam.AlignmentFile(str(path), "rb", check_sq=False) as bam:
            for aln in bam.fetch(until_eof=True):
                if aln.is_secondary or aln.is_supplementary:
                    continue
                yield read_from_bam_record(aln)
    except (OSError, ValueError) as e:
        raise ReadSourceError(f"Could not parse BAM file: {path}") from e


def _iter_fastq(path: Path) -> Iterator[Read]:
    try:
        with pysam.FastxFile(str(path)) as fq:
            for entry in fq:
                yield read_from_fastq_entry(entry)
    except (OSError, ValueError) as e:
        raise ReadSourceError(f"Could not parse FASTQ file: {path}") from e


def fastq_files(directory: Path) -> List[Path]:
    return sorted(p for p in Path(directory).iterdir()
                  if p.is_file() and p.name.endswith(FASTQ_SUFFIXES))


class ReadSource:
    """
    Lazy, finite, single-pass sequence of reads from a BAM file or a
    directory of FASTQ files (each parsed in turn, concatenated).
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Can't find file or folder: {self.path}")
        self._started = False

    @property
    def is_directory(self) -> bool:
        return self.path.is_dir()

    def files(self) -> List[Path]:
        return fastq_files(self.path) if self.is_directory else [self.path]

    def __iter__(self) -> Iterator[Read]:
        if self._started:
            raise RuntimeError(f"Read source {self.path} can only be iterated once")
        self._started = True
        return self._generate()

    def _generate(self) -> Iterator[Read]:
        for p in self.files():
            if p.name.endswith(FASTQ_SUFFIXES):
                yield from _iter_fastq(p)
            else:
                yield from _iter_bam(p)
