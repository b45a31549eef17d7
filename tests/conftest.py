import pathlib
import random

import pytest

from ccscheck.align import AlignmentResult
from ccscheck.extract import Read


def random_seq(n: int, seed: int) -> str:
    rng = random.Random(seed)
    return "".join(rng.choice("ACGT") for _ in range(n))


def make_read(read_id: str, seq: str = "ACGTACGTACGT", qv: int = 30, **kw) -> Read:
    return Read(read_id=read_id, sequence=seq, qualities=tuple([qv] * len(seq)), **kw)


def make_alignment(ref: str, query: str, start: int = 0, name: str = "chrT", qv: int = 30) -> AlignmentResult:
    quals = tuple(None if c == "-" else qv for c in query)
    return AlignmentResult(reference=name, reference_start=start,
                           aligned_reference=ref, aligned_query=query, aligned_qualities=quals)


def write_fastq(path: pathlib.Path, reads) -> pathlib.Path:
    """reads: iterable of (name, seq) or (name, seq, qual_string)."""
    with open(path, "w") as f:
        for r in reads:
            name, seq = r[0], r[1]
            qual = r[2] if len(r) > 2 else "?" * len(seq)
            f.write(f"@{name}\n{seq}\n+\n{qual}\n")
    return path


def write_fasta(path: pathlib.Path, contigs) -> pathlib.Path:
    with open(path, "w") as f:
        for name, seq in contigs.items():
            f.write(f">{name}\n")
            for i in range(0, len(seq), 60):
                f.write(seq[i:i + 60] + "\n")
    return path


@pytest.fixture
def ref_seq() -> str:
    return random_seq(400, seed=7)


@pytest.fixture
def ref_fasta(tmp_path: pathlib.Path, ref_seq: str) -> pathlib.Path:
    return write_fasta(tmp_path / "ref.fasta", {"chrT": ref_seq})
