from __future__ import annotations
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


def _default_workers() -> int:
    return os.cpu_count() or 1


class RunConfig(BaseModel):
    input: Path                        # BAM file or directory of FASTQ files
    outdir: Path
    reference: Optional[Path] = None   # FASTA; no alignment when absent
    filter_file: Optional[Path] = None # VCF/BCF or chrom<TAB>pos list; needs reference

    workers: int = Field(default_factory=_default_workers)
    queue_size: int = 256              # bounded queue between workers and collectors
    max_error_rate: float = 0.3        # edit distance / read length above which a hit is rejected
    verbose: bool = True

    @property
    def call_variants(self) -> bool:
        return self.reference is not None

    # convenient paths
    def out_path(self, name: str) -> Path: return Path(self.outdir) / name
    def summary_path(self) -> Path: return self.out_path("run_summary.json")

    def ensure_outdir(self) -> bool:
        """Create the output directory; return True if it already existed."""
        existed = Path(self.outdir).is_dir()
        Path(self.outdir).mkdir(parents=True, exist_ok=True)
        return existed
